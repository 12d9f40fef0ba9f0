"""
Call and return payload encoding.

A call payload is compact, key-sorted UTF-8 JSON::

    {"args": [1, "ipfs://1"], "selector": "mint"}

and a return payload is ``{"result": <value>}``.  The proxy never
decodes a forwarded payload beyond its selector, so whatever bytes the
caller sent reach the backend untouched, and the backend's return bytes
reach the caller untouched.
"""

from __future__ import annotations

import json
from typing import Any, List, Tuple

from .errors import ValidationError

_SCALARS = (str, int, bool, type(None))


def _check_value(value: Any) -> None:
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _check_value(item)
        return
    raise ValidationError(f"unsupported argument type: {type(value).__name__}")


def _dumps(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def encode_call(selector: str, *args: Any) -> bytes:
    """Encode a call to *selector* with positional *args*."""
    if not selector or not isinstance(selector, str):
        raise ValidationError("selector must be a non-empty string")
    for arg in args:
        _check_value(arg)
    return _dumps({"selector": selector, "args": list(args)})


def decode_call(payload: bytes) -> Tuple[str, List[Any]]:
    """Split a call payload into ``(selector, args)``."""
    try:
        message = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, AttributeError) as exc:
        raise ValidationError(f"malformed call payload: {exc}")
    if not isinstance(message, dict):
        raise ValidationError("malformed call payload: expected an object")
    selector = message.get("selector")
    args = message.get("args", [])
    if not isinstance(selector, str) or not selector:
        raise ValidationError("malformed call payload: missing selector")
    if not isinstance(args, list):
        raise ValidationError("malformed call payload: args must be a list")
    return selector, args


def encode_result(value: Any) -> bytes:
    _check_value(value)
    return _dumps({"result": value})


def decode_result(payload: bytes) -> Any:
    try:
        message = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, AttributeError) as exc:
        raise ValidationError(f"malformed return payload: {exc}")
    if not isinstance(message, dict) or "result" not in message:
        raise ValidationError("malformed return payload: missing result")
    return message["result"]
