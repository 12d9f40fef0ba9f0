"""
Backend interface and selector dispatch.

A backend is stateless logic.  Every call hands it a
:class:`CallContext` (the proxy's :class:`~cardledger.storage.Storage`,
the original caller and a per-call event log) plus the untouched call
payload.  This is the ``delegatecall`` relationship made explicit: the
code lives at the backend's address, the state lives with the proxy.

Backends are known to the runtime by a *code name* registered with
:func:`register_code`, which is what gets persisted instead of the code
itself.
"""

from __future__ import annotations

import abc
import hashlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Type

from .abi import decode_call, encode_result
from .errors import ValidationError
from .events import LedgerEvent
from .storage import Storage, StorageLayout

logger = logging.getLogger("cardledger.backend")


@dataclass
class CallContext:
    """Everything a backend may touch during one call."""
    storage: Storage
    caller: str
    address: str = ""
    logs: List[LedgerEvent] = field(default_factory=list)

    def emit(self, event: LedgerEvent) -> None:
        event.contract_address = self.address
        self.logs.append(event)


def external(fn: Callable) -> Callable:
    """Expose *fn* as a state-changing selector."""
    fn._selector = fn.__name__
    fn._mutating = True
    return fn


def view(fn: Callable) -> Callable:
    """Expose *fn* as a read-only selector."""
    fn._selector = fn.__name__
    fn._mutating = False
    return fn


class Backend(abc.ABC):
    """Interface the proxy forwards to."""

    #: Storage this backend reads and writes.
    layout: StorageLayout
    #: Bumped when a new revision needs its own one-time initialization.
    REVISION: int = 1
    #: Set by :func:`register_code`.
    code_name: str = ""

    @abc.abstractmethod
    def execute(self, ctx: CallContext, payload: bytes) -> bytes:
        """Run *payload* against ``ctx.storage`` and return the result payload."""

    @abc.abstractmethod
    def selectors(self) -> FrozenSet[str]:
        """Selectors this backend answers."""

    def is_view(self, selector: str) -> bool:
        """True when *selector* never writes storage."""
        return False

    @property
    def code_hash(self) -> str:
        return hashlib.sha256(
            f"{self.code_name}:{self.REVISION}".encode("utf-8")
        ).hexdigest()

    def config_dict(self) -> Dict[str, Any]:
        """Constructor keywords needed to redeploy this backend."""
        return {}


class Contract(Backend):
    """Backend whose selectors are methods marked :func:`external` or :func:`view`.

    Each exposed method is called as ``method(ctx, *args)``.
    """

    _exports: Dict[str, bool] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        exports: Dict[str, bool] = {}
        for klass in reversed(cls.__mro__):
            for attr in vars(klass).values():
                selector = getattr(attr, "_selector", None)
                if selector is not None:
                    exports[selector] = attr._mutating
        cls._exports = exports

    def selectors(self) -> FrozenSet[str]:
        return frozenset(self._exports)

    def is_view(self, selector: str) -> bool:
        return self._exports.get(selector) is False

    def execute(self, ctx: CallContext, payload: bytes) -> bytes:
        selector, args = decode_call(payload)
        if selector not in self._exports:
            raise ValidationError(f"unknown selector {selector!r}")

        method = getattr(self, selector)
        try:
            inspect.signature(method).bind(ctx, *args)
        except TypeError as exc:
            raise ValidationError(f"bad arguments for {selector}: {exc}")

        logger.debug("%s.%s from %s", self.code_name or type(self).__name__,
                     selector, ctx.caller)
        return encode_result(method(ctx, *args))


# ── Code registry ──────────────────────────────────────────────────────

_CODE: Dict[str, Type[Backend]] = {}


def register_code(name: str, cls: Type[Backend]) -> Type[Backend]:
    """Register a backend class under *name* so runtimes can redeploy it."""
    if not issubclass(cls, Backend):
        raise TypeError(f"{cls} is not a Backend subclass")
    cls.code_name = name
    _CODE[name] = cls
    return cls


def get_code(name: str) -> Type[Backend]:
    cls = _CODE.get(name)
    if cls is None:
        raise ValidationError(
            f"Unknown backend code '{name}'. Available: {', '.join(sorted(_CODE))}"
        )
    return cls
