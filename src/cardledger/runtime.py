"""
Execution environment: deployed backends, proxies, and persistence.

The runtime plays the part of the chain.  It assigns addresses, keeps
the registry of deployed backends (address ↦ :class:`Backend`) and of
proxies (address ↦ :class:`OwnedUpgradeabilityProxy`), and routes every
external call to the proxy at the target address.

Persistence writes two namespaces of a
:class:`~cardledger.storage.StorageBackend`:

* ``code``    — backend address ↦ ``{"code_name", "config"}``
* ``proxies`` — proxy address ↦ ``{"storage"}``

Backend *logic* is never persisted; it is re-created from the code
registry by name on :meth:`Runtime.load`.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Optional, Tuple

from .backend import Backend, get_code
from .config import LedgerConfig
from .errors import NotFoundError, ValidationError
from .proxy import OwnedUpgradeabilityProxy
from .storage import Storage, StorageBackend, get_storage_backend

logger = logging.getLogger("cardledger.runtime")


class Runtime:
    """In-process host for backends and proxies."""

    def __init__(self):
        self._code: Dict[str, Backend] = {}
        self._proxies: Dict[str, OwnedUpgradeabilityProxy] = {}
        self._nonce = 0

    # ── Addresses ─────────────────────────────────────────────────

    def _next_address(self, kind: str, seed: str) -> str:
        while True:
            self._nonce += 1
            address = "0x" + hashlib.sha256(
                f"{kind}:{seed}:{self._nonce}".encode("utf-8")
            ).hexdigest()[:40]
            if address not in self._code and address not in self._proxies:
                return address

    # ── Deployment ────────────────────────────────────────────────

    def deploy(self, backend: Backend) -> str:
        """Deploy *backend* logic and return its address."""
        if not isinstance(backend, Backend):
            raise ValidationError(f"{backend!r} is not a Backend")
        if not backend.code_name:
            raise ValidationError(
                f"{type(backend).__name__} is not registered; call register_code() first"
            )
        address = self._next_address("code", backend.code_name)
        self._code[address] = backend
        logger.info("Backend '%s' deployed at %s", backend.code_name, address)
        return address

    def code_at(self, address: str) -> Optional[Backend]:
        """Deployed backend at *address*, or ``None``."""
        return self._code.get(address)

    def deploy_proxy(self, owner: str) -> OwnedUpgradeabilityProxy:
        """Create an empty proxy owned by *owner* (no implementation yet)."""
        address = self._next_address("proxy", owner)
        proxy = OwnedUpgradeabilityProxy(self, owner=owner, address=address)
        self._proxies[address] = proxy
        logger.info("Proxy deployed at %s (owner %s)", address, owner)
        return proxy

    def get_proxy(self, address: str) -> OwnedUpgradeabilityProxy:
        proxy = self._proxies.get(address)
        if proxy is None:
            raise NotFoundError(f"No proxy at {address}")
        return proxy

    # ── Calls ─────────────────────────────────────────────────────

    def call(self, caller: str, address: str, payload: bytes) -> bytes:
        """Send *payload* from *caller* to the proxy at *address*."""
        return self.get_proxy(address).handle(caller, payload)

    # ── Persistence ───────────────────────────────────────────────

    def save(self, storage_backend: StorageBackend) -> None:
        """Write every deployed backend and proxy storage, then commit."""
        for address, backend in self._code.items():
            storage_backend.put_json("code", address, {
                "code_name": backend.code_name,
                "config": backend.config_dict(),
            })
        for address, proxy in self._proxies.items():
            storage_backend.put_json("proxies", address, {
                "storage": proxy.storage.to_dict(),
            })
        storage_backend.commit()
        logger.debug("Runtime saved to %s: %d backends, %d proxies",
                     storage_backend.name, len(self._code), len(self._proxies))

    @classmethod
    def load(cls, storage_backend: StorageBackend) -> "Runtime":
        """Rebuild a runtime previously written with :meth:`save`."""
        runtime = cls()
        for address, raw in storage_backend.iterate("code"):
            entry = _decode(raw, address)
            backend_cls = get_code(entry["code_name"])
            runtime._code[address] = backend_cls(**entry.get("config", {}))
        for address, raw in storage_backend.iterate("proxies"):
            entry = _decode(raw, address)
            runtime._proxies[address] = OwnedUpgradeabilityProxy(
                runtime,
                address=address,
                storage=Storage.from_dict(entry["storage"]),
            )
        runtime._nonce = len(runtime._code) + len(runtime._proxies)
        logger.debug("Runtime loaded from %s: %d backends, %d proxies",
                     storage_backend.name, len(runtime._code), len(runtime._proxies))
        return runtime

    @classmethod
    def open(cls, config: Optional[LedgerConfig] = None) -> Tuple["Runtime", StorageBackend]:
        """Load the runtime persisted at ``config.db_path``.

        Returns ``(runtime, storage_backend)``; the caller saves and
        closes the backend when done.
        """
        config = config or LedgerConfig.from_env()
        kwargs: Dict[str, Any] = {}
        if config.storage_backend == "sqlite":
            kwargs["db_path"] = config.db_path
        storage_backend = get_storage_backend(config.storage_backend, **kwargs)
        return cls.load(storage_backend), storage_backend

    def get_info(self) -> Dict[str, Any]:
        return {
            "backends": {a: b.code_name for a, b in self._code.items()},
            "proxies": sorted(self._proxies),
        }


def _decode(raw: str, address: str) -> Dict[str, Any]:
    try:
        entry = json.loads(raw)
    except ValueError:
        raise ValidationError(f"Corrupt runtime record for {address}")
    if not isinstance(entry, dict):
        raise ValidationError(f"Corrupt runtime record for {address}")
    return entry
