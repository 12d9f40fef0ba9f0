"""
Owned upgradeability proxy.

Architecture
------------
::

    caller ──► OwnedUpgradeabilityProxy ──(admin selector)──► own handler
                     │
                     └──(anything else)──► current Backend.execute(ctx, payload)
                                            ctx.storage is the proxy's Storage

*   The proxy owns the only :class:`~cardledger.storage.Storage`.  Its
    own bookkeeping (implementation address, proxy owner, maintenance
    flag, implementation history) lives in *reserved slots* keyed by
    SHA-256 digests; backend fields live under the backend's layout
    namespace.  The two can never alias.
*   Every external call is one transaction: the storage snapshot taken
    on entry is restored if anything raises, and the error propagates
    unchanged.  Events of a failed call are dropped.
*   ``upgrade_to_and_call`` runs the pointer update and the forwarded
    initializer inside one transaction, so a failing initializer
    leaves the previous implementation in place.

Security
--------
*   Admin selectors are proxy-owner only and never reach the backend.
*   Installing a backend whose layout claims a reserved slot, or that
    drops or retypes a field of the installed layout, is rejected.
*   A forwarded call that writes a reserved slot is rolled back.
*   While maintenance is on, only the proxy owner may run state-changing
    selectors; read-only selectors stay available to everyone.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .abi import decode_call, encode_result
from .backend import Backend, CallContext
from .errors import (
    AuthorizationError,
    LedgerError,
    MaintenanceError,
    StateConflictError,
    ValidationError,
)
from .events import (
    LedgerEvent,
    MaintenanceSetEvent,
    OwnershipTransferredEvent,
    UpgradedEvent,
)
from .records import ZERO_ADDRESS, is_zero
from .storage import Storage, reserved_slot

if TYPE_CHECKING:
    from .runtime import Runtime

logger = logging.getLogger("cardledger.proxy")


# =====================================================================
# Reserved slots
# =====================================================================

_IMPL_SLOT = reserved_slot("cardledger.proxy.implementation")
_OWNER_SLOT = reserved_slot("cardledger.proxy.owner")
_MAINTENANCE_SLOT = reserved_slot("cardledger.proxy.maintenance")
_HISTORY_SLOT = reserved_slot("cardledger.proxy.history")

RESERVED_SLOTS = (_IMPL_SLOT, _OWNER_SLOT, _MAINTENANCE_SLOT, _HISTORY_SLOT)

ADMIN_SELECTORS = frozenset({
    "upgrade_to",
    "upgrade_to_and_call",
    "implementation",
    "proxy_owner",
    "transfer_proxy_ownership",
    "maintenance",
    "set_maintenance",
})


# =====================================================================
# Implementation history
# =====================================================================

@dataclass
class ImplementationRecord:
    """One entry of a proxy's implementation history."""
    version: int
    address: str
    code_name: str
    code_hash: str
    caller: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "address": self.address,
            "code_name": self.code_name,
            "code_hash": self.code_hash,
            "caller": self.caller,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ImplementationRecord":
        return cls(
            version=d["version"],
            address=d["address"],
            code_name=d["code_name"],
            code_hash=d["code_hash"],
            caller=d["caller"],
            timestamp=d["timestamp"],
        )


# =====================================================================
# Proxy
# =====================================================================

class OwnedUpgradeabilityProxy:
    """Stable-address frontend that forwards to a replaceable backend.

    Parameters
    ----------
    runtime : Runtime
        Resolves implementation addresses to deployed backends.
    owner : str
        Initial proxy owner.  Ignored when *storage* is supplied.
    address : str, optional
        Explicit address for the proxy itself.
    storage : Storage, optional
        Existing storage to reattach (used when loading a saved runtime).
    """

    def __init__(
        self,
        runtime: "Runtime",
        owner: str = "",
        address: Optional[str] = None,
        storage: Optional[Storage] = None,
    ):
        self._runtime = runtime
        self.address: str = address or "0x" + hashlib.sha256(
            f"proxy-{owner}-{time.time()}".encode()
        ).hexdigest()[:40]

        if storage is None:
            if is_zero(owner):
                raise ValidationError("Proxy: owner is the zero address")
            storage = Storage({_OWNER_SLOT: owner, _MAINTENANCE_SLOT: False})
        self.storage = storage

        # Events of committed calls, oldest first.
        self.events: List[LedgerEvent] = []

        self._admin: Dict[str, Tuple[int, Callable[..., Any]]] = {
            "upgrade_to": (1, self.upgrade_to),
            "upgrade_to_and_call": (2, self._upgrade_to_and_call_hex),
            "implementation": (0, lambda caller: self.implementation()),
            "proxy_owner": (0, lambda caller: self.proxy_owner()),
            "transfer_proxy_ownership": (1, self.transfer_proxy_ownership),
            "maintenance": (0, lambda caller: self.maintenance()),
            "set_maintenance": (1, self.set_maintenance),
        }

    # ── Getters ───────────────────────────────────────────────────

    def implementation(self) -> str:
        return self.storage.get(_IMPL_SLOT, ZERO_ADDRESS)

    def proxy_owner(self) -> str:
        return self.storage.get(_OWNER_SLOT, ZERO_ADDRESS)

    def maintenance(self) -> bool:
        return bool(self.storage.get(_MAINTENANCE_SLOT, False))

    def history(self) -> List[ImplementationRecord]:
        return [ImplementationRecord.from_dict(d)
                for d in self.storage.get(_HISTORY_SLOT, [])]

    # ── Wire entry point ──────────────────────────────────────────

    def handle(self, caller: str, payload: bytes) -> bytes:
        """Serve one external call: admin selectors here, the rest forwarded."""
        selector, args = decode_call(payload)
        try:
            if selector in ADMIN_SELECTORS:
                arity, handler = self._admin[selector]
                if len(args) != arity:
                    raise ValidationError(
                        f"Proxy: {selector} takes {arity} argument(s), got {len(args)}"
                    )
                result = handler(caller, *args)
                if isinstance(result, bytes):
                    return result
                return encode_result(result)
            return self._forward(caller, selector, payload)
        except LedgerError as exc:
            logger.debug("Proxy %s rejected %s from %s: %s",
                         self.address, selector, caller, exc.reason)
            raise

    # ── Admin surface ─────────────────────────────────────────────

    def _require_owner(self, caller: str) -> None:
        if is_zero(caller) or caller != self.proxy_owner():
            raise AuthorizationError("Proxy: caller is not the proxy owner")

    def upgrade_to(self, caller: str, new_implementation: str) -> None:
        self._require_owner(caller)
        logs: List[LedgerEvent] = []
        with self.storage.transaction():
            self._upgrade(caller, new_implementation, logs)
        self.events.extend(logs)

    def upgrade_to_and_call(self, caller: str, new_implementation: str,
                            payload: bytes) -> bytes:
        """Upgrade, then forward *payload* to the new backend, atomically.

        Returns the backend's return payload.  If the forwarded call
        raises, the upgrade is undone and the error propagates.
        """
        self._require_owner(caller)
        if not isinstance(payload, bytes):
            raise ValidationError("Proxy: initialization payload must be bytes")
        logs: List[LedgerEvent] = []
        with self.storage.transaction():
            self._upgrade(caller, new_implementation, logs)
            result = self._execute(caller, payload, logs)
        self.events.extend(logs)
        return result

    def _upgrade_to_and_call_hex(self, caller: str, new_implementation: str,
                                 payload_hex: str) -> bytes:
        try:
            payload = bytes.fromhex(payload_hex)
        except (TypeError, ValueError):
            raise ValidationError("Proxy: initialization payload must be a hex string")
        return self.upgrade_to_and_call(caller, new_implementation, payload)

    def transfer_proxy_ownership(self, caller: str, new_owner: str) -> None:
        self._require_owner(caller)
        if not isinstance(new_owner, str) or is_zero(new_owner):
            raise ValidationError("Proxy: new owner is the zero address")
        previous = self.proxy_owner()
        self.storage.set(_OWNER_SLOT, new_owner)
        self.events.append(self._stamp(
            OwnershipTransferredEvent(previous, new_owner, proxy=True)
        ))
        logger.info("Proxy %s ownership %s -> %s", self.address, previous, new_owner)

    def set_maintenance(self, caller: str, flag: bool) -> None:
        self._require_owner(caller)
        if not isinstance(flag, bool):
            raise ValidationError(f"Proxy: maintenance flag must be a bool, got {flag!r}")
        self.storage.set(_MAINTENANCE_SLOT, flag)
        self.events.append(self._stamp(MaintenanceSetEvent(flag)))
        logger.info("Proxy %s maintenance=%s", self.address, flag)

    # ── Internal ──────────────────────────────────────────────────

    def _stamp(self, event: LedgerEvent) -> LedgerEvent:
        event.contract_address = self.address
        return event

    def _backend_at(self, address: str) -> Optional[Backend]:
        if not isinstance(address, str) or is_zero(address):
            return None
        return self._runtime.code_at(address)

    def _upgrade(self, caller: str, new_implementation: str,
                 logs: List[LedgerEvent]) -> None:
        backend = self._backend_at(new_implementation)
        if backend is None:
            raise ValidationError(
                f"Proxy: new implementation {new_implementation!r} is not a contract"
            )
        current = self.implementation()
        if new_implementation == current:
            raise ValidationError("Proxy: new implementation is already the current one")

        for slot in RESERVED_SLOTS:
            if backend.layout.owns(slot):
                raise ValidationError("Proxy: backend layout overlaps a reserved slot")
        current_backend = self._backend_at(current)
        if current_backend is not None:
            current_backend.layout.check_upgrade_to(backend.layout)

        shadowed = backend.selectors() & ADMIN_SELECTORS
        if shadowed:
            logger.warning("Proxy %s: backend selectors %s are shadowed by admin selectors",
                           self.address, sorted(shadowed))

        history = self.storage.get(_HISTORY_SLOT, [])
        record = ImplementationRecord(
            version=len(history) + 1,
            address=new_implementation,
            code_name=backend.code_name,
            code_hash=backend.code_hash,
            caller=caller,
        )
        self.storage.set(_IMPL_SLOT, new_implementation)
        self.storage.set(_HISTORY_SLOT, history + [record.to_dict()])
        logs.append(self._stamp(UpgradedEvent(new_implementation, record.version)))

        logger.info("Proxy %s upgraded %s → %s (v%d)",
                    self.address, current, new_implementation, record.version)

    def _execute(self, caller: str, payload: bytes,
                 logs: List[LedgerEvent]) -> bytes:
        backend = self._backend_at(self.implementation())
        if backend is None:
            raise StateConflictError("Proxy: implementation not set")

        reserved = [self.storage.get(slot) for slot in RESERVED_SLOTS]
        ctx = CallContext(storage=self.storage, caller=caller, address=self.address)
        with self.storage.transaction():
            result = backend.execute(ctx, payload)
            if [self.storage.get(slot) for slot in RESERVED_SLOTS] != reserved:
                raise StateConflictError("Proxy: backend wrote a reserved slot")
        logs.extend(ctx.logs)
        return result

    def _forward(self, caller: str, selector: str, payload: bytes) -> bytes:
        backend = self._backend_at(self.implementation())
        if backend is None:
            raise StateConflictError("Proxy: implementation not set")
        if selector not in backend.selectors():
            raise ValidationError(f"unknown selector {selector!r}")
        if (self.maintenance() and caller != self.proxy_owner()
                and not backend.is_view(selector)):
            raise MaintenanceError("Proxy: contract is in maintenance")

        logs: List[LedgerEvent] = []
        result = self._execute(caller, payload, logs)
        self.events.extend(logs)
        return result

    # ── Introspection ─────────────────────────────────────────────

    def get_info(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "proxy_owner": self.proxy_owner(),
            "implementation": self.implementation(),
            "maintenance": self.maintenance(),
            "versions": self.history(),
            "storage_keys": len(self.storage),
        }
