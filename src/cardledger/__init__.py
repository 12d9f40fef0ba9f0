"""
cardledger: an upgradeable, permissioned ledger of collectible cards.

The ledger logic (:class:`CardsLedger`) runs behind an
:class:`OwnedUpgradeabilityProxy` that owns all state and can swap the
logic without changing its address.  A :class:`Runtime` hosts both and
persists them; :class:`LedgerClient` is the typed way to call them.
"""

from .abi import decode_call, decode_result, encode_call, encode_result
from .backend import Backend, CallContext, Contract, external, get_code, register_code, view
from .client import LedgerClient
from .config import LedgerConfig
from .errors import (
    AuthorizationError,
    LedgerError,
    MaintenanceError,
    NonexistentTokenError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from .events import EventType, LedgerEvent, filter_events
from .ledger import CardsLedger
from .proxy import ImplementationRecord, OwnedUpgradeabilityProxy
from .records import CARDS_LAYOUT, ZERO_ADDRESS
from .runtime import Runtime
from .storage import Storage, StorageLayout, get_storage_backend

__version__ = "0.1.0"

__all__ = [
    "AuthorizationError",
    "Backend",
    "CARDS_LAYOUT",
    "CallContext",
    "CardsLedger",
    "Contract",
    "EventType",
    "ImplementationRecord",
    "LedgerClient",
    "LedgerConfig",
    "LedgerError",
    "LedgerEvent",
    "MaintenanceError",
    "NonexistentTokenError",
    "NotFoundError",
    "OwnedUpgradeabilityProxy",
    "Runtime",
    "StateConflictError",
    "Storage",
    "StorageLayout",
    "ValidationError",
    "ZERO_ADDRESS",
    "decode_call",
    "decode_result",
    "encode_call",
    "encode_result",
    "external",
    "filter_events",
    "get_code",
    "get_storage_backend",
    "register_code",
    "view",
]
