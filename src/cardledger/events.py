"""
Event records emitted by the ledger and the proxy.

Events are collected per call.  The proxy appends them to its event log
only when the call commits; a rejected call leaves no events behind.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class EventType(str, Enum):
    TRANSFER = "Transfer"
    APPROVAL = "Approval"
    APPROVAL_FOR_ALL = "ApprovalForAll"
    MINTER_ADDED = "MinterAdded"
    MINTER_REMOVED = "MinterRemoved"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
    INITIALIZED = "Initialized"
    UPGRADED = "Upgraded"
    PROXY_OWNERSHIP_TRANSFERRED = "ProxyOwnershipTransferred"
    MAINTENANCE_SET = "MaintenanceSet"


@dataclass
class LedgerEvent:
    """A single emitted event."""
    event_type: EventType
    contract_address: str = ""
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)


class TransferEvent(LedgerEvent):
    """Holder change.  Mint has ``from`` = zero, burn has ``to`` = zero."""
    def __init__(self, from_addr: str, to_addr: str, token_id: int,
                 contract_address: str = ""):
        super().__init__(
            event_type=EventType.TRANSFER,
            contract_address=contract_address,
            data={"from": from_addr, "to": to_addr, "token_id": token_id},
        )


class ApprovalEvent(LedgerEvent):
    def __init__(self, owner: str, approved: str, token_id: int,
                 contract_address: str = ""):
        super().__init__(
            event_type=EventType.APPROVAL,
            contract_address=contract_address,
            data={"owner": owner, "approved": approved, "token_id": token_id},
        )


class ApprovalForAllEvent(LedgerEvent):
    def __init__(self, owner: str, operator: str, approved: bool,
                 contract_address: str = ""):
        super().__init__(
            event_type=EventType.APPROVAL_FOR_ALL,
            contract_address=contract_address,
            data={"owner": owner, "operator": operator, "approved": approved},
        )


class MinterEvent(LedgerEvent):
    def __init__(self, account: str, added: bool, contract_address: str = ""):
        super().__init__(
            event_type=EventType.MINTER_ADDED if added else EventType.MINTER_REMOVED,
            contract_address=contract_address,
            data={"account": account},
        )


class OwnershipTransferredEvent(LedgerEvent):
    def __init__(self, previous_owner: str, new_owner: str,
                 contract_address: str = "", proxy: bool = False):
        super().__init__(
            event_type=(EventType.PROXY_OWNERSHIP_TRANSFERRED if proxy
                        else EventType.OWNERSHIP_TRANSFERRED),
            contract_address=contract_address,
            data={"previous_owner": previous_owner, "new_owner": new_owner},
        )


class InitializedEvent(LedgerEvent):
    def __init__(self, revision: int, contract_address: str = ""):
        super().__init__(
            event_type=EventType.INITIALIZED,
            contract_address=contract_address,
            data={"revision": revision},
        )


class UpgradedEvent(LedgerEvent):
    def __init__(self, implementation: str, version: int,
                 contract_address: str = ""):
        super().__init__(
            event_type=EventType.UPGRADED,
            contract_address=contract_address,
            data={"implementation": implementation, "version": version},
        )


class MaintenanceSetEvent(LedgerEvent):
    def __init__(self, flag: bool, contract_address: str = ""):
        super().__init__(
            event_type=EventType.MAINTENANCE_SET,
            contract_address=contract_address,
            data={"maintenance": flag},
        )


def filter_events(events: List[LedgerEvent],
                  event_type: Optional[EventType] = None,
                  **match: Any) -> List[LedgerEvent]:
    """Return the events of *event_type* whose data matches every *match* pair."""
    out = []
    for ev in events:
        if event_type is not None and ev.event_type != event_type:
            continue
        if all(ev.data.get(k) == v for k, v in match.items()):
            out.append(ev)
    return out
