"""
The ledger's three authorization axes.

Each axis is an independent capability check over the same
:class:`~cardledger.records.LedgerStore`; operations compose whichever
checks they need instead of inheriting them:

*   :class:`OwnerCapability`: the single administrative owner
*   :class:`MinterCapability`: the grantable minter role
*   :class:`HolderCapability`: holders and the approvals they delegate
"""

from __future__ import annotations

from .errors import AuthorizationError, NonexistentTokenError
from .records import LedgerStore, is_zero


class OwnerCapability:
    def __init__(self, store: LedgerStore):
        self._store = store

    def holds(self, caller: str) -> bool:
        return not is_zero(caller) and caller == self._store.owner()

    def require(self, caller: str) -> None:
        if not self.holds(caller):
            raise AuthorizationError("Ownable: caller is not the owner")


class MinterCapability:
    def __init__(self, store: LedgerStore):
        self._store = store

    def holds(self, caller: str) -> bool:
        return self._store.is_minter(caller)

    def require(self, caller: str) -> None:
        if not self.holds(caller):
            raise AuthorizationError("MinterRole: Only minter has the access")


class HolderCapability:
    """Holder, single-token approval and operator-wide approval checks."""

    def __init__(self, store: LedgerStore):
        self._store = store

    def is_holder_or_operator(self, caller: str, holder: str) -> bool:
        return caller == holder or self._store.is_operator(holder, caller)

    def is_approved_or_holder(self, spender: str, token_id: int) -> bool:
        holder = self._store.holder(token_id)
        if is_zero(holder):
            raise NonexistentTokenError("Cards: operator query for nonexistent token")
        return (
            spender == holder
            or self._store.approved(token_id) == spender
            or self._store.is_operator(holder, spender)
        )

    def require_holder_or_operator(self, caller: str, holder: str, reason: str) -> None:
        if is_zero(caller) or not self.is_holder_or_operator(caller, holder):
            raise AuthorizationError(reason)

    def require_approved_or_holder(self, spender: str, token_id: int) -> None:
        if is_zero(spender) or not self.is_approved_or_holder(spender, token_id):
            raise AuthorizationError("Cards: transfer caller is not owner nor approved")
