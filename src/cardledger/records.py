"""
Typed access to the ledger's fields inside a proxy's storage.

The ledger's state is nothing but keys of :data:`CARDS_LAYOUT` in the
shared :class:`~cardledger.storage.Storage`.  :class:`LedgerStore` is a
thin view that knows the key derivation and the zero-means-absent
convention; it performs no authorization.
"""

from __future__ import annotations

from typing import List, Optional

from .storage import MAPPING, VALUE, Storage, StorageLayout

ZERO_ADDRESS = "0x" + "0" * 40

# Append-only: later revisions may add fields, never remove or retype them.
CARDS_LAYOUT = StorageLayout("cards", {
    "name": VALUE,
    "symbol": VALUE,
    "owner": VALUE,
    "total_supply": VALUE,
    "initialized": MAPPING,         # revision -> True
    "minters": MAPPING,             # account -> True
    "owners": MAPPING,              # token_id -> holder
    "balances": MAPPING,            # account -> count
    "token_approvals": MAPPING,     # token_id -> approved account
    "operator_approvals": MAPPING,  # holder/operator -> True
    "token_uris": MAPPING,          # token_id -> uri
})


def is_zero(account: Optional[str]) -> bool:
    return not account or account == ZERO_ADDRESS


class LedgerStore:
    """Reads and writes ledger fields in a shared :class:`Storage`."""

    def __init__(self, storage: Storage, layout: StorageLayout = CARDS_LAYOUT):
        self.storage = storage
        self.layout = layout

    def _get(self, field: str, *keys, default=None):
        return self.storage.get(self.layout.key(field, *keys), default)

    def _set(self, field: str, *keys_and_value) -> None:
        *keys, value = keys_and_value
        self.storage.set(self.layout.key(field, *keys), value)

    # ── Collection metadata ───────────────────────────────────────

    def name(self) -> str:
        return self._get("name", default="")

    def symbol(self) -> str:
        return self._get("symbol", default="")

    def set_metadata(self, name: str, symbol: str) -> None:
        self._set("name", name)
        self._set("symbol", symbol)

    def is_initialized(self, revision: int) -> bool:
        return bool(self._get("initialized", revision, default=False))

    def mark_initialized(self, revision: int) -> None:
        self._set("initialized", revision, True)

    # ── Owner & minters ───────────────────────────────────────────

    def owner(self) -> str:
        return self._get("owner", default=ZERO_ADDRESS)

    def set_owner(self, account: str) -> None:
        self._set("owner", account)

    def is_minter(self, account: str) -> bool:
        if is_zero(account):
            return False
        return bool(self._get("minters", account, default=False))

    def set_minter(self, account: str, flag: bool) -> None:
        self._set("minters", account, True if flag else None)

    # ── Token records ─────────────────────────────────────────────

    def holder(self, token_id: int) -> str:
        """Current holder of *token_id*, or ZERO_ADDRESS if it does not exist."""
        return self._get("owners", token_id, default=ZERO_ADDRESS)

    def exists(self, token_id: int) -> bool:
        return not is_zero(self.holder(token_id))

    def set_holder(self, token_id: int, account: Optional[str]) -> None:
        self._set("owners", token_id, None if is_zero(account) else account)

    def balance(self, account: str) -> int:
        return self._get("balances", account, default=0)

    def adjust_balance(self, account: str, delta: int) -> None:
        value = self.balance(account) + delta
        self._set("balances", account, value or None)

    def total_supply(self) -> int:
        return self._get("total_supply", default=0)

    def adjust_supply(self, delta: int) -> None:
        self._set("total_supply", (self.total_supply() + delta) or None)

    def token_uri(self, token_id: int) -> str:
        return self._get("token_uris", token_id, default="")

    def set_token_uri(self, token_id: int, uri: Optional[str]) -> None:
        self._set("token_uris", token_id, uri)

    def approved(self, token_id: int) -> str:
        return self._get("token_approvals", token_id, default=ZERO_ADDRESS)

    def set_approved(self, token_id: int, account: Optional[str]) -> None:
        self._set("token_approvals", token_id, None if is_zero(account) else account)

    def is_operator(self, holder: str, operator: str) -> bool:
        if is_zero(holder) or is_zero(operator):
            return False
        return bool(self._get("operator_approvals", holder, operator, default=False))

    def set_operator(self, holder: str, operator: str, flag: bool) -> None:
        self._set("operator_approvals", holder, operator, True if flag else None)

    def tokens_of(self, account: str) -> List[int]:
        """All token ids held by *account*, ascending."""
        prefix = self.layout.prefix("owners")
        return sorted(
            int(k[len(prefix):])
            for k, v in self.storage.items(prefix)
            if v == account
        )
