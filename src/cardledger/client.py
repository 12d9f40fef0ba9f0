"""
Typed call surface for a ledger behind a proxy.

Every method encodes a call payload, sends it through
:meth:`Runtime.call` as the bound signer, and decodes the result::

    client = LedgerClient(runtime, proxy.address, signer=admin)
    client.bundle_mint([1, 2, 3], ["u1", "u2", "u3"])
    client.connect(collector).transfer_from(collector, buyer, 2)
"""

from __future__ import annotations

from typing import Any, List, Optional

from .abi import decode_result, encode_call
from .records import ZERO_ADDRESS
from .runtime import Runtime


class LedgerClient:
    def __init__(self, runtime: Runtime, address: str, signer: Optional[str] = None):
        self.runtime = runtime
        self.address = address
        self.signer = signer or ZERO_ADDRESS

    def connect(self, signer: str) -> "LedgerClient":
        """Same ledger, different signer."""
        return LedgerClient(self.runtime, self.address, signer)

    def call(self, selector: str, *args: Any) -> Any:
        payload = encode_call(selector, *args)
        return decode_result(self.runtime.call(self.signer, self.address, payload))

    def __repr__(self) -> str:
        return f"LedgerClient({self.address!r}, signer={self.signer!r})"

    # ── Ledger: setup & roles ─────────────────────────────────────

    def initialize(self, owner: str, name: str, symbol: str) -> None:
        self.call("initialize", owner, name, symbol)

    def owner(self) -> str:
        return self.call("owner")

    def transfer_ownership(self, new_owner: str) -> None:
        self.call("transfer_ownership", new_owner)

    def name(self) -> str:
        return self.call("name")

    def symbol(self) -> str:
        return self.call("symbol")

    def is_minter(self, account: str) -> bool:
        return self.call("is_minter", account)

    def add_minter(self, account: str) -> None:
        self.call("add_minter", account)

    def renounce_minter(self) -> None:
        self.call("renounce_minter")

    # ── Ledger: records ───────────────────────────────────────────

    def mint(self, token_id: int, uri: str) -> None:
        self.call("mint", token_id, uri)

    def bundle_mint(self, token_ids: List[int], uris: List[str]) -> None:
        self.call("bundle_mint", list(token_ids), list(uris))

    def set_token_uri(self, token_id: int, uri: str) -> None:
        self.call("set_token_uri", token_id, uri)

    def exists(self, token_id: int) -> bool:
        return self.call("exists", token_id)

    def owner_of(self, token_id: int) -> str:
        return self.call("owner_of", token_id)

    def balance_of(self, account: str) -> int:
        return self.call("balance_of", account)

    def token_uri(self, token_id: int) -> str:
        return self.call("token_uri", token_id)

    def total_supply(self) -> int:
        return self.call("total_supply")

    def tokens_of_owner(self, account: str) -> List[int]:
        return self.call("tokens_of_owner", account)

    # ── Ledger: approvals ─────────────────────────────────────────

    def approve(self, operator: str, token_id: int) -> None:
        self.call("approve", operator, token_id)

    def get_approved(self, token_id: int) -> str:
        return self.call("get_approved", token_id)

    def set_approval_for_all(self, operator: str, approved: bool) -> None:
        self.call("set_approval_for_all", operator, approved)

    def is_approved_for_all(self, holder: str, operator: str) -> bool:
        return self.call("is_approved_for_all", holder, operator)

    # ── Ledger: transfers & burning ───────────────────────────────

    def transfer_from(self, from_addr: str, to_addr: str, token_id: int) -> None:
        self.call("transfer_from", from_addr, to_addr, token_id)

    def batch_transfer_from(self, from_addr: str, to_addr: str,
                            token_ids: List[int]) -> None:
        self.call("batch_transfer_from", from_addr, to_addr, list(token_ids))

    def bundle_transfer(self, recipients: List[str], token_ids: List[int]) -> None:
        self.call("bundle_transfer", list(recipients), list(token_ids))

    def bundle_burn(self, token_ids: List[int]) -> None:
        self.call("bundle_burn", list(token_ids))

    # ── Proxy admin ───────────────────────────────────────────────

    def implementation(self) -> str:
        return self.call("implementation")

    def proxy_owner(self) -> str:
        return self.call("proxy_owner")

    def maintenance(self) -> bool:
        return self.call("maintenance")

    def upgrade_to(self, new_implementation: str) -> None:
        self.call("upgrade_to", new_implementation)

    def upgrade_to_and_call(self, new_implementation: str, payload: bytes) -> Any:
        return self.call("upgrade_to_and_call", new_implementation, payload.hex())

    def transfer_proxy_ownership(self, new_owner: str) -> None:
        self.call("transfer_proxy_ownership", new_owner)

    def set_maintenance(self, flag: bool) -> None:
        self.call("set_maintenance", flag)
