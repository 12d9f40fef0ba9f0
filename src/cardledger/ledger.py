"""
Card ledger backend.

``CardsLedger`` is the logic a proxy forwards to: an ownership ledger of
caller-chosen token ids with per-token URIs, a minter role, a single
administrative owner and holder-delegated approvals.  It keeps no state
of its own: every selector runs against the calling proxy's storage
through :class:`~cardledger.records.LedgerStore`.

Batch selectors validate every argument before they write anything, and
the proxy wraps each call in a storage transaction, so a rejected batch
never leaves a partial effect.

Usage::

    ledger = CardsLedger(max_batch_size=400)
    address = runtime.deploy(ledger)
    proxy.upgrade_to_and_call(
        admin, address, encode_call("initialize", admin, "Centurion", "CTR"),
    )
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from .access import HolderCapability, MinterCapability, OwnerCapability
from .backend import CallContext, Contract, external, register_code, view
from .config import DEFAULT_MAX_BATCH_SIZE, LedgerConfig
from .errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from .events import (
    ApprovalEvent,
    ApprovalForAllEvent,
    InitializedEvent,
    MinterEvent,
    OwnershipTransferredEvent,
    TransferEvent,
)
from .records import CARDS_LAYOUT, ZERO_ADDRESS, LedgerStore, is_zero

logger = logging.getLogger("cardledger.ledger")


# ── Argument checks ────────────────────────────────────────────────────

def _token_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"Cards: invalid token id {value!r}")
    return value


def _account(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Cards: invalid account {value!r}")
    return value


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Cards: expected a string, got {type(value).__name__}")
    return value


def _no_duplicates(token_ids: Sequence[int]) -> None:
    seen = set()
    for token_id in token_ids:
        if token_id in seen:
            raise ValidationError(f"Cards: duplicate TokenId {token_id}")
        seen.add(token_id)


class CardsLedger(Contract):
    """Permissioned, batch-oriented ownership ledger."""

    layout = CARDS_LAYOUT
    REVISION = 1

    def __init__(self, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE):
        if isinstance(max_batch_size, bool) or not isinstance(max_batch_size, int) \
                or max_batch_size <= 0:
            raise ValidationError(f"max_batch_size must be a positive integer, got {max_batch_size!r}")
        self.max_batch_size = max_batch_size

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "CardsLedger":
        return cls(max_batch_size=config.max_batch_size)

    def config_dict(self) -> Dict[str, Any]:
        return {"max_batch_size": self.max_batch_size}

    def _store(self, ctx: CallContext) -> LedgerStore:
        return LedgerStore(ctx.storage, self.layout)

    def _batch(self, values: Any) -> List[Any]:
        if not isinstance(values, list) or not values:
            raise ValidationError("Cards: Invalid batch-size")
        if len(values) > self.max_batch_size:
            raise ValidationError(
                f"Cards: batch-size {len(values)} exceeds limit of {self.max_batch_size}"
            )
        return values

    # ══════════════════════════════════════════════════════════════════
    #  Initialization & ownership
    # ══════════════════════════════════════════════════════════════════

    @external
    def initialize(self, ctx: CallContext, owner: str, name: str, symbol: str) -> None:
        """One-time setup for this revision: owner, minter grant, metadata."""
        store = self._store(ctx)
        if store.is_initialized(self.REVISION):
            raise StateConflictError("Initializable: contract is already initialized")
        owner = _account(owner)
        if is_zero(owner):
            raise ValidationError("Cards: owner is the zero address")
        name, symbol = _text(name), _text(symbol)

        previous = store.owner()
        store.mark_initialized(self.REVISION)
        store.set_metadata(name, symbol)
        store.set_owner(owner)
        ctx.emit(InitializedEvent(self.REVISION))
        if previous != owner:
            ctx.emit(OwnershipTransferredEvent(previous, owner))
        if not store.is_minter(owner):
            store.set_minter(owner, True)
            ctx.emit(MinterEvent(owner, added=True))

        logger.info("Ledger %s initialized (rev %d) owner=%s name=%s",
                    ctx.address, self.REVISION, owner, name)

    @view
    def owner(self, ctx: CallContext) -> str:
        return self._store(ctx).owner()

    @external
    def transfer_ownership(self, ctx: CallContext, new_owner: str) -> None:
        store = self._store(ctx)
        OwnerCapability(store).require(ctx.caller)
        new_owner = _account(new_owner)
        if is_zero(new_owner):
            raise ValidationError("Ownable: new owner is the zero address")
        previous = store.owner()
        store.set_owner(new_owner)
        ctx.emit(OwnershipTransferredEvent(previous, new_owner))
        logger.info("Ledger %s ownership %s -> %s", ctx.address, previous, new_owner)

    @view
    def name(self, ctx: CallContext) -> str:
        return self._store(ctx).name()

    @view
    def symbol(self, ctx: CallContext) -> str:
        return self._store(ctx).symbol()

    # ══════════════════════════════════════════════════════════════════
    #  Minter role
    # ══════════════════════════════════════════════════════════════════

    @view
    def is_minter(self, ctx: CallContext, account: str) -> bool:
        return self._store(ctx).is_minter(_account(account))

    @external
    def add_minter(self, ctx: CallContext, account: str) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        account = _account(account)
        if is_zero(account):
            raise ValidationError("MinterRole: account is the zero address")
        if not store.is_minter(account):
            store.set_minter(account, True)
            ctx.emit(MinterEvent(account, added=True))

    @external
    def renounce_minter(self, ctx: CallContext) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        store.set_minter(ctx.caller, False)
        ctx.emit(MinterEvent(ctx.caller, added=False))

    # ══════════════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════════════

    @view
    def exists(self, ctx: CallContext, token_id: int) -> bool:
        return self._store(ctx).exists(_token_id(token_id))

    @view
    def owner_of(self, ctx: CallContext, token_id: int) -> str:
        holder = self._store(ctx).holder(_token_id(token_id))
        if is_zero(holder):
            raise NotFoundError("Cards: Invalid TokenId")
        return holder

    @view
    def balance_of(self, ctx: CallContext, account: str) -> int:
        account = _account(account)
        if is_zero(account):
            raise ValidationError("Cards: balance query for the zero address")
        return self._store(ctx).balance(account)

    @view
    def token_uri(self, ctx: CallContext, token_id: int) -> str:
        store = self._store(ctx)
        token_id = _token_id(token_id)
        if not store.exists(token_id):
            raise NotFoundError("Cards: URI query for nonexistent token")
        return store.token_uri(token_id)

    @view
    def total_supply(self, ctx: CallContext) -> int:
        return self._store(ctx).total_supply()

    @view
    def tokens_of_owner(self, ctx: CallContext, account: str) -> List[int]:
        return self._store(ctx).tokens_of(_account(account))

    @view
    def get_approved(self, ctx: CallContext, token_id: int) -> str:
        store = self._store(ctx)
        token_id = _token_id(token_id)
        if not store.exists(token_id):
            raise NotFoundError("Cards: approved query for nonexistent token")
        return store.approved(token_id)

    @view
    def is_approved_for_all(self, ctx: CallContext, holder: str, operator: str) -> bool:
        return self._store(ctx).is_operator(_account(holder), _account(operator))

    # ══════════════════════════════════════════════════════════════════
    #  Approvals
    # ══════════════════════════════════════════════════════════════════

    @external
    def approve(self, ctx: CallContext, operator: str, token_id: int) -> None:
        store = self._store(ctx)
        operator = _account(operator)
        token_id = _token_id(token_id)
        holder = store.holder(token_id)
        if is_zero(holder):
            raise NotFoundError("Cards: Invalid TokenId")
        if operator == holder:
            raise ValidationError("Cards: approval to current owner")
        HolderCapability(store).require_holder_or_operator(
            ctx.caller, holder,
            "Cards: approve caller is not owner nor approved for all",
        )
        store.set_approved(token_id, operator)
        ctx.emit(ApprovalEvent(holder, operator or ZERO_ADDRESS, token_id))

    @external
    def set_approval_for_all(self, ctx: CallContext, operator: str, approved: bool) -> None:
        store = self._store(ctx)
        operator = _account(operator)
        if not isinstance(approved, bool):
            raise ValidationError(f"Cards: approval flag must be a bool, got {approved!r}")
        if is_zero(operator):
            raise ValidationError("Cards: approve to the zero address")
        if operator == ctx.caller:
            raise ValidationError("Cards: approve to caller")
        store.set_operator(ctx.caller, operator, approved)
        ctx.emit(ApprovalForAllEvent(ctx.caller, operator, approved))

    # ══════════════════════════════════════════════════════════════════
    #  Minting & metadata
    # ══════════════════════════════════════════════════════════════════

    def _mint(self, ctx: CallContext, store: LedgerStore, to: str,
              token_id: int, uri: str) -> None:
        store.set_holder(token_id, to)
        store.set_token_uri(token_id, uri or None)
        store.adjust_balance(to, 1)
        store.adjust_supply(1)
        ctx.emit(TransferEvent(ZERO_ADDRESS, to, token_id))

    def _recipient(self, store: LedgerStore) -> str:
        # Mints always land with the ledger owner, whichever minter asks.
        recipient = store.owner()
        if is_zero(recipient):
            raise StateConflictError("Cards: ledger is not initialized")
        return recipient

    @external
    def mint(self, ctx: CallContext, token_id: int, uri: str) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        token_id = _token_id(token_id)
        uri = _text(uri)
        if store.exists(token_id):
            raise StateConflictError(f"Cards: token {token_id} already minted")
        self._mint(ctx, store, self._recipient(store), token_id, uri)

    @external
    def bundle_mint(self, ctx: CallContext, token_ids: List[int], uris: List[str]) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        token_ids = [_token_id(t) for t in self._batch(token_ids)]
        if not isinstance(uris, list) or len(uris) != len(token_ids):
            raise ValidationError("Cards: Batch-size mismatch")
        uris = [_text(u) for u in uris]

        seen = set()
        for token_id in token_ids:
            if token_id in seen or store.exists(token_id):
                raise StateConflictError(f"Cards: token {token_id} already minted")
            seen.add(token_id)

        recipient = self._recipient(store)
        for token_id, uri in zip(token_ids, uris):
            self._mint(ctx, store, recipient, token_id, uri)
        logger.debug("Ledger %s bundle-minted %d tokens to %s",
                     ctx.address, len(token_ids), recipient)

    @external
    def set_token_uri(self, ctx: CallContext, token_id: int, uri: str) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        token_id = _token_id(token_id)
        if not store.exists(token_id):
            raise NotFoundError("Cards: URI set of nonexistent token")
        store.set_token_uri(token_id, _text(uri) or None)

    # ══════════════════════════════════════════════════════════════════
    #  Transfers
    # ══════════════════════════════════════════════════════════════════

    def _move(self, ctx: CallContext, store: LedgerStore, from_addr: str,
              to_addr: str, token_id: int) -> None:
        store.set_approved(token_id, None)
        store.adjust_balance(from_addr, -1)
        store.adjust_balance(to_addr, 1)
        store.set_holder(token_id, to_addr)
        ctx.emit(TransferEvent(from_addr, to_addr, token_id))

    @external
    def transfer_from(self, ctx: CallContext, from_addr: str, to_addr: str,
                      token_id: int) -> None:
        store = self._store(ctx)
        from_addr = _account(from_addr)
        to_addr = _account(to_addr)
        token_id = _token_id(token_id)
        HolderCapability(store).require_approved_or_holder(ctx.caller, token_id)
        if store.holder(token_id) != from_addr:
            raise ValidationError("Cards: transfer of token that is not own")
        if is_zero(to_addr):
            raise ValidationError("Cards: transfer to the zero address")
        self._move(ctx, store, from_addr, to_addr, token_id)

    @external
    def batch_transfer_from(self, ctx: CallContext, from_addr: str, to_addr: str,
                            token_ids: List[int]) -> None:
        store = self._store(ctx)
        from_addr = _account(from_addr)
        to_addr = _account(to_addr)
        HolderCapability(store).require_holder_or_operator(
            ctx.caller, from_addr,
            "Cards: transfer caller is not owner nor approved",
        )
        token_ids = [_token_id(t) for t in self._batch(token_ids)]
        if is_zero(to_addr):
            raise ValidationError("Cards: Invalid receiver address")
        _no_duplicates(token_ids)
        for token_id in token_ids:
            if not store.exists(token_id):
                raise NotFoundError("Cards: Invalid TokenId")
        for token_id in token_ids:
            if store.holder(token_id) != from_addr:
                raise AuthorizationError("Cards: transfer caller is not owner nor approved")

        for token_id in token_ids:
            self._move(ctx, store, from_addr, to_addr, token_id)
        logger.debug("Ledger %s batch-transferred %d tokens %s -> %s",
                     ctx.address, len(token_ids), from_addr, to_addr)

    @external
    def bundle_transfer(self, ctx: CallContext, recipients: List[str],
                        token_ids: List[int]) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        token_ids = [_token_id(t) for t in self._batch(token_ids)]
        if not isinstance(recipients, list) or len(recipients) != len(token_ids):
            raise ValidationError("Cards: Batch-size mismatch")
        recipients = [_account(r) for r in recipients]
        if any(is_zero(r) for r in recipients):
            raise ValidationError("Cards: Invalid receiver address")
        _no_duplicates(token_ids)
        for token_id in token_ids:
            if not store.exists(token_id):
                raise NotFoundError("Cards: Invalid TokenId")
        for token_id in token_ids:
            if store.holder(token_id) != ctx.caller:
                raise StateConflictError("Cards: Only token owner can transfer")

        for recipient, token_id in zip(recipients, token_ids):
            self._move(ctx, store, ctx.caller, recipient, token_id)

    # ══════════════════════════════════════════════════════════════════
    #  Burning
    # ══════════════════════════════════════════════════════════════════

    @external
    def bundle_burn(self, ctx: CallContext, token_ids: List[int]) -> None:
        store = self._store(ctx)
        MinterCapability(store).require(ctx.caller)
        token_ids = [_token_id(t) for t in self._batch(token_ids)]
        _no_duplicates(token_ids)
        for token_id in token_ids:
            if not store.exists(token_id):
                raise NotFoundError("Cards: Invalid TokenId")
        for token_id in token_ids:
            if store.holder(token_id) != ctx.caller:
                raise StateConflictError("Cards: Only token owner can burn")

        for token_id in token_ids:
            store.set_approved(token_id, None)
            store.adjust_balance(ctx.caller, -1)
            store.set_holder(token_id, None)
            store.set_token_uri(token_id, None)
            store.adjust_supply(-1)
            ctx.emit(TransferEvent(ctx.caller, ZERO_ADDRESS, token_id))
        logger.debug("Ledger %s burned %d tokens held by %s",
                     ctx.address, len(token_ids), ctx.caller)


register_code("CardsLedger", CardsLedger)
