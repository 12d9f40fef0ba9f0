"""
Tests for the owned upgradeability proxy:
  - admin surface (upgrade, ownership, maintenance)
  - forwarding & byte-for-byte relay
  - storage compatibility across upgrades
  - reserved-slot protection
"""

import logging

import pytest

from cardledger import (
    AuthorizationError,
    CallContext,
    CardsLedger,
    Contract,
    EventType,
    LedgerClient,
    MaintenanceError,
    StateConflictError,
    StorageLayout,
    ValidationError,
    ZERO_ADDRESS,
    encode_call,
    encode_result,
    external,
    filter_events,
    register_code,
    view,
)
from cardledger.proxy import RESERVED_SLOTS
from cardledger.records import CARDS_LAYOUT
from cardledger.storage import VALUE

from conftest import ADMIN, ALICE, BOB, MINTER


# ── Backends used only by these tests ──

class CardsLedgerV2(CardsLedger):
    """Second revision: appends a ``season`` field."""
    layout = StorageLayout("cards", {**CARDS_LAYOUT.fields, "season": VALUE})
    REVISION = 2

    @external
    def set_season(self, ctx: CallContext, season: int) -> None:
        ctx.storage.set(self.layout.key("season"), season)

    @view
    def season(self, ctx: CallContext) -> int:
        return ctx.storage.get(self.layout.key("season"), 0)


class ShrunkLedger(CardsLedger):
    layout = StorageLayout("cards", {"name": VALUE, "symbol": VALUE})


class RenamedLedger(CardsLedger):
    layout = StorageLayout("cards_v2", dict(CARDS_LAYOUT.fields))


class RogueBackend(Contract):
    layout = StorageLayout("rogue", {"note": VALUE})

    @external
    def hijack(self, ctx: CallContext) -> None:
        for slot in RESERVED_SLOTS:
            ctx.storage.set(slot, ctx.caller)


class ShadowingBackend(Contract):
    layout = StorageLayout("shadow", {})

    @view
    def implementation(self, ctx: CallContext) -> str:
        return "shadowed"


register_code("CardsLedgerV2", CardsLedgerV2)
register_code("ShrunkLedger", ShrunkLedger)
register_code("RenamedLedger", RenamedLedger)
register_code("RogueBackend", RogueBackend)
register_code("ShadowingBackend", ShadowingBackend)


# ═══════════════════════════════════════════════════════════════════════════
# Empty proxy
# ═══════════════════════════════════════════════════════════════════════════

class TestFreshProxy:
    def test_initial_state(self, proxy):
        assert proxy.implementation() == ZERO_ADDRESS
        assert proxy.proxy_owner() == ADMIN
        assert proxy.maintenance() is False
        assert proxy.history() == []

    def test_forward_without_implementation(self, runtime, proxy):
        with pytest.raises(StateConflictError, match="implementation not set"):
            runtime.call(ADMIN, proxy.address, encode_call("owner"))

    def test_zero_owner_rejected(self, runtime):
        with pytest.raises(ValidationError):
            runtime.deploy_proxy(ZERO_ADDRESS)


# ═══════════════════════════════════════════════════════════════════════════
# Upgrades
# ═══════════════════════════════════════════════════════════════════════════

class TestUpgradeability:
    def test_upgrade_to(self, proxy, implementation):
        proxy.upgrade_to(ADMIN, implementation)
        assert proxy.implementation() == implementation
        [record] = proxy.history()
        assert record.version == 1
        assert record.address == implementation
        assert record.code_name == "CardsLedger"
        assert record.caller == ADMIN
        upgraded = filter_events(proxy.events, EventType.UPGRADED)
        assert [e.data["version"] for e in upgraded] == [1]

    def test_non_owner_cannot_upgrade(self, proxy, implementation):
        with pytest.raises(AuthorizationError, match="not the proxy owner"):
            proxy.upgrade_to(ALICE, implementation)
        assert proxy.implementation() == ZERO_ADDRESS

    def test_upgrade_to_address_without_code(self, proxy):
        with pytest.raises(ValidationError, match="not a contract"):
            proxy.upgrade_to(ADMIN, "0x" + "9" * 40)

    def test_upgrade_to_current_rejected(self, proxy, implementation):
        proxy.upgrade_to(ADMIN, implementation)
        with pytest.raises(ValidationError, match="already the current"):
            proxy.upgrade_to(ADMIN, implementation)
        assert len(proxy.history()) == 1

    def test_upgrade_preserves_records(self, runtime, minted):
        proxy = runtime.get_proxy(minted.address)
        v2 = runtime.deploy(CardsLedgerV2())
        minted.upgrade_to(v2)

        assert minted.implementation() == v2
        assert minted.owner_of(3) == ADMIN
        assert minted.token_uri(5) == "u5"
        assert minted.balance_of(ADMIN) == 5
        assert minted.owner() == ADMIN
        assert minted.is_minter(ADMIN)

        minted.call("set_season", 2)
        assert minted.call("season") == 2
        assert [r.version for r in proxy.history()] == [1, 2]

    def test_new_revision_initializes_once(self, runtime, minted):
        v2 = runtime.deploy(CardsLedgerV2())
        minted.upgrade_to_and_call(v2, encode_call("initialize", ADMIN, "Centurion II", "CTR2"))
        assert minted.name() == "Centurion II"
        with pytest.raises(StateConflictError, match="already initialized"):
            minted.initialize(ADMIN, "Again", "AGN")

    def test_same_revision_cannot_reinitialize(self, runtime, ledger):
        fresh = runtime.deploy(CardsLedger())
        with pytest.raises(StateConflictError, match="already initialized"):
            ledger.upgrade_to_and_call(fresh, encode_call("initialize", ALICE, "X", "X"))
        assert ledger.owner() == ADMIN

    def test_layout_dropping_field_rejected(self, runtime, ledger, implementation):
        shrunk = runtime.deploy(ShrunkLedger())
        with pytest.raises(ValidationError, match="drops field"):
            ledger.upgrade_to(shrunk)
        assert ledger.implementation() == implementation

    def test_layout_namespace_change_rejected(self, runtime, ledger):
        renamed = runtime.deploy(RenamedLedger())
        with pytest.raises(ValidationError, match="namespace"):
            ledger.upgrade_to(renamed)

    def test_upgrade_and_call_rolls_back_on_failure(self, runtime, minted, implementation):
        proxy = runtime.get_proxy(minted.address)
        v2 = runtime.deploy(CardsLedgerV2())
        n_events = len(proxy.events)
        with pytest.raises(StateConflictError, match="already minted"):
            minted.upgrade_to_and_call(v2, encode_call("mint", 1, "dup"))
        assert minted.implementation() == implementation
        assert len(proxy.history()) == 1
        assert len(proxy.events) == n_events

    def test_upgrade_and_call_returns_result(self, runtime, minted):
        v2 = runtime.deploy(CardsLedgerV2())
        assert minted.upgrade_to_and_call(v2, encode_call("owner_of", 2)) == ADMIN

    def test_upgrade_keeps_owner_and_maintenance(self, runtime, minted):
        minted.set_maintenance(True)
        v2 = runtime.deploy(CardsLedgerV2())
        minted.upgrade_to(v2)
        assert minted.implementation() == v2
        assert minted.maintenance() is True
        assert minted.proxy_owner() == ADMIN

    def test_get_info(self, runtime, minted, implementation):
        info = runtime.get_proxy(minted.address).get_info()
        assert info["address"] == minted.address
        assert info["implementation"] == implementation
        assert info["proxy_owner"] == ADMIN
        assert info["maintenance"] is False
        assert [r.version for r in info["versions"]] == [1]
        assert info["storage_keys"] > 0

    def test_upgrade_and_call_keeps_owner_and_maintenance(self, runtime, minted):
        minted.set_maintenance(True)
        v2 = runtime.deploy(CardsLedgerV2())
        minted.upgrade_to_and_call(v2, encode_call("set_season", 3))
        assert minted.implementation() == v2
        assert minted.call("season") == 3
        assert minted.maintenance() is True
        assert minted.proxy_owner() == ADMIN

    def test_shadowed_selectors_warn(self, runtime, proxy, caplog):
        shadow = runtime.deploy(ShadowingBackend())
        with caplog.at_level(logging.WARNING, logger="cardledger.proxy"):
            proxy.upgrade_to(ADMIN, shadow)
        assert "shadowed" in caplog.text
        client = LedgerClient(runtime, proxy.address, ALICE)
        assert client.implementation() == shadow


# ═══════════════════════════════════════════════════════════════════════════
# Forwarding
# ═══════════════════════════════════════════════════════════════════════════

class TestForwarding:
    def test_payload_and_result_relayed_unchanged(self, runtime, minted, implementation):
        proxy = runtime.get_proxy(minted.address)
        payload = encode_call("owner_of", 1)
        via_proxy = runtime.call(ALICE, proxy.address, payload)
        direct = runtime.code_at(implementation).execute(
            CallContext(storage=proxy.storage, caller=ALICE), payload
        )
        assert via_proxy == direct == encode_result(ADMIN)

    def test_original_caller_is_preserved(self, minted):
        minted.add_minter(MINTER)
        minted.connect(MINTER).renounce_minter()
        assert not minted.is_minter(MINTER)
        assert minted.is_minter(ADMIN)

    def test_unknown_selector(self, minted):
        with pytest.raises(ValidationError, match="unknown selector"):
            minted.call("self_destruct")

    def test_bad_arity(self, minted):
        with pytest.raises(ValidationError, match="bad arguments"):
            minted.call("owner_of")

    def test_malformed_payload(self, runtime, minted):
        with pytest.raises(ValidationError, match="malformed"):
            runtime.call(ADMIN, minted.address, b"\xff\x00")

    def test_backend_cannot_write_reserved_slots(self, runtime, proxy):
        rogue = runtime.deploy(RogueBackend())
        proxy.upgrade_to(ADMIN, rogue)
        with pytest.raises(StateConflictError, match="reserved slot"):
            runtime.call(ALICE, proxy.address, encode_call("hijack"))
        assert proxy.proxy_owner() == ADMIN
        assert proxy.implementation() == rogue


# ═══════════════════════════════════════════════════════════════════════════
# Admin surface over the wire
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminSelectors:
    def test_getters(self, ledger, implementation):
        other = ledger.connect(ALICE)
        assert other.implementation() == implementation
        assert other.proxy_owner() == ADMIN
        assert other.maintenance() is False

    def test_admin_arity(self, runtime, ledger):
        with pytest.raises(ValidationError, match="takes 1 argument"):
            runtime.call(ADMIN, ledger.address, encode_call("upgrade_to"))

    def test_upgrade_and_call_bad_hex(self, runtime, ledger, implementation):
        with pytest.raises(ValidationError, match="hex"):
            runtime.call(ADMIN, ledger.address,
                         encode_call("upgrade_to_and_call", implementation, "zz"))

    def test_transfer_proxy_ownership(self, runtime, ledger):
        ledger.transfer_proxy_ownership(ALICE)
        assert ledger.proxy_owner() == ALICE
        # Ledger ownership is separate.
        assert ledger.owner() == ADMIN
        v2 = runtime.deploy(CardsLedgerV2())
        with pytest.raises(AuthorizationError):
            ledger.upgrade_to(v2)
        ledger.connect(ALICE).upgrade_to(v2)
        assert ledger.implementation() == v2

    def test_proxy_ownership_event(self, runtime, ledger):
        ledger.transfer_proxy_ownership(ALICE)
        proxy = runtime.get_proxy(ledger.address)
        events = filter_events(proxy.events, EventType.PROXY_OWNERSHIP_TRANSFERRED)
        assert events[0].data == {"previous_owner": ADMIN, "new_owner": ALICE}

    def test_transfer_proxy_ownership_to_zero(self, ledger):
        with pytest.raises(ValidationError):
            ledger.transfer_proxy_ownership(ZERO_ADDRESS)

    def test_only_owner_transfers_proxy_ownership(self, ledger):
        with pytest.raises(AuthorizationError):
            ledger.connect(ALICE).transfer_proxy_ownership(ALICE)


class TestMaintenance:
    def test_toggle(self, ledger):
        ledger.set_maintenance(True)
        assert ledger.maintenance() is True
        ledger.set_maintenance(False)
        assert ledger.maintenance() is False

    def test_only_owner_toggles(self, ledger):
        with pytest.raises(AuthorizationError):
            ledger.connect(ALICE).set_maintenance(True)

    def test_flag_must_be_bool(self, ledger):
        with pytest.raises(ValidationError):
            ledger.set_maintenance("yes")

    def test_blocks_state_changes_from_others(self, minted):
        minted.add_minter(MINTER)
        minted.set_maintenance(True)
        with pytest.raises(MaintenanceError, match="maintenance"):
            minted.connect(MINTER).mint(9, "u9")
        with pytest.raises(StateConflictError):
            minted.connect(MINTER).mint(9, "u9")
        assert not minted.exists(9)

    def test_views_stay_available(self, minted):
        minted.set_maintenance(True)
        reader = minted.connect(BOB)
        assert reader.owner_of(1) == ADMIN
        assert reader.balance_of(ADMIN) == 5

    def test_proxy_owner_is_exempt(self, minted):
        minted.set_maintenance(True)
        minted.mint(9, "u9")
        assert minted.owner_of(9) == ADMIN

    def test_unknown_selector_reported_during_maintenance(self, minted):
        minted.set_maintenance(True)
        with pytest.raises(ValidationError, match="unknown selector"):
            minted.connect(BOB).call("no_such_selector")

    def test_lifting_maintenance_restores_access(self, minted):
        minted.add_minter(MINTER)
        minted.set_maintenance(True)
        minted.set_maintenance(False)
        minted.connect(MINTER).mint(9, "u9")
        assert minted.exists(9)
