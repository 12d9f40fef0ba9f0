"""
Tests for the runtime: deployment, routing and persistence.
"""

import re

import pytest

from cardledger import (
    CardsLedger,
    LedgerClient,
    NotFoundError,
    Runtime,
    ValidationError,
    encode_call,
)
from cardledger.backend import Contract, view
from cardledger.storage import MemoryBackend, SQLiteBackend, StorageLayout

from conftest import ADMIN, ALICE


class UnregisteredBackend(Contract):
    layout = StorageLayout("loose", {})

    @view
    def ping(self, ctx):
        return "pong"


def _deploy_minted(runtime, **ledger_kwargs):
    proxy = runtime.deploy_proxy(ADMIN)
    impl = runtime.deploy(CardsLedger(**ledger_kwargs))
    proxy.upgrade_to_and_call(ADMIN, impl, encode_call("initialize", ADMIN, "Centurion", "CTR"))
    client = LedgerClient(runtime, proxy.address, ADMIN)
    client.bundle_mint([1, 2, 3], ["u1", "u2", "u3"])
    return client, impl


class TestDeployment:
    def test_addresses_are_distinct_and_well_formed(self, runtime):
        a = runtime.deploy(CardsLedger())
        b = runtime.deploy(CardsLedger())
        p = runtime.deploy_proxy(ADMIN).address
        assert len({a, b, p}) == 3
        for address in (a, b, p):
            assert re.fullmatch(r"0x[0-9a-f]{40}", address)

    def test_code_at(self, runtime):
        backend = CardsLedger()
        address = runtime.deploy(backend)
        assert runtime.code_at(address) is backend
        assert runtime.code_at("0x" + "0" * 40) is None

    def test_unregistered_backend_rejected(self, runtime):
        with pytest.raises(ValidationError, match="not registered"):
            runtime.deploy(UnregisteredBackend())

    def test_non_backend_rejected(self, runtime):
        with pytest.raises(ValidationError):
            runtime.deploy(object())

    def test_call_unknown_proxy(self, runtime):
        with pytest.raises(NotFoundError):
            runtime.call(ADMIN, "0x" + "1" * 40, encode_call("owner"))

    def test_get_info(self, runtime, ledger, implementation):
        info = runtime.get_info()
        assert info["backends"] == {implementation: "CardsLedger"}
        assert info["proxies"] == [ledger.address]


class TestPersistence:
    def test_memory_round_trip(self, runtime):
        client, impl = _deploy_minted(runtime)
        store = MemoryBackend()
        runtime.save(store)

        loaded = Runtime.load(store)
        again = LedgerClient(loaded, client.address, ADMIN)
        assert again.implementation() == impl
        assert again.owner_of(2) == ADMIN
        assert again.token_uri(3) == "u3"
        assert again.name() == "Centurion"
        assert [r.version for r in loaded.get_proxy(client.address).history()] == [1]

    def test_sqlite_round_trip(self, runtime, tmp_path):
        client, _ = _deploy_minted(runtime)
        db = tmp_path / "state" / "cards.db"
        store = SQLiteBackend(str(db))
        runtime.save(store)
        store.close()

        store = SQLiteBackend(str(db))
        loaded = Runtime.load(store)
        store.close()
        again = LedgerClient(loaded, client.address, ADMIN)
        again.transfer_from(ADMIN, ALICE, 1)
        assert again.owner_of(1) == ALICE
        assert again.balance_of(ADMIN) == 2

    def test_backend_config_survives_reload(self, runtime):
        client, impl = _deploy_minted(runtime, max_batch_size=3)
        store = MemoryBackend()
        runtime.save(store)

        loaded = Runtime.load(store)
        assert loaded.code_at(impl).max_batch_size == 3
        with pytest.raises(ValidationError, match="exceeds limit of 3"):
            LedgerClient(loaded, client.address, ADMIN).batch_transfer_from(ADMIN, ALICE, [1, 2, 3, 4])

    def test_deploy_after_reload_gets_fresh_address(self, runtime):
        _, impl = _deploy_minted(runtime)
        store = MemoryBackend()
        runtime.save(store)

        loaded = Runtime.load(store)
        fresh = loaded.deploy(CardsLedger())
        assert fresh != impl
        assert loaded.code_at(impl) is not None

    def test_corrupt_record(self):
        store = MemoryBackend()
        store.put("code", "0xabc", "not json")
        with pytest.raises(ValidationError, match="Corrupt"):
            Runtime.load(store)

    def test_unknown_code_name(self):
        store = MemoryBackend()
        store.put_json("code", "0xabc", {"code_name": "NoSuchLedger", "config": {}})
        with pytest.raises(ValidationError, match="Unknown backend code"):
            Runtime.load(store)
