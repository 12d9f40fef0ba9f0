"""
Pytest configuration for cardledger tests.
"""
import sys
import os

import pytest

# Make `import cardledger` work without installing the package.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
_SRC_DIR = os.path.join(_ROOT, 'src')

if _SRC_DIR not in sys.path:
	sys.path.insert(0, _SRC_DIR)

from cardledger import CardsLedger, LedgerClient, Runtime, encode_call  # noqa: E402


ADMIN = "0x" + "a1" * 20
MINTER = "0x" + "b2" * 20
ALICE = "0x" + "c3" * 20
BOB = "0x" + "d4" * 20
CAROL = "0x" + "e5" * 20


@pytest.fixture
def runtime():
	return Runtime()


@pytest.fixture
def proxy(runtime):
	"""A proxy owned by ADMIN, not yet pointing at any implementation."""
	return runtime.deploy_proxy(ADMIN)


@pytest.fixture
def implementation(runtime):
	return runtime.deploy(CardsLedger())


@pytest.fixture
def ledger(runtime, proxy, implementation):
	"""Client for an initialized ledger, signed by ADMIN."""
	proxy.upgrade_to_and_call(
		ADMIN, implementation, encode_call("initialize", ADMIN, "Centurion", "CTR")
	)
	return LedgerClient(runtime, proxy.address, ADMIN)


@pytest.fixture
def minted(ledger):
	"""Ledger with cards 1..5 minted to ADMIN."""
	ledger.bundle_mint([1, 2, 3, 4, 5], ["u1", "u2", "u3", "u4", "u5"])
	return ledger
