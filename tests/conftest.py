"""
conftest.py - Shared pytest fixtures for micro-lending tests

Provides common fixtures used across unit, functional and conformance tests:
- Ledgers (empty, with a priced STX asset)
- MicroLend facades (fresh, STX listed)

Constants and builders live in tests/helpers.py.
"""

import pytest

from microlend import (
    LendingLedger, MicroLend, Call,
    compute_add_collateral_asset, compute_update_asset_price,
)

from tests.helpers import DEPLOYER, STX_PRICE


@pytest.fixture
def ledger():
    """Empty ledger owned by the deployer."""
    return LendingLedger("test", owner=DEPLOYER, verbose=False)


@pytest.fixture
def stx_ledger(ledger):
    """Ledger with STX listed and priced."""
    ledger.execute(compute_add_collateral_asset(ledger, DEPLOYER, "STX"))
    ledger.execute(compute_update_asset_price(ledger, DEPLOYER, "STX", STX_PRICE))
    return ledger


@pytest.fixture
def app():
    """Fresh MicroLend facade."""
    return MicroLend(DEPLOYER)


@pytest.fixture
def stx_app(app):
    """MicroLend with STX listed and priced in one mined block."""
    receipts = app.mine_block([
        Call("add_collateral_asset", DEPLOYER, ("STX",)),
        Call("update_asset_price", DEPLOYER, ("STX", STX_PRICE)),
    ])
    assert all(r.ok for r in receipts)
    return app
