"""
helpers.py - Shared constants and builders for micro-lending tests
"""

from typing import Any, Dict

from hypothesis import strategies as st

from microlend import LendingLedger, MicroLend, Call, Loan, LoanStatus, CollateralAsset


DEPLOYER = "deployer"
BORROWER = "wallet_1"
OTHER = "wallet_2"

STX_PRICE = 1_500_000           # $1.50 in micro-units
LOAN_AMOUNT = 1_000_000_000     # 1000 STX in micro-units
COLLATERAL = 2_000_000_000      # 200% of LOAN_AMOUNT
DURATION = 1440
RATE_BPS = 1000                 # 10%


def make_loan(
    loan_id: int = 1,
    borrower: str = BORROWER,
    status: LoanStatus = LoanStatus.PENDING,
    created_at_block: int = 0,
    activated_at_block=None,
    **overrides,
) -> Loan:
    """Build a Loan record with sensible defaults."""
    fields = dict(
        id=loan_id,
        borrower=borrower,
        amount=LOAN_AMOUNT,
        collateral_amount=COLLATERAL,
        collateral_asset="STX",
        duration_blocks=DURATION,
        interest_rate_bps=RATE_BPS,
        status=status,
        created_at_block=created_at_block,
        activated_at_block=activated_at_block,
    )
    fields.update(overrides)
    return Loan(**fields)


def stx_asset(price: int = STX_PRICE) -> CollateralAsset:
    return CollateralAsset(symbol="STX", price=price, listed=True)


def ledger_snapshot(ledger: LendingLedger) -> Dict[str, Any]:
    """Comparable snapshot of all lending state."""
    return {
        'contract': ledger.get_contract_state(),
        'assets': dict(ledger.assets),
        'loans': dict(ledger.loans),
        'reputations': dict(ledger.reputations),
        'block': ledger.current_block,
    }


def request_loan(app: MicroLend, caller: str = BORROWER, **overrides) -> int:
    """Request the standard 200% STX loan through the facade."""
    args = dict(
        amount=LOAN_AMOUNT,
        collateral_amount=COLLATERAL,
        collateral_asset="STX",
        duration_blocks=DURATION,
        interest_rate_bps=RATE_BPS,
    )
    args.update(overrides)
    return app.create_loan_request(caller, **args)


# ============================================================================
# RANDOM SCRIPTS (property tests)
# ============================================================================

BORROWERS = (BORROWER, OTHER, "wallet_3")


def lending_ops():
    """Hypothesis strategy for one scripted step against a STX-listed MicroLend."""
    loan_ids = st.integers(min_value=1, max_value=6)
    return st.one_of(
        st.tuples(st.just("request"), st.sampled_from(BORROWERS), st.integers(min_value=1, max_value=4)),
        st.tuples(st.just("activate"), loan_ids),
        st.tuples(st.just("repay"), loan_ids),
        st.tuples(st.just("liquidate"), loan_ids),
        st.tuples(st.just("price"), st.integers(min_value=0, max_value=3_000_000)),
        st.tuples(st.just("toggle")),
        st.tuples(st.just("wait"), st.integers(min_value=1, max_value=2_000)),
    )


def apply_op(app: MicroLend, op) -> None:
    """Run one scripted step as a mined block (or empty blocks for "wait")."""
    kind = op[0]
    if kind == "wait":
        app.mine_empty_blocks(op[1])
        return
    if kind == "request":
        _, borrower, ratio = op
        call = Call("create_loan_request", borrower,
                    (LOAN_AMOUNT, ratio * LOAN_AMOUNT, "STX", DURATION, RATE_BPS))
    elif kind == "activate":
        call = Call("activate_loan", DEPLOYER, (op[1],))
    elif kind == "repay":
        loan = app.get_loan(op[1])
        call = Call("repay_loan", loan.borrower if loan else BORROWER, (op[1],))
    elif kind == "liquidate":
        call = Call("liquidate_loan", DEPLOYER, (op[1],))
    elif kind == "price":
        call = Call("update_asset_price", DEPLOYER, ("STX", op[1]))
    else:
        call = Call("toggle_emergency_stop", DEPLOYER)
    app.mine_block([call])
