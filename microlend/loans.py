"""
loans.py - Loan Records and Lifecycle Transitions

Status moves only forward:

    PENDING --activate--> ACTIVE --repay-----> REPAID
                                 --liquidate-> LIQUIDATED

Loan ids are allocated from ContractState.next_loan_id, which is bumped in
the same transaction that stores the loan. A failed request never consumes
an id because validation raises before anything is built.

Liquidation lives in liquidation.py.
"""

from __future__ import annotations
from dataclasses import replace
from typing import List, Optional

from .core import (
    LendingView, PendingTransaction, StateChange, TransactionOrigin, OriginType,
    Loan, LoanStatus,
    TABLE_CONTRACT, TABLE_LOANS, CONTRACT_STATE_KEY,
    NotAuthorized, LoanNotFound, LoanAlreadyActive, LoanNotActive,
    build_transaction,
    _require_identity,
)
from .access import require_owner
from .risk import validate_loan_request, calculate_total_due
from .reputation import completion_change


# ============================================================================
# QUERIES
# ============================================================================

def get_loan(view: LendingView, loan_id: int) -> Optional[Loan]:
    return view.get_loan(loan_id)


def load_loan(view: LendingView, loan_id: int) -> Loan:
    """
    Return the loan or raise.

    Raises:
        LoanNotFound: If loan_id does not exist
    """
    loan = view.get_loan(loan_id)
    if loan is None:
        raise LoanNotFound(f"loan {loan_id} not found")
    return loan


def get_loans_by_borrower(view: LendingView, identity: str) -> List[int]:
    """Ids of all loans requested by identity, ascending."""
    return [
        loan_id for loan_id in view.list_loan_ids()
        if view.get_loan(loan_id).borrower == identity
    ]


def compute_total_due(view: LendingView, loan_id: int) -> int:
    """
    Flat total due for a loan.

    Raises:
        LoanNotFound: If loan_id does not exist
    """
    loan = load_loan(view, loan_id)
    return calculate_total_due(loan.amount, loan.interest_rate_bps)


def created_loan_id(pending: PendingTransaction) -> int:
    """Id of the loan a compute_create_loan_request transaction stores."""
    for sc in pending.changes_for(TABLE_LOANS):
        if sc.old is None:
            return sc.key
    raise ValueError("pending transaction does not create a loan")


# ============================================================================
# LOAN REQUEST
# ============================================================================

def compute_create_loan_request(
    view: LendingView,
    caller: str,
    amount: int,
    collateral_amount: int,
    collateral_asset: str,
    duration_blocks: int,
    interest_rate_bps: int,
    borrow_asset: Optional[str] = None,
) -> PendingTransaction:
    """
    Record a PENDING loan for caller.

    Any identity may request a loan. The request is validated by the risk
    engine; on success the loan is stored and next_loan_id advances.

    Args:
        view: Read-only ledger access
        caller: Borrower identity
        amount: Principal in micro-units
        collateral_amount: Collateral posted, in micro-units of collateral_asset
        collateral_asset: Listed, priced asset symbol
        duration_blocks: Loan term, counted from activation
        interest_rate_bps: Flat rate in basis points
        borrow_asset: Denomination of amount (None = collateral_asset)

    Returns:
        PendingTransaction storing the loan and bumping next_loan_id.
        Use created_loan_id() to read the allocated id.

    Raises:
        EmergencyStopActive, InvalidCollateralAsset, InvalidAmount,
        InsufficientCollateral, InvalidDuration, InvalidInterestRate
    """
    _require_identity("caller", caller)
    validate_loan_request(
        view, amount, collateral_amount, collateral_asset,
        duration_blocks, interest_rate_bps, borrow_asset,
    )

    state = view.get_contract_state()
    loan_id = state.next_loan_id
    loan = Loan(
        id=loan_id,
        borrower=caller,
        amount=amount,
        collateral_amount=collateral_amount,
        collateral_asset=collateral_asset,
        duration_blocks=duration_blocks,
        interest_rate_bps=interest_rate_bps,
        status=LoanStatus.PENDING,
        created_at_block=view.current_block,
        borrow_asset=borrow_asset if borrow_asset != collateral_asset else None,
    )

    changes = [
        StateChange(TABLE_LOANS, loan_id, None, loan),
        StateChange(TABLE_CONTRACT, CONTRACT_STATE_KEY, state, replace(state, next_loan_id=loan_id + 1)),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, "create-loan-request", loan_id)
    return build_transaction(view, changes, origin)


# ============================================================================
# ACTIVATION
# ============================================================================

def compute_activate_loan(view: LendingView, caller: str, loan_id: int) -> PendingTransaction:
    """
    Move a PENDING loan to ACTIVE at the current block.

    Raises:
        NotAuthorized: If caller is not the owner
        LoanNotFound: If loan_id does not exist
        LoanAlreadyActive: If the loan is not PENDING
    """
    require_owner(view, caller)
    loan = load_loan(view, loan_id)
    if loan.status != LoanStatus.PENDING:
        raise LoanAlreadyActive(f"loan {loan_id} is {loan.status.value}")

    activated = replace(loan, status=LoanStatus.ACTIVE, activated_at_block=view.current_block)
    changes = [StateChange(TABLE_LOANS, loan_id, loan, activated)]
    origin = TransactionOrigin(OriginType.ADMINISTRATIVE, caller, "activate-loan", loan_id)
    return build_transaction(view, changes, origin)


# ============================================================================
# REPAYMENT
# ============================================================================

def compute_repay_loan(view: LendingView, caller: str, loan_id: int) -> PendingTransaction:
    """
    Close an ACTIVE loan as REPAID and credit the borrower's reputation.

    The amount owed is calculate_total_due(); moving tokens is left to the
    host. Repayment is allowed after expiry as long as the loan has not
    been liquidated.

    Raises:
        LoanNotFound: If loan_id does not exist
        NotAuthorized: If caller is not the borrower
        LoanNotActive: If the loan is not ACTIVE
    """
    loan = load_loan(view, loan_id)
    if loan.borrower != caller:
        raise NotAuthorized(f"{caller} is not the borrower of loan {loan_id}")
    if loan.status != LoanStatus.ACTIVE:
        raise LoanNotActive(f"loan {loan_id} is {loan.status.value}")

    repaid = replace(loan, status=LoanStatus.REPAID, closed_at_block=view.current_block)
    changes = [
        StateChange(TABLE_LOANS, loan_id, loan, repaid),
        completion_change(view, loan.borrower),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, "repay-loan", loan_id)
    return build_transaction(view, changes, origin)
