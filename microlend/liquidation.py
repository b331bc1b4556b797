"""
liquidation.py - Expiry Detection and Liquidation

A loan is in default once it is ACTIVE and strictly more than
duration_blocks have passed since activation:

    current_block - activated_at_block > duration_blocks

so the first block at which liquidation is allowed is

    expiry_block = activated_at_block + duration_blocks + 1

Liquidation closes the loan as LIQUIDATED and penalizes the borrower's
reputation in the same transaction. Collateral seizure is left to the host.

By default only the owner may liquidate; RiskParameters.open_liquidation
opens it to any identity.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, Optional

from .core import (
    LendingView, PendingTransaction, StateChange, TransactionOrigin, OriginType,
    Loan, LoanStatus, TABLE_LOANS,
    LoanNotDefaulted,
    build_transaction, empty_pending_transaction,
)
from .access import require_owner
from .loans import load_loan
from .reputation import default_change


# ============================================================================
# PURE DETECTION
# ============================================================================

def expiry_block(loan: Loan) -> Optional[int]:
    """First block at which the loan may be liquidated, or None if never activated."""
    if loan.activated_at_block is None:
        return None
    return loan.activated_at_block + loan.duration_blocks + 1


def blocks_until_expiry(loan: Loan, block_height: int) -> Optional[int]:
    """Blocks remaining before the loan defaults (0 once in default)."""
    expiry = expiry_block(loan)
    if expiry is None:
        return None
    return max(0, expiry - block_height)


def is_defaulted(loan: Loan, block_height: int) -> bool:
    """True if the loan is ACTIVE and past its duration (strict)."""
    if loan.status != LoanStatus.ACTIVE or loan.activated_at_block is None:
        return False
    return block_height - loan.activated_at_block > loan.duration_blocks


# ============================================================================
# LIQUIDATION
# ============================================================================

def compute_liquidation(
    view: LendingView,
    caller: str,
    loan_id: int,
    origin_type: OriginType = OriginType.ADMINISTRATIVE,
) -> PendingTransaction:
    """
    Liquidate a defaulted loan.

    Args:
        view: Read-only ledger access
        caller: Identity making the call
        loan_id: Loan to liquidate
        origin_type: ADMINISTRATIVE for direct calls, LIFECYCLE for the engine

    Returns:
        PendingTransaction marking the loan LIQUIDATED and recording
        one default against the borrower

    Raises:
        NotAuthorized: If liquidation is owner-gated and caller is not the owner
        LoanNotFound: If loan_id does not exist
        LoanNotDefaulted: If the loan is not ACTIVE or not past its duration

    Example:
        # Activated at 10 with duration 1440: allowed from block 1451
        pending = compute_liquidation(ledger, "deployer", 1)
        ledger.execute(pending)
    """
    if not view.params.open_liquidation:
        require_owner(view, caller)

    loan = load_loan(view, loan_id)
    if not is_defaulted(loan, view.current_block):
        raise LoanNotDefaulted(
            f"loan {loan_id} is not in default at block {view.current_block} "
            f"(status {loan.status.value}, expiry {expiry_block(loan)})"
        )

    liquidated = replace(loan, status=LoanStatus.LIQUIDATED, closed_at_block=view.current_block)
    changes = [
        StateChange(TABLE_LOANS, loan_id, loan, liquidated),
        default_change(view, loan.borrower),
    ]
    origin = TransactionOrigin(origin_type, caller, "liquidate-loan", loan_id)
    return build_transaction(view, changes, origin)


# ============================================================================
# SMART CONTRACT
# ============================================================================

def liquidation_contract(
    view: LendingView,
    operator: str,
    loan_id: int,
    block_height: int,
    prices: Dict[str, int],
) -> PendingTransaction:
    """
    SmartContract function for automatic liquidation of expired loans.

    This function provides the SmartContract interface required by LifecycleEngine.

    Returns:
        PendingTransaction liquidating the loan if it is in default,
        or an empty transaction otherwise.

    Raises:
        NotAuthorized: If liquidation is owner-gated and operator is not the owner
    """
    loan = view.get_loan(loan_id)
    if loan is None or not is_defaulted(loan, block_height):
        return empty_pending_transaction(view, operator)
    return compute_liquidation(view, operator, loan_id, origin_type=OriginType.LIFECYCLE)
