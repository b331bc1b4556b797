"""
risk_report.py - Portfolio Exposure and Price-Shock Stress Testing

Read-only reporting over a LendingView. Nothing here builds transactions.

- calculate_portfolio_summary(): loan counts by status, open principal and
  total due, collateral value at registry prices, minimum collateral ratio
- calculate_ratio_percentiles(): distribution of ACTIVE collateral ratios
- stress_test(): recompute every ACTIVE loan's collateral ratio under
  multiplicative per-asset price shocks and report the loans that fall
  below the minimum ratio

All figures use integer arithmetic. The stress test is vectorized with
numpy over object arrays of Python ints and floors ratios to whole basis
points, exactly as the risk engine does for a single loan.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .core import LendingView, Loan, LoanStatus, BPS_SCALE, PRICE_SCALE
from .risk import calculate_total_due, compute_loan_ratio_bps, _is_cross_asset
from .assets import known_prices


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PortfolioSummary:
    """
    Snapshot of the loan book.

    Attributes:
        loan_count: All loans ever requested
        status_counts: Status name -> number of loans
        open_principal: Sum of amount over PENDING and ACTIVE loans
        open_total_due: Sum of total due over PENDING and ACTIVE loans
        collateral_value: Collateral of open loans at registry prices,
                          in whole price units (price micro-units removed)
        min_collateral_ratio_bps: Lowest ACTIVE ratio, None without ACTIVE loans
    """
    loan_count: int
    status_counts: Dict[str, int]
    open_principal: int
    open_total_due: int
    collateral_value: int
    min_collateral_ratio_bps: Optional[int]


@dataclass(frozen=True, slots=True)
class StressResult:
    """
    Outcome of one stress scenario.

    Attributes:
        shocks: Symbol -> price multiplier applied (missing symbols: 1.0)
        ratios_bps: ACTIVE loan id -> shocked collateral ratio
        breached: Loan ids below the minimum ratio, ascending
    """
    shocks: Dict[str, float]
    ratios_bps: Dict[int, int]
    breached: Tuple[int, ...]

    @property
    def breach_count(self) -> int:
        return len(self.breached)


# ============================================================================
# HELPERS
# ============================================================================

def _loans(view: LendingView, statuses: Sequence[LoanStatus]) -> List[Loan]:
    loans = [view.get_loan(loan_id) for loan_id in view.list_loan_ids()]
    return [loan for loan in loans if loan.status in statuses]


def _prices(view: LendingView, loans: Sequence[Loan]) -> Dict[str, int]:
    """Posted prices of every asset the loans reference; unpriced assets are absent."""
    symbols = sorted(
        {loan.collateral_asset for loan in loans}
        | {loan.borrow_asset for loan in loans if loan.borrow_asset}
    )
    return known_prices(view, symbols)


# ============================================================================
# PORTFOLIO SUMMARY
# ============================================================================

def calculate_portfolio_summary(view: LendingView) -> PortfolioSummary:
    """Summarize the loan book at current registry prices."""
    all_loans = _loans(view, tuple(LoanStatus))
    open_loans = [loan for loan in all_loans if loan.is_open]
    active_loans = [loan for loan in open_loans if loan.status == LoanStatus.ACTIVE]

    status_counts = {status.value: 0 for status in LoanStatus}
    for loan in all_loans:
        status_counts[loan.status.value] += 1

    prices = _prices(view, open_loans)
    collateral_value = sum(
        loan.collateral_amount * prices.get(loan.collateral_asset, 0) for loan in open_loans
    ) // PRICE_SCALE

    ratios = [compute_loan_ratio_bps(view, loan) for loan in active_loans]

    return PortfolioSummary(
        loan_count=len(all_loans),
        status_counts=status_counts,
        open_principal=sum(loan.amount for loan in open_loans),
        open_total_due=sum(calculate_total_due(loan.amount, loan.interest_rate_bps) for loan in open_loans),
        collateral_value=collateral_value,
        min_collateral_ratio_bps=min(ratios) if ratios else None,
    )


def calculate_ratio_percentiles(
    view: LendingView,
    percentiles: Sequence[float] = (5.0, 50.0, 95.0),
) -> Dict[float, float]:
    """
    Percentiles of ACTIVE collateral ratios (bps), linear interpolation.

    Returns an empty dict when there are no ACTIVE loans.
    """
    active = _loans(view, (LoanStatus.ACTIVE,))
    if not active:
        return {}
    ratios = np.array([compute_loan_ratio_bps(view, loan) for loan in active], dtype=float)
    values = np.percentile(ratios, list(percentiles))
    return {float(p): float(v) for p, v in zip(percentiles, values)}


# ============================================================================
# STRESS TESTING
# ============================================================================

def shock_to_fixed(shock: float) -> int:
    """Price multiplier as an integer in parts per PRICE_SCALE (1.0 -> 1_000_000)."""
    return int(round(float(shock) * PRICE_SCALE))


def calculate_shocked_ratios_bps(
    collateral_amounts: np.ndarray,
    collateral_prices: np.ndarray,
    borrowed_amounts: np.ndarray,
    borrow_prices: np.ndarray,
    cross_asset: np.ndarray,
) -> np.ndarray:
    """
    Vectorized collateral ratios in whole basis points, exact integer math.

    Prices must already include any shock. Loans that are not cross-asset
    compare raw amounts, so a shock on their single asset cancels out.
    Values are held in object arrays of Python ints so large amounts do not
    overflow or lose precision; the result matches
    risk.calculate_collateral_ratio_bps loan by loan.

    Raises:
        ValueError: If any borrowed amount or cross-asset borrow price is not positive
    """
    collateral_amounts = np.array([int(v) for v in collateral_amounts], dtype=object)
    collateral_prices = np.array([int(v) for v in collateral_prices], dtype=object)
    borrowed_amounts = np.array([int(v) for v in borrowed_amounts], dtype=object)
    borrow_prices = np.array([int(v) for v in borrow_prices], dtype=object)
    cross = np.asarray(cross_asset, dtype=bool)
    if np.any(borrowed_amounts <= 0):
        raise ValueError("borrowed amounts must be positive")
    if np.any(cross & (borrow_prices <= 0)):
        raise ValueError("borrow prices must be positive for cross-asset loans")
    collateral_value = collateral_amounts * np.where(cross, collateral_prices, 1)
    borrowed_value = borrowed_amounts * np.where(cross, borrow_prices, 1)
    return collateral_value * BPS_SCALE // borrowed_value


def stress_test(view: LendingView, shocks: Mapping[str, float]) -> StressResult:
    """
    Apply multiplicative price shocks and recompute ACTIVE loan ratios.

    Shocked prices are floored to whole price micro-units after converting
    each multiplier to parts per PRICE_SCALE. A multiplier of 1.0 leaves
    ratios exactly as calculate_collateral_ratio_bps reports them.

    Args:
        view: Read-only ledger access
        shocks: Symbol -> multiplier (e.g. {"BTC": 0.6} for a 40% drop)

    Returns:
        StressResult listing loans below the minimum collateral ratio

    Raises:
        ValueError: If a shock is negative

    Example:
        result = stress_test(ledger, {"BTC": 0.5})
        for loan_id in result.breached:
            print(loan_id, result.ratios_bps[loan_id])
    """
    for symbol, shock in shocks.items():
        if shock < 0:
            raise ValueError(f"shock for {symbol} cannot be negative, got {shock}")

    active = _loans(view, (LoanStatus.ACTIVE,))
    if not active:
        return StressResult(shocks=dict(shocks), ratios_bps={}, breached=())

    prices = _prices(view, active)

    def shocked(symbol: str) -> int:
        return prices.get(symbol, 0) * shock_to_fixed(shocks.get(symbol, 1.0)) // PRICE_SCALE

    ratios = calculate_shocked_ratios_bps(
        collateral_amounts=[loan.collateral_amount for loan in active],
        collateral_prices=[shocked(loan.collateral_asset) for loan in active],
        borrowed_amounts=[loan.amount for loan in active],
        borrow_prices=[
            shocked(loan.borrow_asset) if loan.borrow_asset else 1 for loan in active
        ],
        cross_asset=[_is_cross_asset(loan.collateral_asset, loan.borrow_asset) for loan in active],
    )

    ids = np.array([loan.id for loan in active])
    breached_mask = np.asarray(ratios < view.params.min_collateral_ratio_bps, dtype=bool)
    return StressResult(
        shocks=dict(shocks),
        ratios_bps={int(i): int(r) for i, r in zip(ids, ratios)},
        breached=tuple(int(i) for i in ids[breached_mask]),
    )
