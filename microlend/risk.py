"""
risk.py - Collateral Valuation and Loan Eligibility

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No LendingView, no hidden state
   - Integer arithmetic only (micro-units and basis points)

2. VALIDATION (validate_loan_request):
   - Reads the asset registry, contract state and RiskParameters through
     the LendingView
   - Raises the first failing LendingError in a fixed order

Key Formulas:
    collateral_ratio_bps = collateral_value * 10000 // borrowed_value
    total_due = amount + amount * interest_rate_bps // 10000   (flat, truncating)

Values are the raw amounts when the loan is denominated in its collateral
asset. For a cross-asset loan both sides are priced from the registry:
    collateral_value = collateral_amount * collateral_price
    borrowed_value = amount * borrow_price
"""

from __future__ import annotations
from typing import Optional, Tuple

from .core import (
    LendingView, Loan, RiskParameters,
    BPS_SCALE,
    InsufficientCollateral, InvalidAmount, InvalidDuration, InvalidInterestRate,
    _require_uint,
)
from .access import require_not_stopped
from .assets import get_asset_price


# ============================================================================
# PURE CALCULATION FUNCTIONS - No LendingView, All Inputs Explicit
# ============================================================================

def calculate_collateral_ratio_bps(collateral_value: int, borrowed_value: int) -> int:
    """
    Collateral ratio in basis points, truncating.

    Example:
        calculate_collateral_ratio_bps(2_000_000_000, 1_000_000_000)  # 20000 (200%)

    Raises:
        ValueError: If borrowed_value is zero
    """
    _require_uint("collateral_value", collateral_value)
    _require_uint("borrowed_value", borrowed_value)
    if borrowed_value == 0:
        raise ValueError("borrowed_value must be greater than zero")
    return collateral_value * BPS_SCALE // borrowed_value


def calculate_interest(amount: int, interest_rate_bps: int) -> int:
    """Flat interest for the whole term, truncating."""
    _require_uint("amount", amount)
    _require_uint("interest_rate_bps", interest_rate_bps)
    return amount * interest_rate_bps // BPS_SCALE


def calculate_total_due(amount: int, interest_rate_bps: int) -> int:
    """
    Principal plus flat interest. Independent of elapsed blocks.

    Example:
        calculate_total_due(1_000_000_000, 1000)  # 1_100_000_000
    """
    return amount + calculate_interest(amount, interest_rate_bps)


def meets_collateral_requirement(ratio_bps: int, params: RiskParameters) -> bool:
    return ratio_bps >= params.min_collateral_ratio_bps


def duration_in_bounds(duration_blocks: int, params: RiskParameters) -> bool:
    return params.min_duration_blocks <= duration_blocks <= params.max_duration_blocks


def rate_in_bounds(interest_rate_bps: int, params: RiskParameters) -> bool:
    return interest_rate_bps <= params.max_interest_rate_bps


# ============================================================================
# ADAPTER FUNCTIONS - Bridge Between LendingView and Pure Functions
# ============================================================================

def _is_cross_asset(collateral_asset: str, borrow_asset: Optional[str]) -> bool:
    return borrow_asset is not None and borrow_asset != collateral_asset


def compute_values(
    view: LendingView,
    amount: int,
    collateral_amount: int,
    collateral_asset: str,
    borrow_asset: Optional[str] = None,
) -> Tuple[int, int]:
    """
    Return (collateral_value, borrowed_value) for the ratio check.

    Raises:
        InvalidCollateralAsset: If an asset involved is not listed or has no price
    """
    collateral_price = get_asset_price(view, collateral_asset)
    if not _is_cross_asset(collateral_asset, borrow_asset):
        return collateral_amount, amount
    borrow_price = get_asset_price(view, borrow_asset)
    return collateral_amount * collateral_price, amount * borrow_price


def compute_loan_ratio_bps(view: LendingView, loan: Loan) -> int:
    """Current collateral ratio of an existing loan at registry prices."""
    collateral_value, borrowed_value = compute_values(
        view, loan.amount, loan.collateral_amount, loan.collateral_asset, loan.borrow_asset,
    )
    return calculate_collateral_ratio_bps(collateral_value, borrowed_value)


# ============================================================================
# LOAN REQUEST VALIDATION
# ============================================================================

def validate_loan_request(
    view: LendingView,
    amount: int,
    collateral_amount: int,
    collateral_asset: str,
    duration_blocks: int,
    interest_rate_bps: int,
    borrow_asset: Optional[str] = None,
) -> None:
    """
    Check a loan request against the configured limits.

    Checks, in order (the first failure is raised):
    1. EmergencyStopActive
    2. InvalidCollateralAsset - asset not listed or no price posted
    3. InvalidAmount - amount is zero
    4. InsufficientCollateral - ratio below the minimum
    5. InvalidDuration - outside [min_duration_blocks, max_duration_blocks]
    6. InvalidInterestRate - above max_interest_rate_bps

    Raises:
        LendingError subclass for the first failing check
        ValueError: If any integer argument is negative
    """
    for name, value in (
        ("amount", amount),
        ("collateral_amount", collateral_amount),
        ("duration_blocks", duration_blocks),
        ("interest_rate_bps", interest_rate_bps),
    ):
        _require_uint(name, value)

    params = view.params
    require_not_stopped(view)

    collateral_value, borrowed_value = compute_values(
        view, amount, collateral_amount, collateral_asset, borrow_asset,
    )

    if amount == 0:
        raise InvalidAmount("loan amount must be greater than zero")

    ratio_bps = calculate_collateral_ratio_bps(collateral_value, borrowed_value)
    if not meets_collateral_requirement(ratio_bps, params):
        raise InsufficientCollateral(
            f"collateral ratio {ratio_bps} bps below minimum {params.min_collateral_ratio_bps} bps"
        )

    if not duration_in_bounds(duration_blocks, params):
        raise InvalidDuration(
            f"duration {duration_blocks} outside "
            f"[{params.min_duration_blocks}, {params.max_duration_blocks}]"
        )

    if not rate_in_bounds(interest_rate_bps, params):
        raise InvalidInterestRate(
            f"interest rate {interest_rate_bps} bps above maximum {params.max_interest_rate_bps} bps"
        )

