"""
event_handlers.py - Event Handler Functions

Simple functions that process Event -> PendingTransaction.
Each handler delegates to the pure functions of the lending modules.

- No handler classes, just functions
- Dict of functions instead of class hierarchy
- Thin adapters between Event and the compute_* functions
"""

from __future__ import annotations
from typing import Dict

from .core import LendingView, PendingTransaction, OriginType, empty_pending_transaction
from .scheduled_events import Event, EventScheduler
from .liquidation import is_defaulted, compute_liquidation
from .assets import compute_update_asset_prices


# ============================================================================
# HANDLER FUNCTIONS
# ============================================================================

def handle_expiry(
    event: Event,
    view: LendingView,
    operator: str,
    prices: Dict[str, int],
) -> PendingTransaction:
    """
    Liquidate the loan if it is still in default at the event's block.

    A loan repaid or already liquidated before its expiry yields an empty
    transaction.
    """
    loan = view.get_loan(event.loan_id)
    if loan is None or not is_defaulted(loan, view.current_block):
        return empty_pending_transaction(view, operator)
    return compute_liquidation(view, operator, event.loan_id, origin_type=OriginType.LIFECYCLE)


def handle_price_update(
    event: Event,
    view: LendingView,
    operator: str,
    prices: Dict[str, int],
) -> PendingTransaction:
    """
    Post a scheduled price for a listed asset.

    A price for a symbol the registry does not list is skipped: the handler
    returns an empty transaction and the event still counts as executed.
    The engine reports such events when verbose.
    """
    params = event.params_dict
    return compute_update_asset_prices(
        view, operator, {params['symbol']: params['price']},
        operation="scheduled-price-update", only_known=True,
    )


# ============================================================================
# DEFAULT HANDLER REGISTRY
# ============================================================================

DEFAULT_HANDLERS = {
    "expiry": handle_expiry,
    "price_update": handle_price_update,
}


def create_default_scheduler() -> EventScheduler:
    """Create a scheduler with all default handlers registered."""
    scheduler = EventScheduler()
    for action, handler in DEFAULT_HANDLERS.items():
        scheduler.register(action, handler)
    return scheduler
