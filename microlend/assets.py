"""
assets.py - Collateral Asset Registry and Price Feed

The owner lists assets that may back loans and posts their prices.
Prices are posted in micro-units; a listed asset with price 0 has no
price yet and cannot back a loan.

Re-adding a listed asset changes nothing and keeps its price. Prices can
only be posted for listed assets.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Mapping, Optional

from .core import (
    LendingView, PendingTransaction, StateChange, TransactionOrigin, OriginType,
    CollateralAsset, TABLE_ASSETS,
    InvalidPrice, InvalidCollateralAsset,
    build_transaction, empty_pending_transaction,
    _require_identity, _require_uint,
)
from .access import require_owner


# ============================================================================
# QUERIES
# ============================================================================

def get_asset(view: LendingView, symbol: str) -> Optional[CollateralAsset]:
    return view.get_asset(symbol)


def get_asset_price(view: LendingView, symbol: str) -> int:
    """
    Return the posted price of a listed asset.

    Raises:
        InvalidCollateralAsset: If the asset is not listed or has no price
    """
    asset = view.get_asset(symbol)
    if asset is None or not asset.is_priced:
        raise InvalidCollateralAsset(f"asset {symbol} is not listed or has no price")
    return asset.price


# ============================================================================
# PURE HELPERS
# ============================================================================

def listed(asset: Optional[CollateralAsset], symbol: str) -> CollateralAsset:
    """Return the listed version of an asset record, keeping any posted price."""
    if asset is None:
        return CollateralAsset(symbol=symbol, price=0, listed=True)
    return replace(asset, listed=True)


def priced(asset: Optional[CollateralAsset], symbol: str, price: int) -> CollateralAsset:
    """
    Return the asset record carrying a new price.

    Raises:
        InvalidCollateralAsset: If the asset is not listed
        InvalidPrice: If price is zero
    """
    if asset is None or not asset.listed:
        raise InvalidCollateralAsset(f"asset {symbol} is not listed")
    _require_uint("price", price)
    if price == 0:
        raise InvalidPrice(f"price for {symbol} must be greater than zero")
    return replace(asset, price=price)


# ============================================================================
# ADMINISTRATIVE TRANSACTIONS
# ============================================================================

def compute_add_collateral_asset(
    view: LendingView,
    caller: str,
    symbol: str,
) -> PendingTransaction:
    """
    List an asset as acceptable collateral.

    Raises:
        NotAuthorized: If caller is not the owner
        ValueError: If symbol is empty
    """
    require_owner(view, caller)
    _require_identity("symbol", symbol)

    current = view.get_asset(symbol)
    if current is not None and current.listed:
        return empty_pending_transaction(view, caller)

    changes = [StateChange(TABLE_ASSETS, symbol, current, listed(current, symbol))]
    origin = TransactionOrigin(OriginType.ADMINISTRATIVE, caller, "add-collateral-asset")
    return build_transaction(view, changes, origin)


def compute_update_asset_price(
    view: LendingView,
    caller: str,
    symbol: str,
    price: int,
) -> PendingTransaction:
    """
    Post a new price for an asset.

    Raises:
        NotAuthorized: If caller is not the owner
        InvalidCollateralAsset: If the asset is not listed
        InvalidPrice: If price is zero
    """
    return compute_update_asset_prices(view, caller, {symbol: price}, operation="update-asset-price")


def compute_update_asset_prices(
    view: LendingView,
    caller: str,
    prices: Mapping[str, int],
    operation: str = "publish-prices",
    only_known: bool = False,
) -> PendingTransaction:
    """
    Post several prices atomically. Unchanged prices are skipped.

    Args:
        view: Read-only ledger access
        caller: Identity making the call (must be the owner)
        prices: symbol -> price in micro-units
        operation: Operation name recorded in the origin
        only_known: Skip symbols that are not listed (used by price feeds
                    that publish more symbols than the registry holds)

    Raises:
        NotAuthorized: If caller is not the owner
        InvalidCollateralAsset: If an asset is not listed
        InvalidPrice: If any price is zero
    """
    require_owner(view, caller)

    changes: List[StateChange] = []
    for symbol in sorted(prices):
        _require_identity("symbol", symbol)
        current = view.get_asset(symbol)
        if only_known and (current is None or not current.listed):
            continue
        updated = priced(current, symbol, prices[symbol])
        if updated != current:
            changes.append(StateChange(TABLE_ASSETS, symbol, current, updated))

    if not changes:
        return empty_pending_transaction(view, caller)

    origin_type = OriginType.LIFECYCLE if only_known else OriginType.ADMINISTRATIVE
    origin = TransactionOrigin(origin_type, caller, operation)
    return build_transaction(view, changes, origin)


def known_prices(view: LendingView, symbols: List[str]) -> Dict[str, int]:
    """Return posted prices for the given symbols, skipping unpriced ones."""
    result = {}
    for symbol in symbols:
        asset = view.get_asset(symbol)
        if asset is not None and asset.price > 0:
            result[symbol] = asset.price
    return result
