"""
pricing_source.py - Price feeds for the collateral asset registry

Provides pricing mechanisms that the LifecycleEngine publishes into the
registry at each block.

Classes:
- PricingSource: Protocol defining the pricing interface
- StaticPricingSource: Block-independent prices
- BlockSeriesPricingSource: Block-varying prices with historical data

All prices are integers in micro-units.
"""

from typing import Dict, Iterable, Optional, List, Tuple, Protocol, runtime_checkable
from bisect import bisect_right


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    A pricing source provides asset prices at specific block heights.
    Implementations must provide get_price() and get_prices() methods.
    """

    def get_price(self, symbol: str, block_height: int) -> Optional[int]:
        """Get the price of a single asset at a specific block."""
        ...

    def get_prices(self, symbols: Iterable[str], block_height: int) -> Dict[str, int]:
        """Get prices for multiple assets at a specific block."""
        ...


def _check_price(symbol: str, price: int) -> int:
    if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
        raise ValueError(f"price for {symbol} must be a positive int, got {price!r}")
    return price


class StaticPricingSource:
    """
    Pricing source with static prices (block-independent).
    """

    def __init__(self, prices: Dict[str, int]):
        self.prices = {symbol: _check_price(symbol, p) for symbol, p in prices.items()}

    def get_price(self, symbol: str, block_height: int) -> Optional[int]:
        """Get static price (block_height is ignored)."""
        return self.prices.get(symbol)

    def get_prices(self, symbols: Iterable[str], block_height: int) -> Dict[str, int]:
        return {s: self.prices[s] for s in symbols if s in self.prices}

    def update_price(self, symbol: str, price: int):
        self.prices[symbol] = _check_price(symbol, price)

    def update_prices(self, prices: Dict[str, int]):
        for symbol, price in prices.items():
            self.update_price(symbol, price)

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices)"


class BlockSeriesPricingSource:
    """
    Pricing source with block-varying prices.

    Stores historical price observations and returns the most recent price
    at or before the requested block.

    Supports two initialization patterns:
    - Empty initialization for incremental price addition via add_price()
    - Batch initialization with complete price paths for simulations
    """

    def __init__(self, price_paths: Optional[Dict[str, List[Tuple[int, int]]]] = None):
        """
        Initialize pricing source.

        Args:
            price_paths: Optional dict mapping symbols to list of (block_height, price)
                         tuples. If None, creates empty source.

        Examples:
            # Empty initialization
            pricer = BlockSeriesPricingSource()
            pricer.add_price('STX', 100, 1_500_000)

            # Batch initialization with price paths
            pricer = BlockSeriesPricingSource({
                'STX': [(0, 1_500_000), (200, 1_200_000)],
                'BTC': [(0, 60_000_000_000)],
            })
        """
        self.price_history: Dict[str, List[Tuple[int, int]]] = {}

        if price_paths:
            for symbol, path in price_paths.items():
                for block_height, price in path:
                    self.add_price(symbol, block_height, price)

    def add_price(self, symbol: str, block_height: int, price: int):
        """Add a price observation for an asset at a specific block."""
        _check_price(symbol, price)
        history = self.price_history.setdefault(symbol, [])
        history.append((block_height, price))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, int], block_height: int):
        for symbol, price in prices.items():
            self.add_price(symbol, block_height, price)

    def get_price(self, symbol: str, block_height: int) -> Optional[int]:
        """
        Get price at or before the specified block.

        Returns None if no observation exists at or before the block.
        Uses binary search for O(log n) lookup.
        """
        history = self.price_history.get(symbol)
        if not history:
            return None

        blocks = [b for b, _ in history]
        idx = bisect_right(blocks, block_height)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def get_prices(self, symbols: Iterable[str], block_height: int) -> Dict[str, int]:
        prices = {}
        for symbol in symbols:
            price = self.get_price(symbol, block_height)
            if price is not None:
                prices[symbol] = price
        return prices

    def get_all_blocks(self, symbol: Optional[str] = None) -> List[int]:
        """
        Get all block heights in the price history.

        Args:
            symbol: If specified, get blocks for that asset only.
                    If None, get union of all blocks.
        """
        if symbol:
            return [b for b, _ in self.price_history.get(symbol, [])]

        all_blocks = set()
        for path in self.price_history.values():
            all_blocks.update(b for b, _ in path)
        return sorted(all_blocks)

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return f"BlockSeriesPricingSource({len(self.price_history)} assets, {total_observations} observations)"
