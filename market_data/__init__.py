"""
Market Data Package - Market metadata, order books and mark prices.

Collaborators used by the filter pipeline and the replay engine:
- GammaMarketClient: market metadata, resolution and payouts
- ClobOrderBookClient: live order books
- CompositePriceOracle: mark price for unresolved outcomes
- CachedMarketMetadata: injected read-through cache
"""

from market_data.base import MarketMetadataProvider, OrderBookProvider, PriceOracle
from market_data.cache import CachedMarketMetadata
from market_data.clob import ClobOrderBookClient
from market_data.exceptions import MarketDataError, OrderBookNotFoundError, PriceUnavailableError
from market_data.gamma import GammaMarketClient, parse_market
from market_data.models import MarketInfo, OrderBook, OrderBookLevel
from market_data.oracle import CompositePriceOracle


__all__ = [
    # Contracts
    "MarketMetadataProvider",
    "OrderBookProvider",
    "PriceOracle",
    # Implementations
    "CachedMarketMetadata",
    "ClobOrderBookClient",
    "CompositePriceOracle",
    "GammaMarketClient",
    "parse_market",
    # Exceptions
    "MarketDataError",
    "OrderBookNotFoundError",
    "PriceUnavailableError",
    # Models
    "MarketInfo",
    "OrderBook",
    "OrderBookLevel",
]
