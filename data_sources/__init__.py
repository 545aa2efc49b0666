"""
Data Sources Package - Historical leader trade access.

Provides the activity source contract, the Polymarket Data API provider
and the paging fetcher used by the replay engine.

Quick Start:
    from data_sources import (
        FetcherConfig,
        HistoricalTradeFetcher,
        PolymarketActivitySource,
    )

    async def first_page(address, start_ms, end_ms):
        async with PolymarketActivitySource() as source:
            fetcher = HistoricalTradeFetcher(source, FetcherConfig())
            return await fetcher.fetch_page(address, start_ms, end_ms, page=0)
"""

from data_sources.base import BaseActivitySource, HttpJsonClient
from data_sources.config import FetcherConfig
from data_sources.exceptions import (
    DataSourceError,
    FetchError,
    NonRetryableFetchError,
    NormalizationError,
    RateLimitError,
    RetryExhaustedError,
)
from data_sources.historical_fetcher import HistoricalTradeFetcher
from data_sources.models import ActivityRequest, TradeData, TradeSide
from data_sources.providers import PolymarketActivitySource


__all__ = [
    # Base
    "BaseActivitySource",
    "HttpJsonClient",
    # Config
    "FetcherConfig",
    # Exceptions
    "DataSourceError",
    "FetchError",
    "NonRetryableFetchError",
    "NormalizationError",
    "RateLimitError",
    "RetryExhaustedError",
    # Fetcher
    "HistoricalTradeFetcher",
    # Models
    "ActivityRequest",
    "TradeData",
    "TradeSide",
    # Providers
    "PolymarketActivitySource",
]
