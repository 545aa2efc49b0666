"""
Market Data - Read-through metadata cache.

Wraps any MarketMetadataProvider so repeated lookups during one replay
hit the network once per market. The caller owns the instance and its
lifetime; there is no process-wide cache.
"""

import logging
from typing import Optional

from market_data.base import MarketMetadataProvider
from market_data.models import MarketInfo


logger = logging.getLogger(__name__)


class CachedMarketMetadata(MarketMetadataProvider):
    """Per-instance read-through cache over another metadata provider."""

    def __init__(self, delegate: MarketMetadataProvider) -> None:
        self._delegate = delegate
        self._markets: dict[str, Optional[MarketInfo]] = {}
        self.hits = 0
        self.misses = 0

    async def get_market(self, market_id: str) -> Optional[MarketInfo]:
        if market_id in self._markets:
            self.hits += 1
            return self._markets[market_id]

        self.misses += 1
        market = await self._delegate.get_market(market_id)
        self._markets[market_id] = market
        return market

    def invalidate(self, market_id: Optional[str] = None) -> None:
        """Drop one market, or everything when no id is given."""
        if market_id is None:
            self._markets.clear()
        else:
            self._markets.pop(market_id, None)

    def __len__(self) -> int:
        return len(self._markets)
