"""
Market Data - Collaborator contracts.

============================================================
PURPOSE
============================================================
Abstract interfaces the filter pipeline and the replay engine
depend on. Concrete HTTP clients, caches and test doubles all
implement these.

- MarketMetadataProvider: market lookup, resolution and payout
- OrderBookProvider: live order book per outcome token
- PriceOracle: current valuation price for an outcome

============================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from market_data.models import MarketInfo, OrderBook


ONE = Decimal("1")
ZERO = Decimal("0")


class MarketMetadataProvider(ABC):
    """
    Market metadata lookup.

    Only ``get_market`` is abstract; resolution, payout and outcome
    index lookups derive from it.
    """

    @abstractmethod
    async def get_market(self, market_id: str) -> Optional[MarketInfo]:
        """Return market metadata, or None if the market is unknown."""
        pass

    async def get_market_resolution(self, market_id: str) -> Optional[int]:
        """Resolution time in epoch ms, None while unresolved."""
        market = await self.get_market(market_id)
        if market is None:
            return None
        return market.resolved_at_ms

    async def get_settlement_payout(self, market_id: str, outcome_index: int) -> Optional[Decimal]:
        """
        Binary payout for a resolved outcome.

        Returns:
            Decimal 1 or 0 once resolved, None if unresolved or ambiguous
        """
        market = await self.get_market(market_id)
        if market is None or not market.is_resolved:
            return None
        price = market.outcome_price(outcome_index)
        if price is None:
            return None
        if price == ONE:
            return ONE
        if price == ZERO:
            return ZERO
        return None

    async def resolve_outcome_index(
        self,
        market_id: str,
        outcome_label: Optional[str] = None,
        outcome_index: Optional[int] = None,
    ) -> Optional[int]:
        """Explicit index, then a numeric label, then a label match against the market."""
        if outcome_index is not None:
            return outcome_index
        label = (outcome_label or "").strip()
        if label.isdigit():
            return int(label)
        if not label:
            return None
        market = await self.get_market(market_id)
        if market is None:
            return None
        return market.index_of_outcome(label)


class OrderBookProvider(ABC):
    """Live order book access."""

    @abstractmethod
    async def get_order_book(self, token_id: str) -> OrderBook:
        """
        Fetch the order book for an outcome token.

        Raises:
            OrderBookNotFoundError: the token has no book
            MarketDataError / FetchError: any other failure
        """
        pass


class PriceOracle(ABC):
    """Valuation price for unresolved outcomes."""

    @abstractmethod
    async def get_mark_price(self, market_id: str, outcome_index: int) -> Decimal:
        """
        Current price for an outcome.

        Raises:
            PriceUnavailableError: no source could price it
        """
        pass
