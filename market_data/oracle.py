"""
Market Data - Composite Price Oracle.

Price sources, in priority order:
1. Settlement payout (resolved market -> exactly 0 or 1)
2. Order book best bid (best ask when there are no bids)
3. Gamma outcome price

Prices are truncated toward zero to 4 decimals.
"""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from market_data.base import MarketMetadataProvider, OrderBookProvider, PriceOracle
from market_data.exceptions import PriceUnavailableError


logger = logging.getLogger(__name__)


class CompositePriceOracle(PriceOracle):
    """Mark price from metadata and, optionally, live order books."""

    def __init__(
        self,
        metadata: MarketMetadataProvider,
        order_books: Optional[OrderBookProvider] = None,
        price_scale: int = 4,
    ) -> None:
        self._metadata = metadata
        self._order_books = order_books
        self._quantum = Decimal(1).scaleb(-price_scale)

    async def get_mark_price(self, market_id: str, outcome_index: int) -> Decimal:
        payout = await self._metadata.get_settlement_payout(market_id, outcome_index)
        if payout is not None:
            return self._truncate(payout)

        market = await self._metadata.get_market(market_id)

        if self._order_books is not None and market is not None:
            token_id = market.token_id(outcome_index)
            if token_id:
                book_price = await self._book_price(token_id)
                if book_price is not None:
                    return self._truncate(book_price)

        if market is not None:
            price = market.outcome_price(outcome_index)
            if price is not None:
                return self._truncate(price)

        raise PriceUnavailableError(market_id, outcome_index, source_name="composite_oracle")

    async def _book_price(self, token_id: str) -> Optional[Decimal]:
        try:
            book = await self._order_books.get_order_book(token_id)
        except Exception as e:
            logger.debug(f"Order book price lookup failed for token {token_id}: {e}")
            return None
        if book.best_bid is not None:
            return book.best_bid
        best_ask = book.best_ask
        if best_ask is not None and best_ask > 0:
            return best_ask
        return None

    def _truncate(self, price: Decimal) -> Decimal:
        return price.quantize(self._quantum, rounding=ROUND_DOWN)
