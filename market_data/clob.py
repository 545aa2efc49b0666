"""
CLOB Order Book Client - Polymarket order book adapter.

Endpoints used:
- /book?token_id=<id> - order book for one outcome token

Public endpoint, no authentication required.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from data_sources.base import HttpJsonClient
from data_sources.exceptions import FetchError
from market_data.base import OrderBookProvider
from market_data.exceptions import MarketDataError, OrderBookNotFoundError
from market_data.models import OrderBook, OrderBookLevel


logger = logging.getLogger(__name__)


NO_ORDERBOOK_MARKER = "no orderbook exists"


def _parse_levels(raw_levels: Any) -> tuple[OrderBookLevel, ...]:
    levels = []
    for raw in raw_levels or []:
        try:
            levels.append(OrderBookLevel(
                price=Decimal(str(raw["price"])),
                size=Decimal(str(raw["size"])),
            ))
        except (KeyError, TypeError, InvalidOperation):
            logger.debug(f"Skipping malformed book level: {raw!r}")
    return tuple(levels)


class ClobOrderBookClient(HttpJsonClient, OrderBookProvider):
    """Polymarket CLOB API order book client."""

    BASE_URL = "https://clob.polymarket.com"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout, session)
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "polymarket_clob_api"

    async def get_order_book(self, token_id: str) -> OrderBook:
        """Fetch the book; a missing book raises OrderBookNotFoundError."""
        url = f"{self._base_url}/book"
        try:
            data = await self._make_request("GET", url, params={"token_id": token_id})
        except FetchError as e:
            body = (e.response_body or "").lower()
            if e.status_code == 404 or NO_ORDERBOOK_MARKER in body:
                raise OrderBookNotFoundError(token_id, source_name=self.name, original_error=e) from e
            raise

        if not isinstance(data, dict):
            raise MarketDataError(
                f"Unexpected order book payload for token {token_id}",
                source_name=self.name,
            )
        if NO_ORDERBOOK_MARKER in str(data.get("error") or "").lower():
            raise OrderBookNotFoundError(token_id, source_name=self.name)

        timestamp = data.get("timestamp")
        return OrderBook(
            token_id=token_id,
            bids=_parse_levels(data.get("bids")),
            asks=_parse_levels(data.get("asks")),
            timestamp_ms=int(timestamp) if timestamp and str(timestamp).isdigit() else None,
        )

    async def get_midpoint_price(self, token_id: str) -> Optional[Decimal]:
        """Mean of best bid and best ask, None if either side is empty."""
        book = await self.get_order_book(token_id)
        return book.midpoint
