"""
Market Data Exceptions - Errors raised by metadata, order book and price lookups.
"""

from typing import Any, Optional

from data_sources.exceptions import DataSourceError


class MarketDataError(DataSourceError):
    """Base exception for market collaborator failures."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        market_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if market_id:
            context["market_id"] = market_id
        super().__init__(message, source_name, original_error, context)
        self.market_id = market_id


class OrderBookNotFoundError(MarketDataError):
    """The token has no order book (HTTP 404 / "no orderbook exists")."""

    def __init__(
        self,
        token_id: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            f"No orderbook exists for token {token_id} (404)",
            source_name=source_name,
            original_error=original_error,
            context={"token_id": token_id},
        )
        self.token_id = token_id


class PriceUnavailableError(MarketDataError):
    """No price source could value an outcome."""

    def __init__(
        self,
        market_id: str,
        outcome_index: int,
        source_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"No price available for market {market_id} outcome {outcome_index}",
            source_name=source_name,
            market_id=market_id,
            context={"outcome_index": outcome_index},
        )
        self.outcome_index = outcome_index
