"""
Market Data Models - Market metadata and order book snapshots.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional


@dataclass(frozen=True)
class MarketInfo:
    """
    Normalized market metadata.

    ``outcome_prices`` are the venue's current prices per outcome; once a
    market is resolved they collapse to exactly 0 or 1.
    """
    market_id: str
    title: str = ""
    slug: Optional[str] = None
    outcomes: tuple[str, ...] = ()
    outcome_prices: tuple[Decimal, ...] = ()
    token_ids: tuple[str, ...] = ()
    active: Optional[bool] = None
    closed: Optional[bool] = None
    archived: Optional[bool] = None
    end_date_ms: Optional[int] = None
    resolved_at_ms: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at_ms is not None

    def outcome_price(self, outcome_index: int) -> Optional[Decimal]:
        """Current price for an outcome, None if out of range."""
        if 0 <= outcome_index < len(self.outcome_prices):
            return self.outcome_prices[outcome_index]
        return None

    def token_id(self, outcome_index: int) -> Optional[str]:
        """CLOB token for an outcome, None if unknown."""
        if 0 <= outcome_index < len(self.token_ids):
            return self.token_ids[outcome_index]
        return None

    def index_of_outcome(self, label: Optional[str]) -> Optional[int]:
        """Case-insensitive lookup of an outcome label."""
        if not label:
            return None
        wanted = label.strip().lower()
        for i, outcome in enumerate(self.outcomes):
            if outcome.strip().lower() == wanted:
                return i
        return None


@dataclass(frozen=True)
class OrderBookLevel:
    """Single price level."""
    price: Decimal
    size: Decimal

    @property
    def notional(self) -> Decimal:
        return self.price * self.size


@dataclass(frozen=True)
class OrderBook:
    """Order book snapshot for one outcome token."""
    token_id: str
    bids: tuple[OrderBookLevel, ...] = ()
    asks: tuple[OrderBookLevel, ...] = ()
    timestamp_ms: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks

    @property
    def best_bid(self) -> Optional[Decimal]:
        """Highest bid price."""
        return max((level.price for level in self.bids), default=None)

    @property
    def best_ask(self) -> Optional[Decimal]:
        """Lowest ask price."""
        return min((level.price for level in self.asks), default=None)

    @property
    def spread(self) -> Optional[Decimal]:
        bid, ask = self.best_bid, self.best_ask
        if bid is None or ask is None:
            return None
        return ask - bid

    @property
    def midpoint(self) -> Optional[Decimal]:
        bid, ask = self.best_bid, self.best_ask
        if bid is None or ask is None:
            return None
        return (bid + ask) / 2

    @property
    def total_depth(self) -> Decimal:
        """Sum of price * size over both sides."""
        return sum((level.notional for level in self.bids), Decimal("0")) + sum(
            (level.notional for level in self.asks), Decimal("0")
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_id": self.token_id,
            "bids": [{"price": str(l.price), "size": str(l.size)} for l in self.bids],
            "asks": [{"price": str(l.price), "size": str(l.size)} for l in self.asks],
            "timestamp_ms": self.timestamp_ms,
        }
