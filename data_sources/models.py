"""
Data Source Models - Normalized historical trade structures.

Every provider maps its raw activity rows to ``TradeData`` so the
replay engine never depends on provider-specific fields.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class TradeSide(Enum):
    """Side of a leader trade."""
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: Any) -> Optional["TradeSide"]:
        """Case-insensitive parse; returns None for unknown values."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class TradeData:
    """
    Normalized historical leader trade - STRICT schema.

    Produced only by the fetcher, never mutated.
    """
    trade_id: str
    market_id: str
    side: TradeSide
    price: Decimal
    size: Decimal
    amount: Decimal
    timestamp: int
    outcome: str = ""
    outcome_index: Optional[int] = None
    market_title: str = ""
    market_slug: Optional[str] = None

    @property
    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "trade_id": self.trade_id,
            "market_id": self.market_id,
            "side": self.side.value,
            "price": str(self.price),
            "size": str(self.size),
            "amount": str(self.amount),
            "timestamp": self.timestamp,
            "outcome": self.outcome,
            "outcome_index": self.outcome_index,
            "market_title": self.market_title,
            "market_slug": self.market_slug,
        }


@dataclass(frozen=True)
class ActivityRequest:
    """One page request against the activity endpoint."""
    address: str
    start_ms: int
    end_ms: int
    limit: int
    offset: int

    def validate(self) -> None:
        """Validate request parameters."""
        if not self.address:
            raise ValueError("Leader address is required")
        if self.start_ms > self.end_ms:
            raise ValueError("start_ms must be <= end_ms")
        if self.limit <= 0:
            raise ValueError("limit must be positive")
        if self.offset < 0:
            raise ValueError("offset must be non-negative")

    @property
    def start_seconds(self) -> int:
        return self.start_ms // 1000

    @property
    def end_seconds(self) -> int:
        return self.end_ms // 1000
