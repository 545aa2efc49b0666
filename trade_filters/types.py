"""
Trade Filters - Types.

============================================================
PURPOSE
============================================================
Value types for the admission-control pipeline.

- FilterConfig: which checks are enabled and their limits
- MarketContext: what the caller knows about the traded market
- FilterResult: pass/fail with a failure category
- PositionExposureProvider: current exposure lookup for the cap

============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from market_data.models import OrderBook


# ============================================================
# ENUMS
# ============================================================

class KeywordFilterMode(Enum):
    """Keyword filter behaviour."""

    DISABLED = "DISABLED"
    WHITELIST = "WHITELIST"
    BLACKLIST = "BLACKLIST"

    @classmethod
    def parse(cls, value: Optional[str]) -> "KeywordFilterMode":
        """None/blank maps to DISABLED; unknown values raise ValueError."""
        if value is None or not str(value).strip():
            return cls.DISABLED
        return cls(str(value).strip().upper())


class FilterStatus(Enum):
    """Filter outcome category."""

    PASSED = "PASSED"
    MARKET_STATUS = "MARKET_STATUS"
    KEYWORD = "KEYWORD"
    PRICE_RANGE = "PRICE_RANGE"
    SPREAD = "SPREAD"
    ORDER_DEPTH = "ORDER_DEPTH"
    POSITION_LIMIT = "POSITION_LIMIT"
    MARKET_END_DATE = "MARKET_END_DATE"
    ORDERBOOK_ERROR = "ORDERBOOK_ERROR"


# ============================================================
# CONFIG
# ============================================================

@dataclass
class FilterConfig:
    """Admission-control limits. None disables a check."""

    keyword_filter_mode: KeywordFilterMode = KeywordFilterMode.DISABLED
    """Keyword filter mode."""

    keywords: list[str] = field(default_factory=list)
    """Keywords matched case-insensitively against the market title."""

    min_price: Optional[Decimal] = None
    """Lowest accepted leader trade price."""

    max_price: Optional[Decimal] = None
    """Highest accepted leader trade price."""

    max_spread: Optional[Decimal] = None
    """Largest accepted best-ask minus best-bid."""

    min_order_depth: Optional[Decimal] = None
    """Smallest accepted sum of price * size over both book sides."""

    max_position_value: Optional[Decimal] = None
    """Cap on exposure per market and outcome after the order."""

    max_market_end_ms: Optional[int] = None
    """Longest accepted time until the market ends."""

    @property
    def needs_order_book(self) -> bool:
        return self.max_spread is not None or self.min_order_depth is not None


# ============================================================
# MARKET CONTEXT
# ============================================================

@dataclass(frozen=True)
class MarketContext:
    """
    What the caller knows about the market being traded.

    Unknown status flags are None and never fail the tradability check.
    """

    market_id: Optional[str] = None
    market_title: Optional[str] = None
    outcome_index: Optional[int] = None
    token_id: str = ""
    end_date_ms: Optional[int] = None
    active: Optional[bool] = None
    closed: Optional[bool] = None
    archived: Optional[bool] = None


# ============================================================
# FILTER RESULT
# ============================================================

@dataclass(frozen=True)
class FilterResult:
    """Result of running the pipeline."""

    is_passed: bool
    """Whether every check passed."""

    status: FilterStatus = FilterStatus.PASSED
    """Failure category, PASSED on success."""

    reason: str = ""
    """Human-readable failure reason."""

    order_book: Optional[OrderBook] = None
    """Order book snapshot used, if one was fetched."""

    @classmethod
    def passed(cls, order_book: Optional[OrderBook] = None) -> "FilterResult":
        return cls(is_passed=True, order_book=order_book)

    @classmethod
    def failed(
        cls,
        status: FilterStatus,
        reason: str,
        order_book: Optional[OrderBook] = None,
    ) -> "FilterResult":
        return cls(is_passed=False, status=status, reason=reason, order_book=order_book)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_passed": self.is_passed,
            "status": self.status.value,
            "reason": self.reason,
            "order_book": self.order_book.to_dict() if self.order_book else None,
        }


# ============================================================
# EXPOSURE PROVIDER
# ============================================================

class PositionExposureProvider(ABC):
    """Current exposure lookup used by the position-size cap."""

    @abstractmethod
    async def get_tracked_exposure(self, market_id: str, outcome_index: int) -> Decimal:
        """Open cost basis recorded for this market and outcome."""
        pass

    async def get_external_position_value(self, market_id: str, outcome_index: int) -> Decimal:
        """Position value reported by an external source (0 when there is none)."""
        return Decimal("0")
