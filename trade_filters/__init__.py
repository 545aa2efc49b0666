"""
Trade Filters Package.

Admission-control pipeline shared by live copy trading and backtests.
"""

from .pipeline import TradeFilterPipeline
from .types import (
    FilterConfig,
    FilterResult,
    FilterStatus,
    KeywordFilterMode,
    MarketContext,
    PositionExposureProvider,
)


__all__ = [
    "TradeFilterPipeline",
    "FilterConfig",
    "FilterResult",
    "FilterStatus",
    "KeywordFilterMode",
    "MarketContext",
    "PositionExposureProvider",
]
