"""
Backtesting - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the backtest system.

CRITICAL CONSTRAINTS:
- Bounded retries, fixed delay
- Deterministic arithmetic (scales and rounding fixed here)
- Environment overrides loaded once at the entry point

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from data_sources.config import FetcherConfig


# ============================================================
# ENDPOINT CONFIGURATION
# ============================================================

@dataclass
class EndpointConfig:
    """Polymarket API base URLs."""

    data_api_url: str = "https://data-api.polymarket.com"
    """Activity (historical trades) API."""

    gamma_api_url: str = "https://gamma-api.polymarket.com"
    """Market metadata API."""

    clob_api_url: str = "https://clob.polymarket.com"
    """Order book API."""

    @classmethod
    def from_env(cls) -> "EndpointConfig":
        defaults = cls()
        return cls(
            data_api_url=os.getenv("POLYMARKET_DATA_API_URL", defaults.data_api_url),
            gamma_api_url=os.getenv("POLYMARKET_GAMMA_API_URL", defaults.gamma_api_url),
            clob_api_url=os.getenv("POLYMARKET_CLOB_API_URL", defaults.clob_api_url),
        )


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Replay engine arithmetic and terminal valuation.

    SAFETY: changing scales changes every ledger produced afterwards.
    """

    min_price: Decimal = Decimal("0.00000001")
    """Floor applied to slipped execution prices."""

    quantity_scale: int = 8
    """Decimal places for quantities (rounded down)."""

    price_scale: int = 8
    """Decimal places for average prices (half up) and ratio divisions."""

    mark_to_market_enabled: bool = True
    """Value still-open positions at the mark price when the run ends."""

    mark_price_scale: int = 4
    """Decimal places for mark prices (truncated)."""

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            mark_to_market_enabled=os.getenv("BACKTEST_MARK_TO_MARKET", "true").lower() == "true",
        )


# ============================================================
# TASK DEFAULTS
# ============================================================

@dataclass
class TaskDefaults:
    """Values applied when a create request leaves a parameter unset."""

    copy_mode: str = "RATIO"
    copy_ratio: Decimal = Decimal("1")
    max_order_size: Decimal = Decimal("1000")
    min_order_size: Decimal = Decimal("0")
    max_daily_loss: Decimal = Decimal("10000")
    max_daily_orders: int = 100
    slippage_percent: Decimal = Decimal("0")
    support_sell: bool = True
    keyword_filter_mode: str = "DISABLED"

    max_backtest_days: int = 15
    """Longest allowed lookback window."""


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Durable store connection settings."""

    url: str = "sqlite+aiosqlite:///./backtest.db"
    """SQLAlchemy async URL."""

    echo: bool = False
    """Log SQL statements."""

    pool_size: int = 5
    """Connection pool size (ignored by SQLite)."""

    max_overflow: int = 10
    """Extra connections beyond the pool (ignored by SQLite)."""

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(
            url=os.getenv("DATABASE_URL", cls.url),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            pool_size=int(os.getenv("DATABASE_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DATABASE_MAX_OVERFLOW", "10")),
        )

    @classmethod
    def for_testing(cls) -> "DatabaseConfig":
        return cls(url="sqlite+aiosqlite:///:memory:")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class BacktestConfig:
    """Master configuration for the backtest system."""

    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    endpoints: EndpointConfig = field(default_factory=EndpointConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    defaults: TaskDefaults = field(default_factory=TaskDefaults)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "BacktestConfig":
        """Create config from environment variables."""
        return cls(
            fetcher=FetcherConfig.from_env(),
            endpoints=EndpointConfig.from_env(),
            engine=EngineConfig.from_env(),
            defaults=TaskDefaults(),
            database=DatabaseConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

    @classmethod
    def for_testing(cls) -> "BacktestConfig":
        """Configuration for unit tests."""
        return cls(
            fetcher=FetcherConfig.for_testing(),
            database=DatabaseConfig.for_testing(),
            log_level="DEBUG",
        )

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the configuration is usable."""
        errors = []
        if self.fetcher.page_size <= 0:
            errors.append("BACKTEST_PAGE_SIZE must be positive")
        if self.fetcher.max_attempts < 1:
            errors.append("BACKTEST_FETCH_MAX_ATTEMPTS must be at least 1")
        if self.fetcher.retry_delay_seconds < 0:
            errors.append("BACKTEST_FETCH_RETRY_DELAY must not be negative")
        if self.fetcher.max_offset < 0:
            errors.append("BACKTEST_ACTIVITY_MAX_OFFSET must not be negative")
        if not self.database.url.startswith(("sqlite+aiosqlite", "postgresql+asyncpg")):
            errors.append("DATABASE_URL must use sqlite+aiosqlite or postgresql+asyncpg")
        if self.log_format not in ("json", "text"):
            errors.append("LOG_FORMAT must be json or text")
        return errors
