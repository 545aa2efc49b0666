"""
Data Sources - Fetcher Configuration.

============================================================
PURPOSE
============================================================
Pagination and retry settings for the historical trade fetcher.

The activity endpoint rejects very deep offsets, so pages past
``max_offset`` are treated as end-of-data without a request.

============================================================
"""

import os
from dataclasses import dataclass


@dataclass
class FetcherConfig:
    """Historical trade fetcher configuration."""

    page_size: int = 100
    """Rows requested per page."""

    max_offset: int = 3000
    """Largest offset the source accepts; deeper pages are skipped."""

    max_attempts: int = 5
    """Attempts per page before the run fails."""

    retry_delay_seconds: float = 1.0
    """Fixed delay between attempts."""

    request_timeout_seconds: float = 30.0
    """Total HTTP timeout per request."""

    @classmethod
    def from_env(cls) -> "FetcherConfig":
        """Create config from environment variables."""
        return cls(
            page_size=int(os.getenv("BACKTEST_PAGE_SIZE", "100")),
            max_offset=int(os.getenv("BACKTEST_ACTIVITY_MAX_OFFSET", "3000")),
            max_attempts=int(os.getenv("BACKTEST_FETCH_MAX_ATTEMPTS", "5")),
            retry_delay_seconds=float(os.getenv("BACKTEST_FETCH_RETRY_DELAY", "1.0")),
            request_timeout_seconds=float(os.getenv("BACKTEST_REQUEST_TIMEOUT", "30")),
        )

    @classmethod
    def for_testing(cls) -> "FetcherConfig":
        """Small pages and no waiting between attempts."""
        return cls(
            page_size=2,
            max_offset=3000,
            max_attempts=5,
            retry_delay_seconds=0.0,
            request_timeout_seconds=5.0,
        )
