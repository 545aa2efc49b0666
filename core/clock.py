"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable clock abstraction for the backtest system.

- Every "now" read by the engine, the filters and the service
  goes through a clock instance
- Enables deterministic tests and reproducible replays
- All instants are integer epoch milliseconds in UTC

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only - no local timezone in business logic
- Injected, never a module-level singleton
- Helpers for epoch-ms <-> datetime and daily bucket keys

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
import threading
import time


MILLIS_PER_SECOND = 1000
MILLIS_PER_DAY = 24 * 3600 * 1000


# ============================================================
# CONVERSION HELPERS
# ============================================================

def to_datetime(epoch_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(epoch_ms / MILLIS_PER_SECOND, tz=timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * MILLIS_PER_SECOND)


def day_key(epoch_ms: int) -> str:
    """UTC calendar date (YYYY-MM-DD) used to bucket daily risk limits."""
    return to_datetime(epoch_ms).strftime("%Y-%m-%d")


def format_timestamp(epoch_ms: Optional[int]) -> str:
    """Human readable UTC timestamp for log lines."""
    if epoch_ms is None:
        return "-"
    return to_datetime(epoch_ms).strftime("%Y-%m-%d %H:%M:%S")


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the system clock."""

    @abstractmethod
    def now_ms(self) -> int:
        """Get current UTC time as epoch milliseconds."""
        pass

    def now(self) -> datetime:
        """Get current UTC datetime."""
        return to_datetime(self.now_ms())


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now_ms(self) -> int:
        return int(time.time() * MILLIS_PER_SECOND)


# ============================================================
# FIXED CLOCK (TESTING)
# ============================================================

class FixedClock(ClockProtocol):
    """
    Manually driven clock for tests.

    Time only moves when ``set_time`` or ``advance`` is called.
    """

    def __init__(self, initial_ms: Optional[int] = None):
        """
        Initialize fixed clock.

        Args:
            initial_ms: Starting epoch milliseconds (defaults to system time)
        """
        self._now_ms = initial_ms if initial_ms is not None else int(time.time() * MILLIS_PER_SECOND)
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def set_time(self, epoch_ms: int) -> None:
        """Jump to an absolute instant."""
        with self._lock:
            self._now_ms = epoch_ms

    def advance(self, millis: int) -> None:
        """Move the clock forward."""
        with self._lock:
            self._now_ms += millis
