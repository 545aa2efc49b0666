"""
Core Module Package.

Infrastructure shared by every other package.

Components:
- clock: time abstraction and epoch-millisecond helpers
- exceptions: exception hierarchy
"""

from .clock import (
    MILLIS_PER_DAY,
    MILLIS_PER_SECOND,
    ClockProtocol,
    FixedClock,
    SystemClock,
    day_key,
    format_timestamp,
    to_datetime,
    to_epoch_ms,
)
from .exceptions import (
    BacktestException,
    ConfigurationError,
    ErrorClassification,
    Severity,
    TaskNotFoundError,
    TaskStateError,
    TaskValidationError,
)


__all__ = [
    "MILLIS_PER_DAY",
    "MILLIS_PER_SECOND",
    "ClockProtocol",
    "FixedClock",
    "SystemClock",
    "day_key",
    "format_timestamp",
    "to_datetime",
    "to_epoch_ms",
    "BacktestException",
    "ConfigurationError",
    "ErrorClassification",
    "Severity",
    "TaskNotFoundError",
    "TaskStateError",
    "TaskValidationError",
]
