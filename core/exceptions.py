"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the shared exception hierarchy for the backtest system.

- Provides a clear exception hierarchy
- Separates validation errors from run-time failures
- Carries context for debugging and for the task error message

============================================================
EXCEPTION HIERARCHY
============================================================
BacktestException (base)
├── ConfigurationError
├── TaskValidationError     - bad task parameters, never retried
├── TaskNotFoundError       - unknown task id
└── TaskStateError          - operation not valid in current status

Fetch-layer errors live in data_sources.exceptions, collaborator
errors in market_data.exceptions and persistence errors in
storage.repositories.exceptions.

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be handled by the caller (e.g. fix input and resubmit)."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class BacktestException(Exception):
    """
    Base exception for all backtest system errors.

    All exceptions carry:
    - severity: for logging level decisions
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_retryable(self) -> bool:
        """Check if retrying the same operation may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(BacktestException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# TASK ERRORS
# ============================================================

class TaskValidationError(BacktestException):
    """Task parameters rejected before a run starts."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if field_name:
            context["field"] = field_name
        super().__init__(message, context=context, **kwargs)
        self.field_name = field_name


class TaskNotFoundError(BacktestException):
    """Requested task does not exist."""

    def __init__(self, task_id: int, **kwargs):
        super().__init__(f"Backtest task not found: {task_id}", context={"task_id": task_id}, **kwargs)
        self.task_id = task_id


class TaskStateError(BacktestException):
    """Operation is not allowed in the task's current status."""

    def __init__(self, message: str, task_id: Optional[int] = None, status: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if task_id is not None:
            context["task_id"] = task_id
        if status is not None:
            context["status"] = status
        super().__init__(message, context=context, **kwargs)
        self.task_id = task_id
        self.status = status
