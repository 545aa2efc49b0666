"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
Every SQLAlchemy error leaving the task store is wrapped in one of
these, carrying the repository operation and the task it touched.

RepositoryException
├── RecordNotFoundError      - task row missing for an update
├── IntegrityError           - FK / unique / not-null violation
├── DatabaseConnectionError  - driver or pool failure
└── QueryError               - anything else

The replay engine treats any of them escaping a run as fatal and
marks the task FAILED.

============================================================
"""

from typing import Any, Optional


class RepositoryException(Exception):
    """Base exception for task store operations."""

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(f"[{repository_name}] {operation}: {message}")

    @property
    def task_id(self) -> Optional[int]:
        return self.details.get("task_id")


class RecordNotFoundError(RepositoryException):
    """A task row that must exist is gone (usually deleted mid-run)."""

    def __init__(
        self,
        repository_name: str,
        record_id: Any,
        id_field: str = "id",
        operation: str = "get",
    ) -> None:
        super().__init__(
            message=f"No row with {id_field}={record_id}",
            repository_name=repository_name,
            operation=operation,
            details={"task_id": record_id} if id_field == "id" else {id_field: record_id},
        )
        self.record_id = record_id
        self.id_field = id_field


class IntegrityError(RepositoryException):
    """A ledger row or task write violated a constraint."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        constraint: str,
        original_error: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        details["constraint"] = constraint
        super().__init__(
            message=f"{constraint} constraint violated: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details=details,
        )
        self.constraint = constraint


class DatabaseConnectionError(RepositoryException):
    """The database could not be reached or the connection dropped."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=f"Database unavailable: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details=details,
        )


class QueryError(RepositoryException):
    """Any other failed read or write."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=f"Statement failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details=details,
        )
