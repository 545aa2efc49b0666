"""
Base Repository Class.

Holds the Database handle and maps SQLAlchemy failures onto the
repository exception hierarchy. Subclasses open one session (one
transaction) per public operation.
"""

import logging
from typing import Any, NoReturn, Optional

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError as SQLAlchemyIntegrityError,
    InterfaceError,
    OperationalError,
)

from storage.database import Database
from storage.repositories.exceptions import (
    DatabaseConnectionError,
    IntegrityError,
    QueryError,
)


_CONSTRAINT_MARKERS = (
    ("foreign key", "FOREIGN KEY"),
    ("unique", "UNIQUE"),
    ("not null", "NOT NULL"),
    ("check", "CHECK"),
)


def constraint_kind(error: Exception) -> str:
    """Best-effort constraint type from the driver message."""
    text = str(getattr(error, "orig", None) or error).lower()
    for marker, kind in _CONSTRAINT_MARKERS:
        if marker in text:
            return kind
    return "UNKNOWN"


class BaseRepository:
    """Shared session access and error wrapping."""

    def __init__(self, database: Database, repository_name: str) -> None:
        self._database = database
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def database(self) -> Database:
        return self._database

    @property
    def repository_name(self) -> str:
        return self._repository_name

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict[str, Any]] = None,
    ) -> NoReturn:
        """
        Log and re-raise a database error as a RepositoryException.

        Raises:
            IntegrityError: constraint violation
            DatabaseConnectionError: connection lost or refused
            QueryError: everything else
        """
        context = dict(context or {})
        self._logger.error(f"Database error in {operation} {context}: {error}", exc_info=True)

        if isinstance(error, SQLAlchemyIntegrityError):
            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                constraint=constraint_kind(error),
                original_error=str(error.orig),
                details=context,
            ) from error

        if isinstance(error, (OperationalError, InterfaceError)) or (
            isinstance(error, DBAPIError) and error.connection_invalidated
        ):
            raise DatabaseConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error),
                details=context,
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error),
            details=context,
        ) from error
