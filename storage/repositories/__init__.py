"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The repository layer is the only gateway to persistent storage.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. Sessions come from storage.database.Database
2. Explicit methods, no generic 'execute'
3. Ledger rows are append-only
4. All DB errors are wrapped in repository exceptions

============================================================
"""

from storage.repositories.backtest_repo import SqlAlchemyTaskStore
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    DatabaseConnectionError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
)


__all__ = [
    "SqlAlchemyTaskStore",
    "BaseRepository",
    "DatabaseConnectionError",
    "IntegrityError",
    "QueryError",
    "RecordNotFoundError",
    "RepositoryException",
]
