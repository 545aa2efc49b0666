"""
Storage Package.

Persistence for backtest tasks and ledgers.

Modules:
- database: async engine and session lifecycle
- models/: ORM models
- repositories/: data access layer
"""

from storage.database import Database
from storage.repositories import SqlAlchemyTaskStore


__all__ = [
    "Database",
    "SqlAlchemyTaskStore",
]
