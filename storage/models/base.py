"""
Base ORM Model and Column Types.

============================================================
PURPOSE
============================================================
Provides the declarative base and shared column types used by
all ORM models in the backtest store.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- DecimalType: exact Decimal storage on every backend

============================================================
"""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Numeric, String
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class DecimalType(TypeDecorator):
    """
    Decimal column with 8 fractional digits.

    NUMERIC(20, 8) on real databases. SQLite has no exact numeric
    type, so values are stored there as their string form.
    """

    impl = Numeric(20, 8)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(40))
        return dialect.type_descriptor(Numeric(20, 8, asdecimal=True))

    def process_bind_param(self, value: Optional[Any], dialect: Dialect) -> Optional[Any]:
        if value is None:
            return None
        value = Decimal(value)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value: Optional[Any], dialect: Dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(str(value))


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    Decimal annotations map to DecimalType so money columns are
    exact on every backend.
    """

    type_annotation_map = {
        Decimal: DecimalType(),
    }
