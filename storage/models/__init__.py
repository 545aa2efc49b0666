"""
Storage Models Package.

ORM models for the backtest database.

============================================================
MODEL ORGANIZATION
============================================================

Base (base.py)
- Base
- DecimalType

Backtesting (backtesting.py)
- BacktestTaskModel
- BacktestTradeModel

============================================================
"""

from storage.models.base import Base, DecimalType
from storage.models.backtesting import BacktestTaskModel, BacktestTradeModel


__all__ = [
    "Base",
    "DecimalType",
    "BacktestTaskModel",
    "BacktestTradeModel",
]
