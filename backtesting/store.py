"""
Backtesting - Task Store contract.

============================================================
PURPOSE
============================================================
Durable storage the engine and the service depend on.

WRITE RULES:
- save_checkpoint writes ledger rows and checkpoint columns in one
  transaction, and never touches status
- update_status touches only status and error message, so a stop
  request never rolls back a concurrent checkpoint
- Ledger rows are append-only

============================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional, Sequence

from trade_filters.types import PositionExposureProvider

from .types import (
    BacktestTask,
    BacktestTrade,
    Checkpoint,
    PageResult,
    TaskListQuery,
    TaskStatus,
)


class TaskStore(ABC):
    """Abstract durable store for tasks and their ledgers."""

    @abstractmethod
    async def create_task(self, task: BacktestTask) -> BacktestTask:
        """Insert a task and return it with its id and timestamps set."""
        pass

    @abstractmethod
    async def load_task(self, task_id: int) -> Optional[BacktestTask]:
        """Fresh copy of a task, None if it does not exist."""
        pass

    @abstractmethod
    async def save_task(self, task: BacktestTask) -> None:
        """Write every task column."""
        pass

    @abstractmethod
    async def update_status(
        self,
        task_id: int,
        status: TaskStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Write status and error message only."""
        pass

    @abstractmethod
    async def save_checkpoint(
        self,
        task_id: int,
        checkpoint: Checkpoint,
        rows: Sequence[BacktestTrade],
    ) -> None:
        """Append ledger rows and write the checkpoint atomically."""
        pass

    @abstractmethod
    async def append_ledger_rows(self, task_id: int, rows: Sequence[BacktestTrade]) -> None:
        """Append ledger rows outside a checkpoint."""
        pass

    @abstractmethod
    async def list_all_trades(self, task_id: int) -> List[BacktestTrade]:
        """Full ledger in insertion order, the order rows were produced."""
        pass

    @abstractmethod
    async def list_trades(self, task_id: int, page: int, size: int) -> PageResult[BacktestTrade]:
        """One 1-based page of the ledger ordered by trade time, then insertion order."""
        pass

    @abstractmethod
    async def list_tasks(self, query: TaskListQuery) -> PageResult[BacktestTask]:
        """Filtered, sorted, 1-based page of tasks."""
        pass

    @abstractmethod
    async def delete_task(self, task_id: int) -> bool:
        """Delete a task and its ledger. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def sum_exposure(self, task_id: int, market_id: str, outcome_index: int) -> Decimal:
        """
        Open cost basis for one market and outcome.

        BUY amounts minus (amount - P&L) of SELL and SETTLEMENT rows,
        floored at zero.
        """
        pass


class LedgerExposureProvider(PositionExposureProvider):
    """Exposure for the position cap, read from one task's ledger."""

    def __init__(self, store: TaskStore, task_id: int):
        self._store = store
        self._task_id = task_id

    async def get_tracked_exposure(self, market_id: str, outcome_index: int) -> Decimal:
        return await self._store.sum_exposure(self._task_id, market_id, outcome_index)
