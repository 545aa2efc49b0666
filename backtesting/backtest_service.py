"""
Backtesting - Service.

============================================================
PURPOSE
============================================================
Caller-facing operations on backtest tasks.

- create: validate the request, fill defaults, persist PENDING
- run: execute a PENDING task through the replay engine
- stop / retry / delete: lifecycle control
- detail / list / trades: read views

Stop and retry write the status column only, so they never
overwrite a checkpoint the engine is saving concurrently.

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from core.clock import MILLIS_PER_DAY, ClockProtocol, SystemClock
from core.exceptions import TaskNotFoundError, TaskStateError, TaskValidationError
from trade_filters.types import KeywordFilterMode

from .config import TaskDefaults
from .replay_engine import ReplayEngine
from .state_machine import TransitionGuard, transition
from .store import TaskStore
from .types import (
    BacktestTask,
    BacktestTrade,
    CopyMode,
    CreateTaskRequest,
    PageResult,
    TaskListQuery,
    TaskStatus,
)


logger = logging.getLogger(__name__)


ZERO = Decimal("0")
HUNDRED = Decimal("100")

SORTABLE_FIELDS = ("created_at", "profit_amount", "profit_rate")


class BacktestService:
    """Task lifecycle and query operations over a TaskStore."""

    def __init__(
        self,
        store: TaskStore,
        engine: ReplayEngine,
        defaults: Optional[TaskDefaults] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._engine = engine
        self._defaults = defaults or TaskDefaults()
        self._clock = clock or SystemClock()

    # ========================================================
    # CREATE
    # ========================================================

    async def create_task(self, request: CreateTaskRequest) -> BacktestTask:
        """
        Validate a request and persist a PENDING task.

        Raises:
            TaskValidationError: a parameter is missing or out of range
        """
        task = self._build_task(request)
        created = await self._store.create_task(task)
        logger.info(
            f"Backtest task created: id={created.id}, name={created.task_name}, "
            f"leader={created.leader_address}, days={created.backtest_days}"
        )
        return created

    def _build_task(self, request: CreateTaskRequest) -> BacktestTask:
        defaults = self._defaults

        if request.leader_id is None:
            raise TaskValidationError("Leader id is required", field_name="leader_id")
        leader_address = (request.leader_address or "").strip()
        if not leader_address:
            raise TaskValidationError("Leader address is required", field_name="leader_address")

        task_name = (request.task_name or "").strip()
        if not task_name:
            raise TaskValidationError("Task name must not be blank", field_name="task_name")

        days = request.backtest_days
        if days is None or days < 1 or days > defaults.max_backtest_days:
            raise TaskValidationError(
                f"Backtest days must be between 1 and {defaults.max_backtest_days}",
                field_name="backtest_days",
            )

        if request.initial_balance is None or request.initial_balance <= ZERO:
            raise TaskValidationError("Initial balance must be positive", field_name="initial_balance")

        slippage = self._or_default(request.slippage_percent, defaults.slippage_percent)
        if slippage < ZERO or slippage >= HUNDRED:
            raise TaskValidationError(
                "Slippage percent must be in [0, 100)", field_name="slippage_percent"
            )

        try:
            copy_mode = CopyMode(str(self._or_default(request.copy_mode, defaults.copy_mode)).strip().upper())
        except ValueError:
            raise TaskValidationError(f"Invalid copy mode: {request.copy_mode}", field_name="copy_mode")

        if copy_mode == CopyMode.FIXED and (request.fixed_amount is None or request.fixed_amount <= ZERO):
            raise TaskValidationError(
                "Fixed amount must be positive in FIXED mode", field_name="fixed_amount"
            )

        copy_ratio = self._or_default(request.copy_ratio, defaults.copy_ratio)
        if copy_mode == CopyMode.RATIO and copy_ratio <= ZERO:
            raise TaskValidationError("Copy ratio must be positive", field_name="copy_ratio")

        max_order_size = self._or_default(request.max_order_size, defaults.max_order_size)
        min_order_size = self._or_default(request.min_order_size, defaults.min_order_size)
        if min_order_size > max_order_size:
            raise TaskValidationError(
                "Minimum order size must not exceed maximum order size", field_name="min_order_size"
            )

        try:
            keyword_mode = KeywordFilterMode.parse(
                self._or_default(request.keyword_filter_mode, defaults.keyword_filter_mode)
            )
        except ValueError:
            raise TaskValidationError(
                f"Invalid keyword filter mode: {request.keyword_filter_mode}",
                field_name="keyword_filter_mode",
            )

        keywords = [k.strip() for k in (request.keywords or []) if k and k.strip()]

        now = self._clock.now_ms()
        return BacktestTask(
            task_name=task_name,
            leader_id=request.leader_id,
            leader_address=leader_address,
            initial_balance=request.initial_balance,
            backtest_days=days,
            start_time=now - days * MILLIS_PER_DAY,
            copy_mode=copy_mode,
            copy_ratio=copy_ratio,
            fixed_amount=request.fixed_amount if copy_mode == CopyMode.FIXED else None,
            max_order_size=max_order_size,
            min_order_size=min_order_size,
            max_daily_loss=self._or_default(request.max_daily_loss, defaults.max_daily_loss),
            max_daily_orders=self._or_default(request.max_daily_orders, defaults.max_daily_orders),
            slippage_percent=slippage,
            support_sell=self._or_default(request.support_sell, defaults.support_sell),
            keyword_filter_mode=keyword_mode,
            keywords=keywords,
            status=TaskStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _or_default(value: Any, default: Any) -> Any:
        return default if value is None else value

    # ========================================================
    # LIFECYCLE
    # ========================================================

    async def _require_task(self, task_id: int) -> BacktestTask:
        task = await self._store.load_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def run_task(self, task_id: int) -> BacktestTask:
        """
        Run a PENDING task to a terminal status.

        Raises:
            TaskNotFoundError: no such task
            TaskStateError: task is not PENDING
        """
        task = await self._require_task(task_id)
        if task.status != TaskStatus.PENDING:
            raise TaskStateError(
                f"Only PENDING tasks can run (task is {task.status.value})",
                task_id=task_id,
                status=task.status.value,
            )
        return await self._engine.run(task)

    async def stop_task(self, task_id: int) -> BacktestTask:
        """Request a cooperative stop; the engine notices before its next page."""
        task = await self._require_task(task_id)
        if task.status != TaskStatus.RUNNING:
            raise TaskStateError(
                f"Only RUNNING tasks can be stopped (task is {task.status.value})",
                task_id=task_id,
                status=task.status.value,
            )
        transition(task, TaskStatus.STOPPED, reason="stop requested")
        await self._store.update_status(task_id, TaskStatus.STOPPED)
        logger.info(f"Backtest {task_id} stop requested")
        return task

    async def retry_task(self, task_id: int) -> BacktestTask:
        """Return a STOPPED or FAILED task to PENDING, keeping its checkpoint and ledger."""
        task = await self._require_task(task_id)
        allowed, _ = TransitionGuard.can_transition(task.status, TaskStatus.PENDING)
        if not allowed:
            raise TaskStateError(
                f"Only STOPPED or FAILED tasks can be retried (task is {task.status.value})",
                task_id=task_id,
                status=task.status.value,
            )
        transition(task, TaskStatus.PENDING, reason="retry requested")
        await self._store.update_status(task_id, TaskStatus.PENDING, error_message=None)
        logger.info(
            f"Backtest {task_id} queued for retry from index {task.last_processed_trade_index}"
        )
        return task

    async def delete_task(self, task_id: int) -> None:
        task = await self._require_task(task_id)
        if task.status == TaskStatus.RUNNING:
            raise TaskStateError(
                "A RUNNING task cannot be deleted; stop it first",
                task_id=task_id,
                status=task.status.value,
            )
        await self._store.delete_task(task_id)
        logger.info(f"Backtest {task_id} deleted")

    # ========================================================
    # QUERIES
    # ========================================================

    async def get_task_detail(self, task_id: int) -> Dict[str, Any]:
        """Task summary, risk configuration and statistics."""
        task = await self._require_task(task_id)

        def dec(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "task": task.to_dict(),
            "config": task.config_dict(),
            "statistics": {
                "total_trades": task.total_trades,
                "buy_trades": task.buy_trades,
                "sell_trades": task.sell_trades,
                "win_trades": task.win_trades,
                "loss_trades": task.loss_trades,
                "win_rate": dec(task.win_rate),
                "max_profit": dec(task.max_profit),
                "max_loss": dec(task.max_loss),
                "max_drawdown": dec(task.max_drawdown),
                "avg_holding_time": task.avg_holding_time,
            },
        }

    async def list_tasks(self, query: Optional[TaskListQuery] = None) -> PageResult[BacktestTask]:
        query = query or TaskListQuery()
        if query.sort_by not in SORTABLE_FIELDS:
            raise TaskValidationError(
                f"Cannot sort by {query.sort_by}; use one of {', '.join(SORTABLE_FIELDS)}",
                field_name="sort_by",
            )
        if query.sort_order.lower() not in ("asc", "desc"):
            raise TaskValidationError("Sort order must be asc or desc", field_name="sort_order")
        self._check_paging(query.page, query.size)
        return await self._store.list_tasks(query)

    async def list_trades(self, task_id: int, page: int = 1, size: int = 20) -> PageResult[BacktestTrade]:
        await self._require_task(task_id)
        self._check_paging(page, size)
        return await self._store.list_trades(task_id, page, size)

    @staticmethod
    def _check_paging(page: int, size: int) -> None:
        if page < 1:
            raise TaskValidationError("Page must be at least 1", field_name="page")
        if size < 1:
            raise TaskValidationError("Page size must be at least 1", field_name="size")
