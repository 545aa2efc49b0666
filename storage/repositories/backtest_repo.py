"""
Backtest Repository.

============================================================
PURPOSE
============================================================
SQLAlchemy implementation of backtesting.store.TaskStore.

RESPONSIBILITIES:
- Create/load/save tasks
- Status-only and checkpoint-only updates
- Append and page through ledger rows
- Exposure sums for the position cap

CRITICAL REQUIREMENTS:
- A checkpoint and its ledger rows commit together
- Status writes never touch checkpoint columns
- Ledger order is (trade_time, id)

============================================================
"""

from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import Float, asc, cast, delete, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from backtesting.store import TaskStore
from backtesting.types import (
    BacktestTask,
    BacktestTrade,
    Checkpoint,
    CopyMode,
    LedgerSide,
    PageResult,
    TaskListQuery,
    TaskStatus,
)
from storage.database import Database
from storage.models.backtesting import BacktestTaskModel, BacktestTradeModel
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import RecordNotFoundError
from trade_filters.types import KeywordFilterMode


ZERO = Decimal("0")

SORT_COLUMNS = {
    "created_at": BacktestTaskModel.created_at,
    # SQLite stores decimals as text; cast keeps numeric ordering
    "profit_amount": cast(BacktestTaskModel.profit_amount, Float),
    "profit_rate": cast(BacktestTaskModel.profit_rate, Float),
}


# ============================================================
# MODEL <-> DOMAIN MAPPING
# ============================================================

_TASK_COLUMNS = (
    "task_name", "leader_id", "leader_address", "initial_balance", "backtest_days",
    "start_time", "end_time", "copy_ratio", "fixed_amount", "max_order_size",
    "min_order_size", "max_daily_loss", "max_daily_orders", "slippage_percent",
    "support_sell", "progress", "error_message", "last_processed_trade_index",
    "last_processed_trade_time", "processed_trade_count", "final_balance",
    "profit_amount", "profit_rate", "total_trades", "buy_trades", "sell_trades",
    "win_trades", "loss_trades", "win_rate", "max_profit", "max_loss", "max_drawdown",
    "avg_holding_time", "created_at", "updated_at", "execution_started_at",
    "execution_finished_at",
)


def task_to_model(task: BacktestTask, model: Optional[BacktestTaskModel] = None) -> BacktestTaskModel:
    model = model or BacktestTaskModel()
    for name in _TASK_COLUMNS:
        setattr(model, name, getattr(task, name))
    model.copy_mode = task.copy_mode.value
    model.keyword_filter_mode = task.keyword_filter_mode.value
    model.keywords = list(task.keywords)
    model.status = task.status.value
    return model


def model_to_task(model: BacktestTaskModel) -> BacktestTask:
    values = {name: getattr(model, name) for name in _TASK_COLUMNS}
    return BacktestTask(
        id=model.id,
        copy_mode=CopyMode(model.copy_mode),
        keyword_filter_mode=KeywordFilterMode.parse(model.keyword_filter_mode),
        keywords=list(model.keywords or []),
        status=TaskStatus(model.status),
        **values,
    )


def trade_to_model(trade: BacktestTrade, task_id: int) -> BacktestTradeModel:
    return BacktestTradeModel(
        task_id=task_id,
        trade_time=trade.trade_time,
        market_id=trade.market_id,
        market_title=trade.market_title or "",
        side=trade.side.value,
        outcome=trade.outcome or "",
        outcome_index=trade.outcome_index,
        quantity=trade.quantity,
        price=trade.price,
        amount=trade.amount,
        fee=trade.fee,
        profit_loss=trade.profit_loss,
        balance_after=trade.balance_after,
        leader_trade_id=trade.leader_trade_id,
        position_key=trade.position_key,
        leader_size=trade.leader_size,
    )


def model_to_trade(model: BacktestTradeModel) -> BacktestTrade:
    return BacktestTrade(
        id=model.id,
        task_id=model.task_id,
        trade_time=model.trade_time,
        market_id=model.market_id,
        market_title=model.market_title,
        side=LedgerSide(model.side),
        outcome=model.outcome,
        outcome_index=model.outcome_index,
        quantity=model.quantity,
        price=model.price,
        amount=model.amount,
        fee=model.fee,
        profit_loss=model.profit_loss,
        balance_after=model.balance_after,
        leader_trade_id=model.leader_trade_id,
        position_key=model.position_key,
        leader_size=model.leader_size,
    )


# ============================================================
# TASK STORE
# ============================================================

class SqlAlchemyTaskStore(BaseRepository, TaskStore):
    """
    Durable TaskStore on SQLAlchemy async sessions.

    Every public method runs in its own transaction.
    """

    def __init__(self, database: Database):
        super().__init__(database, "BacktestRepository")

    # --------------------------------------------------------
    # TASKS
    # --------------------------------------------------------

    async def create_task(self, task: BacktestTask) -> BacktestTask:
        try:
            async with self._database.session() as session:
                model = task_to_model(task)
                session.add(model)
                await session.flush()
                task.id = model.id
        except SQLAlchemyError as e:
            self._handle_db_error(e, "create_task", {"task_name": task.task_name})
        self._logger.debug(f"Created task {task.id}")
        return task

    async def load_task(self, task_id: int) -> Optional[BacktestTask]:
        try:
            async with self._database.session() as session:
                model = await session.get(BacktestTaskModel, task_id)
                return model_to_task(model) if model is not None else None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "load_task", {"task_id": task_id})

    async def save_task(self, task: BacktestTask) -> None:
        try:
            async with self._database.session() as session:
                model = await session.get(BacktestTaskModel, task.id)
                if model is None:
                    raise RecordNotFoundError(self._repository_name, task.id, operation="save_task")
                task_to_model(task, model)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "save_task", {"task_id": task.id})

    async def update_status(
        self,
        task_id: int,
        status: TaskStatus,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            async with self._database.session() as session:
                result = await session.execute(
                    update(BacktestTaskModel)
                    .where(BacktestTaskModel.id == task_id)
                    .values(status=status.value, error_message=error_message)
                )
                if result.rowcount == 0:
                    raise RecordNotFoundError(self._repository_name, task_id, operation="update_status")
        except SQLAlchemyError as e:
            self._handle_db_error(e, "update_status", {"task_id": task_id, "status": status.value})

    async def save_checkpoint(
        self,
        task_id: int,
        checkpoint: Checkpoint,
        rows: Sequence[BacktestTrade],
    ) -> None:
        try:
            async with self._database.session() as session:
                session.add_all([trade_to_model(row, task_id) for row in rows])
                await session.execute(
                    update(BacktestTaskModel)
                    .where(BacktestTaskModel.id == task_id)
                    .values(
                        last_processed_trade_index=checkpoint.last_processed_trade_index,
                        last_processed_trade_time=checkpoint.last_processed_trade_time,
                        processed_trade_count=checkpoint.processed_trade_count,
                        final_balance=checkpoint.balance,
                        progress=checkpoint.progress,
                    )
                )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "save_checkpoint", {"task_id": task_id, "rows": len(rows)})
        self._logger.debug(
            f"Checkpoint for task {task_id}: index={checkpoint.last_processed_trade_index}, rows={len(rows)}"
        )

    async def list_tasks(self, query: TaskListQuery) -> PageResult[BacktestTask]:
        conditions = []
        if query.leader_id is not None:
            conditions.append(BacktestTaskModel.leader_id == query.leader_id)
        if query.status is not None:
            conditions.append(BacktestTaskModel.status == query.status.value)

        sort_column = SORT_COLUMNS.get(query.sort_by, BacktestTaskModel.created_at)
        direction = asc if query.sort_order.lower() == "asc" else desc

        try:
            async with self._database.session() as session:
                count_stmt = select(func.count()).select_from(BacktestTaskModel)
                page_stmt = select(BacktestTaskModel)
                for condition in conditions:
                    count_stmt = count_stmt.where(condition)
                    page_stmt = page_stmt.where(condition)
                total = await session.scalar(count_stmt)
                result = await session.execute(
                    page_stmt
                    .order_by(direction(sort_column), direction(BacktestTaskModel.id))
                    .offset((query.page - 1) * query.size)
                    .limit(query.size)
                )
                items = [model_to_task(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_tasks", {"sort_by": query.sort_by})
        return PageResult(items=items, total=total or 0, page=query.page, size=query.size)

    async def delete_task(self, task_id: int) -> bool:
        try:
            async with self._database.session() as session:
                await session.execute(
                    delete(BacktestTradeModel).where(BacktestTradeModel.task_id == task_id)
                )
                result = await session.execute(
                    delete(BacktestTaskModel).where(BacktestTaskModel.id == task_id)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "delete_task", {"task_id": task_id})

    # --------------------------------------------------------
    # LEDGER
    # --------------------------------------------------------

    async def append_ledger_rows(self, task_id: int, rows: Sequence[BacktestTrade]) -> None:
        if not rows:
            return
        try:
            async with self._database.session() as session:
                session.add_all([trade_to_model(row, task_id) for row in rows])
        except SQLAlchemyError as e:
            self._handle_db_error(e, "append_ledger_rows", {"task_id": task_id, "rows": len(rows)})

    def _ledger_query(self, task_id: int):
        return select(BacktestTradeModel).where(BacktestTradeModel.task_id == task_id)

    async def list_all_trades(self, task_id: int) -> List[BacktestTrade]:
        # Insertion order: settlement rows can carry a resolution time
        # earlier than the BUY that opened the position
        try:
            async with self._database.session() as session:
                result = await session.execute(
                    self._ledger_query(task_id).order_by(BacktestTradeModel.id)
                )
                return [model_to_trade(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_all_trades", {"task_id": task_id})

    async def list_trades(self, task_id: int, page: int, size: int) -> PageResult[BacktestTrade]:
        try:
            async with self._database.session() as session:
                total = await session.scalar(
                    select(func.count())
                    .select_from(BacktestTradeModel)
                    .where(BacktestTradeModel.task_id == task_id)
                )
                result = await session.execute(
                    self._ledger_query(task_id)
                    .order_by(BacktestTradeModel.trade_time, BacktestTradeModel.id)
                    .offset((page - 1) * size)
                    .limit(size)
                )
                items = [model_to_trade(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            self._handle_db_error(e, "list_trades", {"task_id": task_id, "page": page})
        return PageResult(items=items, total=total or 0, page=page, size=size)

    async def sum_exposure(self, task_id: int, market_id: str, outcome_index: int) -> Decimal:
        # Summed in Python: SQLite keeps decimals as text
        try:
            async with self._database.session() as session:
                result = await session.execute(
                    select(
                        BacktestTradeModel.side,
                        BacktestTradeModel.amount,
                        BacktestTradeModel.profit_loss,
                    ).where(
                        BacktestTradeModel.task_id == task_id,
                        BacktestTradeModel.market_id == market_id,
                        BacktestTradeModel.outcome_index == outcome_index,
                    )
                )
                rows = result.all()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "sum_exposure", {"task_id": task_id, "market_id": market_id})

        exposure = ZERO
        for side, amount, profit_loss in rows:
            if side == LedgerSide.BUY.value:
                exposure += amount
            else:
                exposure -= amount - (profit_loss or ZERO)
        return max(exposure, ZERO)
