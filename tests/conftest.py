"""
Shared test doubles.

============================================================
PURPOSE
============================================================
In-memory fakes for the collaborators the replay engine and the
service depend on.

- FakeActivitySource: scripted leader trades and HTTP failures
- FakeMarketMetadata: dict-backed market metadata
- InMemoryTaskStore: TaskStore without a database

============================================================
"""

import copy
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import pytest

from backtesting.store import TaskStore
from backtesting.types import (
    BacktestTask,
    BacktestTrade,
    Checkpoint,
    LedgerSide,
    PageResult,
    TaskListQuery,
    TaskStatus,
)
from core.clock import MILLIS_PER_DAY, FixedClock
from data_sources.base import BaseActivitySource
from data_sources.exceptions import FetchError
from data_sources.models import ActivityRequest, TradeData, TradeSide
from market_data.base import MarketMetadataProvider
from market_data.models import MarketInfo


NOW_MS = 1_700_000_000_000
HOUR_MS = 3_600_000
ZERO = Decimal("0")


# ============================================================
# BUILDERS
# ============================================================

def make_trade(
    index: int,
    side: str = "BUY",
    price: str = "0.50",
    size: str = "200",
    amount: Optional[str] = None,
    market_id: str = "0xmarket1",
    outcome: str = "Yes",
    outcome_index: Optional[int] = 0,
    timestamp: Optional[int] = None,
    title: str = "Will it rain tomorrow?",
) -> TradeData:
    """Leader trade ``index`` hours after the start of a 7-day window."""
    price_d = Decimal(price)
    size_d = Decimal(size)
    return TradeData(
        trade_id=f"0xtx{index}",
        market_id=market_id,
        side=TradeSide.parse(side),
        price=price_d,
        size=size_d,
        amount=Decimal(amount) if amount is not None else price_d * size_d,
        timestamp=timestamp if timestamp is not None else NOW_MS - 7 * MILLIS_PER_DAY + (index + 1) * HOUR_MS,
        outcome=outcome,
        outcome_index=outcome_index,
        market_title=title,
    )


def make_task(**overrides: Any) -> BacktestTask:
    values = dict(
        task_name="copy whale",
        leader_id=7,
        leader_address="0xleader",
        initial_balance=Decimal("1000"),
        backtest_days=7,
        start_time=NOW_MS - 7 * MILLIS_PER_DAY,
        created_at=NOW_MS,
        updated_at=NOW_MS,
    )
    values.update(overrides)
    return BacktestTask(**values)


def make_market(
    market_id: str = "0xmarket1",
    prices: Sequence[str] = ("0.55", "0.45"),
    resolved_at_ms: Optional[int] = None,
    title: str = "Will it rain tomorrow?",
) -> MarketInfo:
    return MarketInfo(
        market_id=market_id,
        title=title,
        outcomes=("Yes", "No"),
        outcome_prices=tuple(Decimal(p) for p in prices),
        token_ids=("tok-yes", "tok-no"),
        active=resolved_at_ms is None,
        closed=resolved_at_ms is not None,
        archived=False,
        resolved_at_ms=resolved_at_ms,
    )


# ============================================================
# FAKE ACTIVITY SOURCE
# ============================================================

class FakeActivitySource(BaseActivitySource):
    """
    Serves a fixed trade list by offset.

    ``failures`` maps an offset to a list of status codes raised (one
    per call) before that offset succeeds. ``end_status`` is raised for
    every offset at or beyond ``end_offset``.
    """

    def __init__(
        self,
        trades: Sequence[TradeData],
        failures: Optional[Dict[int, List[int]]] = None,
        end_offset: Optional[int] = None,
        end_status: int = 400,
        on_fetch: Optional[Callable[[ActivityRequest], Awaitable[None]]] = None,
    ):
        super().__init__()
        self.trades = list(trades)
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.end_offset = end_offset
        self.end_status = end_status
        self.on_fetch = on_fetch
        self.requests: List[ActivityRequest] = []

    @property
    def name(self) -> str:
        return "fake_activity"

    async def fetch_activity(self, request: ActivityRequest) -> List[Any]:
        self.requests.append(request)
        if self.on_fetch is not None:
            await self.on_fetch(request)

        pending = self.failures.get(request.offset)
        if pending:
            status = pending.pop(0)
            raise FetchError(f"HTTP {status}", source_name=self.name, status_code=status)
        if self.end_offset is not None and request.offset >= self.end_offset:
            raise FetchError(f"HTTP {self.end_status}", source_name=self.name, status_code=self.end_status)

        return self.trades[request.offset:request.offset + request.limit]

    def normalize(self, raw_data: List[Any], request: ActivityRequest) -> List[TradeData]:
        return list(raw_data)


# ============================================================
# FAKE MARKET METADATA
# ============================================================

class FakeMarketMetadata(MarketMetadataProvider):
    """Markets from a dict; unknown ids return None."""

    def __init__(self, markets: Optional[Dict[str, MarketInfo]] = None):
        self.markets = dict(markets or {})
        self.calls = 0

    async def get_market(self, market_id: str) -> Optional[MarketInfo]:
        self.calls += 1
        return self.markets.get(market_id)


# ============================================================
# IN-MEMORY STORE
# ============================================================

class InMemoryTaskStore(TaskStore):
    """TaskStore over dicts; returns copies so callers never share state."""

    def __init__(self):
        self.tasks: Dict[int, BacktestTask] = {}
        self.trades: Dict[int, List[BacktestTrade]] = {}
        self.checkpoints: List[Checkpoint] = []
        self._next_task_id = 1
        self._next_trade_id = 1

    async def create_task(self, task: BacktestTask) -> BacktestTask:
        task.id = self._next_task_id
        self._next_task_id += 1
        self.tasks[task.id] = copy.deepcopy(task)
        self.trades[task.id] = []
        return task

    async def load_task(self, task_id: int) -> Optional[BacktestTask]:
        task = self.tasks.get(task_id)
        return copy.deepcopy(task) if task is not None else None

    async def save_task(self, task: BacktestTask) -> None:
        self.tasks[task.id] = copy.deepcopy(task)

    async def update_status(self, task_id: int, status: TaskStatus, error_message: Optional[str] = None) -> None:
        task = self.tasks[task_id]
        task.status = status
        task.error_message = error_message

    async def save_checkpoint(self, task_id: int, checkpoint: Checkpoint, rows: Sequence[BacktestTrade]) -> None:
        await self.append_ledger_rows(task_id, rows)
        checkpoint.apply_to(self.tasks[task_id])
        self.checkpoints.append(checkpoint)

    async def append_ledger_rows(self, task_id: int, rows: Sequence[BacktestTrade]) -> None:
        for row in rows:
            stored = copy.deepcopy(row)
            stored.id = self._next_trade_id
            self._next_trade_id += 1
            self.trades[task_id].append(stored)

    async def list_all_trades(self, task_id: int) -> List[BacktestTrade]:
        return copy.deepcopy(self.trades.get(task_id, []))

    async def list_trades(self, task_id: int, page: int, size: int) -> PageResult[BacktestTrade]:
        rows = sorted(await self.list_all_trades(task_id), key=lambda t: (t.trade_time, t.id))
        start = (page - 1) * size
        return PageResult(items=rows[start:start + size], total=len(rows), page=page, size=size)

    async def list_tasks(self, query: TaskListQuery) -> PageResult[BacktestTask]:
        tasks = [
            t for t in self.tasks.values()
            if (query.leader_id is None or t.leader_id == query.leader_id)
            and (query.status is None or t.status == query.status)
        ]
        tasks.sort(
            key=lambda t: (getattr(t, query.sort_by) or ZERO, t.id),
            reverse=query.sort_order.lower() == "desc",
        )
        start = (query.page - 1) * query.size
        return PageResult(
            items=copy.deepcopy(tasks[start:start + query.size]),
            total=len(tasks),
            page=query.page,
            size=query.size,
        )

    async def delete_task(self, task_id: int) -> bool:
        self.trades.pop(task_id, None)
        return self.tasks.pop(task_id, None) is not None

    async def sum_exposure(self, task_id: int, market_id: str, outcome_index: int) -> Decimal:
        exposure = ZERO
        for row in self.trades.get(task_id, []):
            if row.market_id != market_id or row.outcome_index != outcome_index:
                continue
            if row.side == LedgerSide.BUY:
                exposure += row.amount
            else:
                exposure -= row.amount - (row.profit_loss or ZERO)
        return max(exposure, ZERO)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW_MS)


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def metadata() -> FakeMarketMetadata:
    return FakeMarketMetadata({"0xmarket1": make_market()})
