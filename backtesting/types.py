"""
Backtesting - Types.

============================================================
PURPOSE
============================================================
Domain types for copy-trading backtests.

- BacktestTask: configuration plus mutable run state
- BacktestTrade: one append-only ledger row
- Position: engine-local simulated holding
- BacktestStatistics: aggregates derived from the ledger

Money, prices and quantities are Decimal. Instants are epoch ms.

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from trade_filters.types import FilterConfig, KeywordFilterMode


ZERO = Decimal("0")


# ============================================================
# ENUMS
# ============================================================

class TaskStatus(Enum):
    """Backtest task lifecycle status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"
    FAILED = "FAILED"

    def is_terminal(self) -> bool:
        """Check if no run is active or queued."""
        return self in (TaskStatus.COMPLETED, TaskStatus.STOPPED, TaskStatus.FAILED)


class CopyMode(Enum):
    """How the follow amount is derived from a leader trade."""

    RATIO = "RATIO"
    FIXED = "FIXED"


class LedgerSide(Enum):
    """Ledger row type."""

    BUY = "BUY"
    SELL = "SELL"
    SETTLEMENT = "SETTLEMENT"


# Settlement row outcome labels
OUTCOME_WIN = "WIN"
OUTCOME_LOSE = "LOSE"
OUTCOME_UNKNOWN = "UNKNOWN"
OUTCOME_MARK = "MARK"


# ============================================================
# TASK
# ============================================================

@dataclass
class BacktestTask:
    """Backtest configuration and run state."""

    # Identity
    task_name: str
    leader_id: int
    leader_address: str
    initial_balance: Decimal
    backtest_days: int
    start_time: int
    id: Optional[int] = None

    # Risk and admission parameters
    copy_mode: CopyMode = CopyMode.RATIO
    copy_ratio: Decimal = Decimal("1")
    fixed_amount: Optional[Decimal] = None
    max_order_size: Decimal = Decimal("1000")
    min_order_size: Decimal = ZERO
    max_daily_loss: Decimal = Decimal("10000")
    max_daily_orders: int = 100
    slippage_percent: Decimal = ZERO
    support_sell: bool = True
    keyword_filter_mode: KeywordFilterMode = KeywordFilterMode.DISABLED
    keywords: List[str] = field(default_factory=list)

    # Lifecycle
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    end_time: Optional[int] = None
    error_message: Optional[str] = None

    # Resume checkpoint
    last_processed_trade_index: Optional[int] = None
    last_processed_trade_time: Optional[int] = None
    processed_trade_count: int = 0

    # Results
    final_balance: Optional[Decimal] = None
    profit_amount: Optional[Decimal] = None
    profit_rate: Optional[Decimal] = None
    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    win_trades: int = 0
    loss_trades: int = 0
    win_rate: Optional[Decimal] = None
    max_profit: Optional[Decimal] = None
    max_loss: Optional[Decimal] = None
    max_drawdown: Optional[Decimal] = None
    avg_holding_time: Optional[int] = None

    # Timestamps
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    execution_started_at: Optional[int] = None
    execution_finished_at: Optional[int] = None

    def filter_config(self) -> FilterConfig:
        """
        Admission limits applied during replay.

        Historical replays have no order book, so spread and depth stay off.
        """
        return FilterConfig(
            keyword_filter_mode=self.keyword_filter_mode,
            keywords=list(self.keywords),
        )

    def has_checkpoint(self) -> bool:
        return self.last_processed_trade_index is not None

    def apply_statistics(self, stats: "BacktestStatistics") -> None:
        self.total_trades = stats.total_trades
        self.buy_trades = stats.buy_trades
        self.sell_trades = stats.sell_trades
        self.win_trades = stats.win_trades
        self.loss_trades = stats.loss_trades
        self.win_rate = stats.win_rate
        self.max_profit = stats.max_profit
        self.max_loss = stats.max_loss
        self.max_drawdown = stats.max_drawdown
        self.avg_holding_time = stats.avg_holding_time

    def config_dict(self) -> Dict[str, Any]:
        """Risk configuration view."""
        return {
            "copy_mode": self.copy_mode.value,
            "copy_ratio": str(self.copy_ratio),
            "fixed_amount": str(self.fixed_amount) if self.fixed_amount is not None else None,
            "max_order_size": str(self.max_order_size),
            "min_order_size": str(self.min_order_size),
            "max_daily_loss": str(self.max_daily_loss),
            "max_daily_orders": self.max_daily_orders,
            "slippage_percent": str(self.slippage_percent),
            "support_sell": self.support_sell,
            "keyword_filter_mode": self.keyword_filter_mode.value,
            "keywords": list(self.keywords),
        }

    def to_dict(self) -> Dict[str, Any]:
        def dec(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "id": self.id,
            "task_name": self.task_name,
            "leader_id": self.leader_id,
            "leader_address": self.leader_address,
            "initial_balance": str(self.initial_balance),
            "final_balance": dec(self.final_balance),
            "profit_amount": dec(self.profit_amount),
            "profit_rate": dec(self.profit_rate),
            "backtest_days": self.backtest_days,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status.value,
            "progress": self.progress,
            "total_trades": self.total_trades,
            "error_message": self.error_message,
            "last_processed_trade_index": self.last_processed_trade_index,
            "processed_trade_count": self.processed_trade_count,
            "created_at": self.created_at,
            "execution_started_at": self.execution_started_at,
            "execution_finished_at": self.execution_finished_at,
        }


# ============================================================
# LEDGER ROW
# ============================================================

@dataclass
class BacktestTrade:
    """One ledger entry. Written once, never updated."""

    task_id: int
    trade_time: int
    market_id: str
    side: LedgerSide
    quantity: Decimal
    price: Decimal
    amount: Decimal
    balance_after: Decimal
    market_title: str = ""
    outcome: str = ""
    outcome_index: Optional[int] = None
    fee: Decimal = ZERO
    profit_loss: Optional[Decimal] = None
    leader_trade_id: Optional[str] = None
    position_key: Optional[str] = None
    """Position this row opened, changed or closed."""
    leader_size: Optional[Decimal] = None
    """Leader's share size for BUY/SELL rows."""
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "trade_time": self.trade_time,
            "market_id": self.market_id,
            "market_title": self.market_title,
            "side": self.side.value,
            "outcome": self.outcome,
            "outcome_index": self.outcome_index,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "amount": str(self.amount),
            "fee": str(self.fee),
            "profit_loss": str(self.profit_loss) if self.profit_loss is not None else None,
            "balance_after": str(self.balance_after),
            "leader_trade_id": self.leader_trade_id,
        }


# ============================================================
# CHECKPOINT
# ============================================================

@dataclass(frozen=True)
class Checkpoint:
    """Resume marker written atomically with a page's ledger rows."""

    last_processed_trade_index: Optional[int]
    last_processed_trade_time: Optional[int]
    processed_trade_count: int
    balance: Decimal
    progress: int

    def apply_to(self, task: "BacktestTask") -> None:
        task.last_processed_trade_index = self.last_processed_trade_index
        task.last_processed_trade_time = self.last_processed_trade_time
        task.processed_trade_count = self.processed_trade_count
        task.final_balance = self.balance
        task.progress = self.progress


# ============================================================
# POSITION
# ============================================================

def normalize_outcome(outcome: Optional[str]) -> str:
    return (outcome or "").strip().lower()


def position_key(market_id: str, outcome: Optional[str], outcome_index: Optional[int]) -> str:
    """Key a position by market and outcome label (index when the label is blank)."""
    outcome_key = normalize_outcome(outcome)
    if not outcome_key:
        outcome_key = str(outcome_index) if outcome_index is not None else ""
    return f"{market_id}:{outcome_key or '0'}"


@dataclass
class Position:
    """Simulated follower holding."""

    market_id: str
    outcome: str
    quantity: Decimal
    avg_price: Decimal
    outcome_index: Optional[int] = None
    leader_open_quantity: Decimal = ZERO
    market_title: str = ""

    @property
    def key(self) -> str:
        return position_key(self.market_id, self.outcome, self.outcome_index)

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.avg_price


# ============================================================
# STATISTICS
# ============================================================

@dataclass
class BacktestStatistics:
    """Aggregates over a finished ledger."""

    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    win_trades: int = 0
    loss_trades: int = 0
    win_rate: Decimal = ZERO
    max_profit: Decimal = ZERO
    max_loss: Decimal = ZERO
    max_drawdown: Decimal = ZERO
    avg_holding_time: Optional[int] = None
    total_profit: Decimal = ZERO
    total_loss: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "buy_trades": self.buy_trades,
            "sell_trades": self.sell_trades,
            "win_trades": self.win_trades,
            "loss_trades": self.loss_trades,
            "win_rate": str(self.win_rate),
            "max_profit": str(self.max_profit),
            "max_loss": str(self.max_loss),
            "max_drawdown": str(self.max_drawdown),
            "avg_holding_time": self.avg_holding_time,
        }


# ============================================================
# SERVICE REQUESTS
# ============================================================

@dataclass
class CreateTaskRequest:
    """Input for creating a task. None means "use the default"."""

    task_name: str
    leader_id: int
    leader_address: str
    initial_balance: Decimal
    backtest_days: int
    copy_mode: Optional[str] = None
    copy_ratio: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None
    max_order_size: Optional[Decimal] = None
    min_order_size: Optional[Decimal] = None
    max_daily_loss: Optional[Decimal] = None
    max_daily_orders: Optional[int] = None
    slippage_percent: Optional[Decimal] = None
    support_sell: Optional[bool] = None
    keyword_filter_mode: Optional[str] = None
    keywords: Optional[List[str]] = None


@dataclass
class TaskListQuery:
    """Task list filters, sorting and 1-based paging."""

    leader_id: Optional[int] = None
    status: Optional[TaskStatus] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    size: int = 20


T = TypeVar("T")


@dataclass
class PageResult(Generic[T]):
    """One page of results."""

    items: List[T]
    total: int
    page: int
    size: int
