"""
Backtesting Domain ORM Models.

============================================================
PURPOSE
============================================================
Tables for copy-trading backtest tasks and their ledgers.

============================================================
DATA LIFECYCLE ROLE
============================================================
- backtest_task: MUTABLE (status, checkpoint, results)
- backtest_trade: APPEND-ONLY ledger, deleted with its task

Instants are epoch milliseconds (BIGINT). Money, prices and
quantities use DecimalType.

============================================================
MODELS
============================================================
- BacktestTaskModel: task configuration and run state
- BacktestTradeModel: simulated ledger rows

============================================================
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storage.models.base import Base, DecimalType


class BacktestTaskModel(Base):
    """
    Backtest task.

    ============================================================
    PURPOSE
    ============================================================
    One row per task: leader, window, risk parameters, lifecycle
    status, resume checkpoint and final statistics.

    ============================================================
    """

    __tablename__ = "backtest_task"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Task id"
    )

    # Identity
    task_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Human-readable task name"
    )

    leader_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Leader id"
    )

    leader_address: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Leader wallet address"
    )

    # Window
    initial_balance: Mapped[Decimal] = mapped_column(
        DecimalType(),
        nullable=False,
        comment="Starting cash"
    )

    backtest_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Lookback window in days"
    )

    start_time: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Window start (epoch ms)"
    )

    end_time: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Window end, fixed at first run (epoch ms)"
    )

    # Risk parameters
    copy_mode: Mapped[str] = mapped_column(String(10), nullable=False, default="RATIO")
    copy_ratio: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    fixed_amount: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    max_order_size: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    min_order_size: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    max_daily_loss: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    max_daily_orders: Mapped[int] = mapped_column(Integer, nullable=False)
    slippage_percent: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    support_sell: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    keyword_filter_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="DISABLED")
    keywords: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Keyword list for the market title filter"
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        comment="Status: PENDING, RUNNING, COMPLETED, STOPPED, FAILED"
    )

    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Progress percentage"
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Error message if failed"
    )

    # Resume checkpoint
    last_processed_trade_index: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Global index of the last processed leader trade"
    )

    last_processed_trade_time: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Timestamp of the last processed leader trade (epoch ms)"
    )

    processed_trade_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Results
    final_balance: Mapped[Optional[Decimal]] = mapped_column(
        DecimalType(),
        nullable=True,
        comment="Checkpointed cash while running, final cash when done"
    )
    profit_amount: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    profit_rate: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    buy_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sell_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loss_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_rate: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    max_profit: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    max_loss: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    max_drawdown: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    avg_holding_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Timestamps
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    execution_started_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    execution_finished_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    trades: Mapped[List["BacktestTradeModel"]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_backtest_task_leader_id", "leader_id"),
        Index("ix_backtest_task_status", "status"),
        Index("ix_backtest_task_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BacktestTaskModel(id={self.id}, name={self.task_name}, status={self.status})>"


class BacktestTradeModel(Base):
    """
    Backtest ledger row.

    ============================================================
    PURPOSE
    ============================================================
    One simulated BUY, SELL or SETTLEMENT. Rows are written once
    and read back in (trade_time, id) order.

    ============================================================
    """

    __tablename__ = "backtest_trade"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Insertion order"
    )

    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("backtest_task.id", ondelete="CASCADE"),
        nullable=False,
    )

    trade_time: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Leader trade time, resolution time or mark time (epoch ms)"
    )

    market_id: Mapped[str] = mapped_column(String(100), nullable=False)
    market_title: Mapped[str] = mapped_column(Text, nullable=False, default="")

    side: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="BUY, SELL or SETTLEMENT"
    )

    outcome: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        comment="Outcome label, or WIN/LOSE/UNKNOWN/MARK for settlements"
    )

    outcome_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    price: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    fee: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    profit_loss: Mapped[Optional[Decimal]] = mapped_column(DecimalType(), nullable=True)
    balance_after: Mapped[Decimal] = mapped_column(DecimalType(), nullable=False)
    leader_trade_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    position_key: Mapped[Optional[str]] = mapped_column(
        String(250),
        nullable=True,
        comment="Simulated position the row affected"
    )

    leader_size: Mapped[Optional[Decimal]] = mapped_column(
        DecimalType(),
        nullable=True,
        comment="Leader share size of the copied trade"
    )

    task: Mapped["BacktestTaskModel"] = relationship(back_populates="trades")

    __table_args__ = (
        Index("ix_backtest_trade_task_time", "task_id", "trade_time", "id"),
        Index("ix_backtest_trade_task_market", "task_id", "market_id", "outcome_index"),
    )

    def __repr__(self) -> str:
        return (
            f"<BacktestTradeModel(id={self.id}, task_id={self.task_id}, "
            f"side={self.side}, market={self.market_id})>"
        )
