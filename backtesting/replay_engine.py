"""
Backtesting - Replay Engine.

============================================================
PURPOSE
============================================================
Replays a leader's historical trades against a simulated
follower account and writes the resulting ledger.

PER RUN:
1. PENDING -> RUNNING, fix the end time, restore state
2. Page through trades from the checkpoint
   - re-read status before each page (cooperative stop)
   - per trade: settle resolved positions, liquidity guard,
     filter pipeline, BUY or SELL sizing
   - after each page: ledger rows + checkpoint in one write
3. Settle everything resolved by the end time
4. Mark remaining positions to market
5. Statistics, profit, COMPLETED (or STOPPED)

Any exception escaping the run sets FAILED with the error
message and is re-raised. The last checkpoint is left intact.

============================================================
RESUME
============================================================
Balance comes from the checkpoint. Open positions, daily BUY
counts and daily losses are rebuilt by replaying the persisted
ledger, so a resumed run writes the same remaining rows as an
uninterrupted one.

============================================================
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from core.clock import ClockProtocol, SystemClock, day_key, format_timestamp
from data_sources.historical_fetcher import HistoricalTradeFetcher
from data_sources.models import TradeData
from market_data.base import MarketMetadataProvider, PriceOracle
from trade_filters.pipeline import TradeFilterPipeline
from trade_filters.types import FilterConfig, MarketContext

from .config import EngineConfig
from .sizing import (
    apply_buy_slippage,
    apply_sell_slippage,
    buy_quantity,
    clamp_order_size,
    follow_amount,
    money,
    profit_rate,
    quantity_for_amount,
    ratio_sell_quantity,
    weighted_average_price,
)
from .state_machine import transition
from .statistics import calculate_statistics
from .store import LedgerExposureProvider, TaskStore
from .types import (
    OUTCOME_LOSE,
    OUTCOME_MARK,
    OUTCOME_UNKNOWN,
    OUTCOME_WIN,
    BacktestTask,
    BacktestTrade,
    Checkpoint,
    CopyMode,
    LedgerSide,
    Position,
    TaskStatus,
    position_key,
)


logger = logging.getLogger(__name__)


ZERO = Decimal("0")
ONE = Decimal("1")


# ============================================================
# REPLAY STATE
# ============================================================

@dataclass
class ReplayState:
    """Mutable simulation state, private to one run."""

    balance: Decimal
    """Cash balance."""

    positions: Dict[str, Position] = field(default_factory=dict)
    """Open positions by position key."""

    daily_buy_counts: Dict[str, int] = field(default_factory=dict)
    """BUY fills per UTC day."""

    daily_losses: Dict[str, Decimal] = field(default_factory=dict)
    """Accumulated SELL losses per UTC day (positive numbers)."""

    @property
    def open_cost_basis(self) -> Decimal:
        return sum((money(p.cost_basis) for p in self.positions.values()), ZERO)


def start_page(last_processed_index: Optional[int], page_size: int) -> int:
    """First page to fetch for a checkpoint; the next page when it ended a page."""
    if last_processed_index is None:
        return 0
    page = last_processed_index // page_size
    if last_processed_index % page_size == page_size - 1:
        page += 1
    return page


# ============================================================
# REPLAY ENGINE
# ============================================================

class ReplayEngine:
    """
    Runs one backtest task to a terminal status.

    Collaborators are injected; the engine owns no network or
    database resources.
    """

    def __init__(
        self,
        store: TaskStore,
        fetcher: HistoricalTradeFetcher,
        metadata: MarketMetadataProvider,
        oracle: PriceOracle,
        filters: Optional[TradeFilterPipeline] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._fetcher = fetcher
        self._metadata = metadata
        self._oracle = oracle
        self._clock = clock or SystemClock()
        self._filters = filters or TradeFilterPipeline(clock=self._clock)
        self._config = config or EngineConfig()

    # --------------------------------------------------------
    # Run lifecycle
    # --------------------------------------------------------

    async def run(self, task: BacktestTask) -> BacktestTask:
        """
        Execute a PENDING task.

        Raises:
            TaskStateError: task is not PENDING
            Exception: whatever failed the run (task is FAILED first)
        """
        transition(task, TaskStatus.RUNNING, reason="run started")
        now = self._clock.now_ms()
        task.execution_started_at = now
        task.execution_finished_at = None
        if task.end_time is None:
            task.end_time = now
        task.updated_at = now
        await self._store.save_task(task)

        logger.info(
            f"Backtest {task.id} started: leader={task.leader_address}, "
            f"window={format_timestamp(task.start_time)}..{format_timestamp(task.end_time)}, "
            f"checkpoint={task.last_processed_trade_index}"
        )

        try:
            state = await self._restore_state(task)
            stopped = await self._replay_pages(task, state)
            if stopped:
                await self._finish_stopped(task, state)
            else:
                await self._finish_completed(task, state)
        except Exception as e:
            logger.error(f"Backtest {task.id} failed: {e}", exc_info=True)
            await self._mark_failed(task, e)
            raise

        return task

    async def _mark_failed(self, task: BacktestTask, error: Exception) -> None:
        now = self._clock.now_ms()
        transition(task, TaskStatus.FAILED, reason="run error", error_message=str(error) or type(error).__name__)
        task.execution_finished_at = now
        task.updated_at = now
        await self._store.save_task(task)

    async def _restore_state(self, task: BacktestTask) -> ReplayState:
        if not task.has_checkpoint():
            return ReplayState(balance=task.initial_balance)

        balance = task.final_balance if task.final_balance is not None else task.initial_balance
        state = ReplayState(balance=balance)
        ledger = await self._store.list_all_trades(task.id)
        for row in ledger:
            self._replay_ledger_row(task, state, row)

        logger.info(
            f"Backtest {task.id} resuming after index {task.last_processed_trade_index}: "
            f"balance={state.balance}, open positions={len(state.positions)}, ledger rows={len(ledger)}"
        )
        return state

    def _replay_ledger_row(self, task: BacktestTask, state: ReplayState, row: BacktestTrade) -> None:
        """Apply a persisted row's effect on positions and daily counters."""
        key = row.position_key or position_key(row.market_id, row.outcome, row.outcome_index)
        day = day_key(row.trade_time)

        if row.side == LedgerSide.BUY:
            state.daily_buy_counts[day] = state.daily_buy_counts.get(day, 0) + 1
            leader_size = row.leader_size or ZERO
            existing = state.positions.get(key)
            if existing is None:
                state.positions[key] = Position(
                    market_id=row.market_id,
                    outcome=row.outcome,
                    outcome_index=row.outcome_index,
                    quantity=row.quantity,
                    avg_price=row.price,
                    leader_open_quantity=leader_size,
                    market_title=row.market_title,
                )
            else:
                existing.avg_price = weighted_average_price(
                    existing.quantity, existing.avg_price, row.quantity, row.price, self._config.price_scale,
                )
                existing.quantity += row.quantity
                existing.leader_open_quantity += leader_size

        elif row.side == LedgerSide.SELL:
            position = state.positions.get(key)
            if position is not None:
                position.quantity -= row.quantity
                if task.copy_mode == CopyMode.RATIO:
                    leader_size = row.leader_size or ZERO
                    position.leader_open_quantity -= min(leader_size, position.leader_open_quantity)
                if position.quantity <= ZERO:
                    del state.positions[key]
            if row.profit_loss is not None and row.profit_loss < ZERO:
                state.daily_losses[day] = state.daily_losses.get(day, ZERO) - row.profit_loss

        else:
            state.positions.pop(key, None)

    async def _replay_pages(self, task: BacktestTask, state: ReplayState) -> bool:
        """Page loop. Returns True when the task was stopped externally."""
        page_size = self._fetcher.page_size
        page = start_page(task.last_processed_trade_index, page_size)
        checkpoint_index = task.last_processed_trade_index
        filter_config = task.filter_config()
        # The position cap needs a follow amount, which replay never passes;
        # the cap only applies to live copy orders
        exposure = LedgerExposureProvider(self._store, task.id)

        while True:
            current = await self._store.load_task(task.id)
            if current is None or current.status != TaskStatus.RUNNING:
                logger.info(
                    f"Backtest {task.id} status changed to "
                    f"{current.status.value if current else 'DELETED'}, stopping at page {page}"
                )
                return True

            trades = await self._fetcher.fetch_page(
                task.leader_address, task.start_time, task.end_time, page, page_size,
            )
            if not trades:
                logger.info(f"Backtest {task.id}: page {page} empty, all data processed")
                return False

            logger.info(f"Backtest {task.id}: page {page} has {len(trades)} trades")

            page_rows: List[BacktestTrade] = []
            last_index: Optional[int] = None
            last_time: Optional[int] = None
            progress = task.progress
            halted = False

            for local_index, trade in enumerate(trades):
                index = page * page_size + local_index
                if checkpoint_index is not None and index <= checkpoint_index:
                    continue

                last_index = index
                last_time = trade.timestamp
                progress = max(progress, local_index * 100 // page_size)

                try:
                    halted = await self._process_trade(task, state, trade, filter_config, exposure, page_rows)
                except Exception as e:
                    logger.error(f"Backtest {task.id}: failed to process trade {trade.trade_id}: {e}", exc_info=True)
                    continue
                if halted:
                    break

            if last_index is not None:
                checkpoint = Checkpoint(
                    last_processed_trade_index=last_index,
                    last_processed_trade_time=last_time,
                    processed_trade_count=last_index + 1,
                    balance=state.balance,
                    progress=progress,
                )
                await self._store.save_checkpoint(task.id, checkpoint, page_rows)
                checkpoint.apply_to(task)
                checkpoint_index = last_index
                logger.info(
                    f"Backtest {task.id}: page {page} saved, {len(page_rows)} rows, "
                    f"index={last_index}, balance={state.balance}"
                )

            if halted:
                return False
            page += 1

    # --------------------------------------------------------
    # Per-trade processing
    # --------------------------------------------------------

    async def _process_trade(
        self,
        task: BacktestTask,
        state: ReplayState,
        trade: TradeData,
        filter_config: FilterConfig,
        exposure: LedgerExposureProvider,
        rows: List[BacktestTrade],
    ) -> bool:
        """Handle one leader trade. Returns True when replay must halt."""
        await self._settle_resolved_up_to(task, state, trade.timestamp, rows)

        if state.balance < ZERO:
            logger.info(f"Backtest {task.id}: balance negative ({state.balance}), halting")
            return True
        if state.balance < ONE and not state.positions:
            logger.info(f"Backtest {task.id}: balance {state.balance} below 1 with no positions, halting")
            return True

        outcome_index = await self._metadata.resolve_outcome_index(
            trade.market_id, trade.outcome, trade.outcome_index,
        )

        result = await self._filters.check(
            filter_config,
            MarketContext(
                market_id=trade.market_id,
                market_title=trade.market_title,
                outcome_index=outcome_index,
            ),
            trade_price=trade.price,
            skip_liquidity_checks=True,
            exposure=exposure,
        )
        if not result.is_passed:
            logger.debug(
                f"Trade {trade.trade_id} filtered: status={result.status.value}, reason={result.reason}"
            )
            return False

        if trade.is_buy:
            self._execute_buy(task, state, trade, outcome_index, rows)
        else:
            self._execute_sell(task, state, trade, outcome_index, rows)
        return False

    def _execute_buy(
        self,
        task: BacktestTask,
        state: ReplayState,
        trade: TradeData,
        outcome_index: Optional[int],
        rows: List[BacktestTrade],
    ) -> None:
        day = day_key(trade.timestamp)
        daily_count = state.daily_buy_counts.get(day, 0)
        if daily_count >= task.max_daily_orders:
            logger.info(f"Daily BUY limit reached on {day}: {daily_count}/{task.max_daily_orders}")
            return

        amount = clamp_order_size(follow_amount(task, trade), task.min_order_size, task.max_order_size)

        daily_loss = state.daily_losses.get(day, ZERO)
        if daily_loss > task.max_daily_loss:
            logger.info(f"Daily loss limit reached on {day}: {daily_loss}/{task.max_daily_loss}, skipping BUY")
            return

        execution_price = apply_buy_slippage(trade.price, task.slippage_percent, self._config.min_price)
        if amount > state.balance:
            logger.info(f"Balance {state.balance} below order amount {amount}, sizing down")
            amount = state.balance
        if amount < task.min_order_size or amount <= ZERO:
            return

        quantity = buy_quantity(amount, execution_price, self._config.quantity_scale)
        if quantity <= ZERO:
            return

        state.balance -= amount
        key = position_key(trade.market_id, trade.outcome, outcome_index)
        position = state.positions.get(key)
        if position is None:
            state.positions[key] = Position(
                market_id=trade.market_id,
                outcome=trade.outcome,
                outcome_index=outcome_index,
                quantity=quantity,
                avg_price=execution_price,
                leader_open_quantity=trade.size,
                market_title=trade.market_title,
            )
        else:
            position.avg_price = weighted_average_price(
                position.quantity, position.avg_price, quantity, execution_price, self._config.price_scale,
            )
            position.quantity += quantity
            position.leader_open_quantity += trade.size

        rows.append(BacktestTrade(
            task_id=task.id,
            trade_time=trade.timestamp,
            market_id=trade.market_id,
            market_title=trade.market_title,
            side=LedgerSide.BUY,
            outcome=trade.outcome,
            outcome_index=outcome_index,
            quantity=quantity,
            price=execution_price,
            amount=amount,
            profit_loss=None,
            balance_after=state.balance,
            leader_trade_id=trade.trade_id,
            position_key=key,
            leader_size=trade.size,
        ))
        state.daily_buy_counts[day] = daily_count + 1

    def _execute_sell(
        self,
        task: BacktestTask,
        state: ReplayState,
        trade: TradeData,
        outcome_index: Optional[int],
        rows: List[BacktestTrade],
    ) -> None:
        if not task.support_sell:
            return

        key = position_key(trade.market_id, trade.outcome, outcome_index)
        position = state.positions.get(key)
        if position is None:
            return

        execution_price = apply_sell_slippage(trade.price, task.slippage_percent, self._config.min_price)

        if task.copy_mode == CopyMode.RATIO:
            quantity = ratio_sell_quantity(
                position.quantity,
                trade.size,
                position.leader_open_quantity,
                self._config.price_scale,
                self._config.quantity_scale,
            )
        else:
            quantity = position.quantity
        quantity = min(quantity, position.quantity)
        if quantity <= ZERO:
            return

        if quantity * execution_price < task.min_order_size:
            logger.info(f"SELL amount below minimum order size {task.min_order_size}, skipping")
            return
        if quantity * execution_price > task.max_order_size:
            logger.info(f"SELL amount above maximum order size {task.max_order_size}, sizing down")
            quantity = quantity_for_amount(task.max_order_size, execution_price, self._config.quantity_scale)
        if quantity <= ZERO:
            return

        amount = money(quantity * execution_price)
        profit_loss = amount - money(quantity * position.avg_price)

        state.balance += amount
        position.quantity -= quantity
        if task.copy_mode == CopyMode.RATIO:
            position.leader_open_quantity -= min(trade.size, position.leader_open_quantity)
        if position.quantity <= ZERO:
            del state.positions[key]

        rows.append(BacktestTrade(
            task_id=task.id,
            trade_time=trade.timestamp,
            market_id=trade.market_id,
            market_title=trade.market_title,
            side=LedgerSide.SELL,
            outcome=trade.outcome,
            outcome_index=outcome_index,
            quantity=quantity,
            price=execution_price,
            amount=amount,
            profit_loss=profit_loss,
            balance_after=state.balance,
            leader_trade_id=trade.trade_id,
            position_key=key,
            leader_size=trade.size,
        ))

        if profit_loss < ZERO:
            day = day_key(trade.timestamp)
            state.daily_losses[day] = state.daily_losses.get(day, ZERO) - profit_loss

    # --------------------------------------------------------
    # Settlement
    # --------------------------------------------------------

    async def _outcome_index_for(self, position: Position) -> Optional[int]:
        if position.outcome_index is not None:
            return position.outcome_index
        try:
            index = await self._metadata.resolve_outcome_index(position.market_id, position.outcome, None)
        except Exception as e:
            logger.debug(f"Outcome index lookup failed for {position.market_id}: {e}")
            return None
        position.outcome_index = index
        return index

    async def _settle_resolved_up_to(
        self,
        task: BacktestTask,
        state: ReplayState,
        up_to: int,
        rows: List[BacktestTrade],
    ) -> None:
        """Settle every position whose market resolved at or before ``up_to``."""
        for key, position in list(state.positions.items()):
            try:
                resolved_at = await self._metadata.get_market_resolution(position.market_id)
            except Exception as e:
                logger.debug(f"Resolution lookup failed for {position.market_id}: {e}")
                continue
            if resolved_at is None or resolved_at > up_to:
                continue

            outcome_index = await self._outcome_index_for(position)
            if outcome_index is None:
                continue

            try:
                payout = await self._metadata.get_settlement_payout(position.market_id, outcome_index)
            except Exception as e:
                logger.debug(f"Payout lookup failed for {position.market_id}: {e}")
                continue
            if payout is None:
                continue

            value = money(position.quantity * payout)
            profit_loss = value - money(position.quantity * position.avg_price)
            if payout == ONE:
                outcome = OUTCOME_WIN
            elif payout == ZERO:
                outcome = OUTCOME_LOSE
            else:
                outcome = OUTCOME_UNKNOWN

            state.balance += value
            rows.append(BacktestTrade(
                task_id=task.id,
                trade_time=resolved_at,
                market_id=position.market_id,
                market_title=position.market_title,
                side=LedgerSide.SETTLEMENT,
                outcome=outcome,
                outcome_index=outcome_index,
                quantity=position.quantity,
                price=payout,
                amount=value,
                profit_loss=profit_loss,
                balance_after=state.balance,
                leader_trade_id=None,
                position_key=key,
            ))
            del state.positions[key]
            logger.info(
                f"Settled {position.market_id} outcome {outcome_index} as {outcome}: "
                f"value={value}, pnl={profit_loss}"
            )

    async def _mark_to_market(
        self,
        task: BacktestTask,
        state: ReplayState,
        at: int,
        rows: List[BacktestTrade],
    ) -> None:
        """Value every open position at its mark price as if sold at ``at``."""
        for key, position in list(state.positions.items()):
            outcome_index = await self._outcome_index_for(position)
            mark_price = position.avg_price
            if outcome_index is not None:
                try:
                    mark_price = await self._oracle.get_mark_price(position.market_id, outcome_index)
                except Exception as e:
                    logger.debug(
                        f"Mark price unavailable for {position.market_id}:{outcome_index}, using cost: {e}"
                    )

            value = money(position.quantity * mark_price)
            profit_loss = value - money(position.quantity * position.avg_price)
            state.balance += value
            rows.append(BacktestTrade(
                task_id=task.id,
                trade_time=at,
                market_id=position.market_id,
                market_title=position.market_title,
                side=LedgerSide.SETTLEMENT,
                outcome=OUTCOME_MARK,
                outcome_index=outcome_index,
                quantity=position.quantity,
                price=mark_price,
                amount=value,
                profit_loss=profit_loss,
                balance_after=state.balance,
                leader_trade_id=None,
                position_key=key,
            ))
            del state.positions[key]

    # --------------------------------------------------------
    # Terminal steps
    # --------------------------------------------------------

    async def _finish_completed(self, task: BacktestTask, state: ReplayState) -> None:
        end_rows: List[BacktestTrade] = []
        await self._settle_resolved_up_to(task, state, task.end_time, end_rows)
        if self._config.mark_to_market_enabled:
            await self._mark_to_market(task, state, task.end_time, end_rows)

        checkpoint = Checkpoint(
            last_processed_trade_index=task.last_processed_trade_index,
            last_processed_trade_time=task.last_processed_trade_time,
            processed_trade_count=task.processed_trade_count,
            balance=state.balance,
            progress=100,
        )
        await self._store.save_checkpoint(task.id, checkpoint, end_rows)
        checkpoint.apply_to(task)

        # A stop may land after the last page poll
        current = await self._store.load_task(task.id)
        if current is None:
            logger.info(f"Backtest {task.id} was deleted during the run")
            return
        status = TaskStatus.COMPLETED
        if current.status != TaskStatus.RUNNING:
            logger.info(f"Backtest {task.id} status changed to {current.status.value} before completion")
            status = TaskStatus.STOPPED

        # Open cost basis is non-zero only when mark-to-market is disabled
        profit = state.balance + state.open_cost_basis - task.initial_balance
        await self._finalize(task, profit, status)

    async def _finish_stopped(self, task: BacktestTask, state: ReplayState) -> None:
        current = await self._store.load_task(task.id)
        if current is None:
            logger.info(f"Backtest {task.id} was deleted during the run")
            return
        profit = state.balance + state.open_cost_basis - task.initial_balance
        await self._finalize(task, profit, TaskStatus.STOPPED)

    async def _finalize(self, task: BacktestTask, profit: Decimal, status: TaskStatus) -> None:
        ledger = await self._store.list_all_trades(task.id)
        stats = calculate_statistics(ledger)

        now = self._clock.now_ms()
        task.apply_statistics(stats)
        task.profit_amount = profit
        task.profit_rate = profit_rate(profit, task.initial_balance)
        task.execution_finished_at = now
        task.updated_at = now
        transition(task, status, reason="run finished")
        await self._store.save_task(task)

        logger.info(
            f"Backtest {task.id} {status.value}: final balance={task.final_balance}, "
            f"profit={task.profit_amount} ({task.profit_rate}%), trades={stats.total_trades}, "
            f"win rate={stats.win_rate}%"
        )
