"""
Replay Engine Tests.

============================================================
PURPOSE
============================================================
End-to-end replays over in-memory collaborators.

TEST CATEGORIES:
- Fills: BUY/SELL sizing, slippage, copy modes
- Settlement: resolved markets and mark-to-market
- Paging: end-of-data, fatal fetch errors, checkpoints
- Resume: a resumed run matches an uninterrupted one
- Lifecycle: stop requests, guards, limits
- Daily loss: realized SELL losses gate same-day BUYs

============================================================
"""

from decimal import Decimal

import pytest

from backtesting.config import EngineConfig
from backtesting.replay_engine import ReplayEngine, start_page
from backtesting.types import (
    OUTCOME_LOSE,
    OUTCOME_MARK,
    OUTCOME_WIN,
    CopyMode,
    LedgerSide,
    TaskStatus,
)
from core.clock import MILLIS_PER_DAY
from core.exceptions import TaskStateError
from data_sources.config import FetcherConfig
from data_sources.exceptions import RetryExhaustedError
from data_sources.historical_fetcher import HistoricalTradeFetcher
from market_data.oracle import CompositePriceOracle
from trade_filters.pipeline import TradeFilterPipeline
from trade_filters.types import KeywordFilterMode

from tests.conftest import (
    HOUR_MS,
    NOW_MS,
    FakeActivitySource,
    FakeMarketMetadata,
    InMemoryTaskStore,
    make_market,
    make_task,
    make_trade,
)


def build_engine(store, metadata, clock, source, engine_config=None):
    fetcher = HistoricalTradeFetcher(source, FetcherConfig.for_testing())
    return ReplayEngine(
        store=store,
        fetcher=fetcher,
        metadata=metadata,
        oracle=CompositePriceOracle(metadata),
        filters=TradeFilterPipeline(clock=clock),
        config=engine_config or EngineConfig(),
        clock=clock,
    )


async def create_and_load(store, **overrides):
    task = await store.create_task(make_task(**overrides))
    return await store.load_task(task.id)


def ledger_view(rows):
    return [
        (r.side, r.trade_time, r.market_id, r.outcome, r.quantity, r.price, r.amount,
         r.profit_loss, r.balance_after)
        for r in rows
    ]


# ============================================================
# START PAGE
# ============================================================

class TestStartPage:
    """Tests for resume page selection."""

    def test_no_checkpoint_starts_at_zero(self):
        assert start_page(None, 100) == 0

    def test_mid_page_checkpoint_refetches_page(self):
        assert start_page(150, 100) == 1

    def test_last_index_of_page_moves_to_next_page(self):
        assert start_page(199, 100) == 2
        assert start_page(1, 2) == 1


# ============================================================
# FILLS
# ============================================================

class TestFills:
    """Tests for BUY/SELL handling."""

    @pytest.mark.asyncio
    async def test_buy_sell_and_mark(self, store, metadata, clock):
        """BUY 100 at 0.50, sell half at 0.60, mark the rest at 0.55."""
        source = FakeActivitySource([
            make_trade(0, "BUY", price="0.50", size="200"),
            make_trade(1, "SELL", price="0.60", size="100"),
        ])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)

        result = await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [r.side for r in rows] == [LedgerSide.BUY, LedgerSide.SELL, LedgerSide.SETTLEMENT]

        buy, sell, mark = rows
        assert buy.quantity == Decimal("200")
        assert buy.amount == Decimal("100")
        assert buy.balance_after == Decimal("900")
        assert buy.profit_loss is None

        assert sell.quantity == Decimal("100")
        assert sell.amount == Decimal("60")
        assert sell.profit_loss == Decimal("10")
        assert sell.balance_after == Decimal("960")

        assert mark.outcome == OUTCOME_MARK
        assert mark.price == Decimal("0.55")
        assert mark.amount == Decimal("55")
        assert mark.profit_loss == Decimal("5")
        assert mark.trade_time == NOW_MS

        assert result.status == TaskStatus.COMPLETED
        assert result.final_balance == Decimal("1015")
        assert result.profit_amount == Decimal("15")
        assert result.profit_rate == Decimal("1.5")
        assert result.progress == 100
        assert result.total_trades == 3
        assert result.win_trades == 2
        assert result.win_rate == Decimal("100")
        assert result.avg_holding_time == HOUR_MS

        stored = await store.load_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.execution_finished_at == NOW_MS

    @pytest.mark.asyncio
    async def test_slippage_worsens_both_sides(self, store, metadata, clock):
        source = FakeActivitySource([
            make_trade(0, "BUY", price="0.50", size="200"),
            make_trade(1, "SELL", price="0.60", size="100"),
        ])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, slippage_percent=Decimal("1"))

        await engine.run(task)

        buy, sell = (await store.list_all_trades(task.id))[:2]
        assert buy.price == Decimal("0.505")
        assert sell.price == Decimal("0.594")
        assert buy.quantity == Decimal("198.01980198")

    @pytest.mark.asyncio
    async def test_fixed_mode_uses_fixed_amount(self, store, metadata, clock):
        source = FakeActivitySource([make_trade(0, "BUY", price="0.50", size="200")])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, copy_mode=CopyMode.FIXED, fixed_amount=Decimal("25"))

        await engine.run(task)

        buy = (await store.list_all_trades(task.id))[0]
        assert buy.amount == Decimal("25")
        assert buy.quantity == Decimal("50")

    @pytest.mark.asyncio
    async def test_fixed_mode_sells_whole_position(self, store, metadata, clock):
        source = FakeActivitySource([
            make_trade(0, "BUY", price="0.50", size="200"),
            make_trade(1, "SELL", price="0.60", size="10"),
        ])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, copy_mode=CopyMode.FIXED, fixed_amount=Decimal("25"))

        await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [r.side for r in rows] == [LedgerSide.BUY, LedgerSide.SELL]
        assert rows[1].quantity == Decimal("50")
        assert rows[1].profit_loss == Decimal("5")

    @pytest.mark.asyncio
    async def test_order_below_minimum_is_raised_to_minimum(self, store, metadata, clock):
        source = FakeActivitySource([make_trade(0, "BUY", price="0.50", size="2")])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, min_order_size=Decimal("5"))

        await engine.run(task)

        assert (await store.list_all_trades(task.id))[0].amount == Decimal("5")

    @pytest.mark.asyncio
    async def test_order_above_maximum_is_capped(self, store, metadata, clock):
        source = FakeActivitySource([make_trade(0, "BUY", price="0.50", size="1000")])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, max_order_size=Decimal("40"))

        await engine.run(task)

        buy = (await store.list_all_trades(task.id))[0]
        assert buy.amount == Decimal("40")
        assert buy.quantity == Decimal("80")

    @pytest.mark.asyncio
    async def test_sell_without_position_is_ignored(self, store, metadata, clock):
        source = FakeActivitySource([make_trade(0, "SELL", price="0.60", size="100")])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)

        result = await engine.run(task)

        assert await store.list_all_trades(task.id) == []
        assert result.final_balance == Decimal("1000")
        assert result.win_rate == Decimal("0")

    @pytest.mark.asyncio
    async def test_sells_ignored_when_sell_support_disabled(self, store, metadata, clock):
        source = FakeActivitySource([
            make_trade(0, "BUY", price="0.50", size="200"),
            make_trade(1, "SELL", price="0.60", size="100"),
        ])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, support_sell=False)

        await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [r.side for r in rows] == [LedgerSide.BUY, LedgerSide.SETTLEMENT]
        assert rows[1].quantity == Decimal("200")

    @pytest.mark.asyncio
    async def test_daily_order_limit(self, store, metadata, clock):
        day_start = NOW_MS - 7 * MILLIS_PER_DAY + 3 * HOUR_MS
        source = FakeActivitySource([
            make_trade(0, "BUY", size="20", timestamp=day_start),
            make_trade(1, "BUY", size="20", timestamp=day_start + HOUR_MS),
            make_trade(2, "BUY", size="20", timestamp=day_start + MILLIS_PER_DAY),
        ])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, max_daily_orders=1)

        await engine.run(task)

        buys = [r for r in await store.list_all_trades(task.id) if r.side == LedgerSide.BUY]
        assert [r.leader_trade_id for r in buys] == ["0xtx0", "0xtx2"]

    @pytest.mark.asyncio
    async def test_keyword_blacklist_skips_trades(self, store, metadata, clock):
        source = FakeActivitySource([make_trade(0, "BUY", title="Will it rain tomorrow?")])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(
            store, keyword_filter_mode=KeywordFilterMode.BLACKLIST, keywords=["RAIN"],
        )

        result = await engine.run(task)

        assert await store.list_all_trades(task.id) == []
        assert result.status == TaskStatus.COMPLETED
        assert result.processed_trade_count == 1


# ============================================================
# SETTLEMENT
# ============================================================

class TestSettlement:
    """Tests for resolution payouts and mark-to-market."""

    @pytest.mark.asyncio
    async def test_resolved_market_pays_out_before_next_trade(self, store, clock):
        buy = make_trade(0, "BUY", price="0.70", size="100")
        later = make_trade(1, "BUY", price="0.50", size="20", market_id="0xmarket2")
        resolved_at = buy.timestamp + HOUR_MS // 2
        metadata = FakeMarketMetadata({
            "0xmarket1": make_market(prices=("1", "0"), resolved_at_ms=resolved_at),
            "0xmarket2": make_market("0xmarket2", prices=("0.5", "0.5")),
        })
        engine = build_engine(store, metadata, clock, FakeActivitySource([buy, later]))
        task = await create_and_load(store)

        result = await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [(r.side, r.market_id) for r in rows] == [
            (LedgerSide.BUY, "0xmarket1"),
            (LedgerSide.SETTLEMENT, "0xmarket1"),
            (LedgerSide.BUY, "0xmarket2"),
            (LedgerSide.SETTLEMENT, "0xmarket2"),
        ]
        settlement = rows[1]
        assert settlement.outcome == OUTCOME_WIN
        assert settlement.trade_time == resolved_at
        assert settlement.price == Decimal("1")
        assert settlement.amount == Decimal("100")
        assert settlement.profit_loss == Decimal("30")
        assert settlement.market_title == "Will it rain tomorrow?"

        assert rows[3].outcome == OUTCOME_MARK
        assert result.final_balance == Decimal("1030")
        assert result.profit_amount == Decimal("30")

    @pytest.mark.asyncio
    async def test_losing_outcome_settles_at_zero(self, store, clock):
        buy = make_trade(0, "BUY", price="0.40", size="50")
        metadata = FakeMarketMetadata({
            "0xmarket1": make_market(prices=("0", "1"), resolved_at_ms=buy.timestamp + 1),
        })
        engine = build_engine(store, metadata, clock, FakeActivitySource([buy]))
        task = await create_and_load(store)

        result = await engine.run(task)

        settlement = (await store.list_all_trades(task.id))[-1]
        assert settlement.outcome == OUTCOME_LOSE
        assert settlement.amount == Decimal("0")
        assert settlement.profit_loss == Decimal("-20")
        assert result.max_loss == Decimal("-20")
        assert result.loss_trades == 1

    @pytest.mark.asyncio
    async def test_mark_falls_back_to_cost_for_unknown_market(self, store, clock):
        metadata = FakeMarketMetadata({})
        engine = build_engine(
            store, metadata, clock, FakeActivitySource([make_trade(0, "BUY", price="0.50", size="200")]),
        )
        task = await create_and_load(store)

        result = await engine.run(task)

        mark = (await store.list_all_trades(task.id))[-1]
        assert mark.outcome == OUTCOME_MARK
        assert mark.price == Decimal("0.50")
        assert mark.profit_loss == Decimal("0")
        assert result.final_balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_mark_disabled_reports_realized_profit(self, store, metadata, clock):
        source = FakeActivitySource([
            make_trade(0, "BUY", price="0.50", size="200"),
            make_trade(1, "SELL", price="0.60", size="100"),
        ])
        engine = build_engine(
            store, metadata, clock, source, EngineConfig(mark_to_market_enabled=False),
        )
        task = await create_and_load(store)

        result = await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [r.side for r in rows] == [LedgerSide.BUY, LedgerSide.SELL]
        assert result.final_balance == Decimal("960")
        assert result.profit_amount == Decimal("10")

    @pytest.mark.asyncio
    async def test_liquidity_guard_halts_replay(self, store, clock):
        first = make_trade(0, "BUY", price="0.50", size="20")
        metadata = FakeMarketMetadata({
            "0xmarket1": make_market(prices=("0", "1"), resolved_at_ms=first.timestamp + 1),
        })
        source = FakeActivitySource([first, make_trade(1, "BUY", price="0.50", size="20")])
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, initial_balance=Decimal("10"))

        result = await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [r.side for r in rows] == [LedgerSide.BUY, LedgerSide.SETTLEMENT]
        assert result.status == TaskStatus.COMPLETED
        assert result.final_balance == Decimal("0")
        assert len(source.requests) == 1


# ============================================================
# PAGING AND FAILURES
# ============================================================

class TestPaging:
    """Tests for the page loop and fatal errors."""

    @pytest.mark.asyncio
    async def test_http_400_after_first_page_ends_replay(self, store, metadata, clock):
        trades = [make_trade(i, "BUY", price="0.50", size="2") for i in range(5)]
        source = FakeActivitySource(trades, end_offset=4, end_status=400)
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)

        result = await engine.run(task)

        buys = [r for r in await store.list_all_trades(task.id) if r.side == LedgerSide.BUY]
        assert len(buys) == 4
        assert result.status == TaskStatus.COMPLETED
        assert result.last_processed_trade_index == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_task_and_keep_checkpoint(self, store, metadata, clock):
        trades = [make_trade(i, "BUY", price="0.50", size="2") for i in range(4)]
        source = FakeActivitySource(trades, failures={2: [500] * 5})
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)

        with pytest.raises(RetryExhaustedError):
            await engine.run(task)

        stored = await store.load_task(task.id)
        assert stored.status == TaskStatus.FAILED
        assert "after 5 attempts" in stored.error_message
        assert stored.last_processed_trade_index == 1
        assert stored.final_balance == Decimal("998")
        assert len(await store.list_all_trades(task.id)) == 2
        assert len(source.requests) == 6

    @pytest.mark.asyncio
    async def test_checkpoint_written_for_pages_without_rows(self, store, metadata, clock):
        trades = [make_trade(i, "SELL", price="0.50", size="2") for i in range(3)]
        engine = build_engine(store, metadata, clock, FakeActivitySource(trades))
        task = await create_and_load(store)

        await engine.run(task)

        indexes = [c.last_processed_trade_index for c in store.checkpoints]
        assert indexes[:2] == [1, 2]

    @pytest.mark.asyncio
    async def test_run_requires_pending(self, store, metadata, clock):
        engine = build_engine(store, metadata, clock, FakeActivitySource([]))
        task = await create_and_load(store, status=TaskStatus.COMPLETED)

        with pytest.raises(TaskStateError):
            await engine.run(task)


# ============================================================
# RESUME AND STOP
# ============================================================

class TestResume:
    """Tests for checkpoint resume and cooperative stop."""

    TRADES = [
        make_trade(0, "BUY", price="0.40", size="100"),
        make_trade(1, "BUY", price="0.50", size="100"),
        make_trade(2, "SELL", price="0.60", size="50"),
        make_trade(3, "BUY", price="0.45", size="40"),
        make_trade(4, "SELL", price="0.55", size="190"),
    ]

    @pytest.mark.asyncio
    async def test_resumed_run_matches_uninterrupted_run(self, metadata, clock):
        baseline_store = InMemoryTaskStore()
        baseline = build_engine(baseline_store, metadata, clock, FakeActivitySource(self.TRADES))
        baseline_task = await create_and_load(baseline_store)
        baseline_result = await baseline.run(baseline_task)

        store = InMemoryTaskStore()
        source = FakeActivitySource(self.TRADES, failures={2: [503] * 5})
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)
        with pytest.raises(RetryExhaustedError):
            await engine.run(task)

        await store.update_status(task.id, TaskStatus.PENDING)
        resumed = await engine.run(await store.load_task(task.id))

        assert ledger_view(await store.list_all_trades(task.id)) == ledger_view(
            await baseline_store.list_all_trades(baseline_task.id)
        )
        assert resumed.final_balance == baseline_result.final_balance
        assert resumed.profit_amount == baseline_result.profit_amount
        assert resumed.status == TaskStatus.COMPLETED
        assert [r.offset for r in source.requests[6:]] == [2, 4, 6]

    @pytest.mark.asyncio
    async def test_balance_is_conserved(self, store, metadata, clock):
        engine = build_engine(store, metadata, clock, FakeActivitySource(self.TRADES))
        task = await create_and_load(store)

        result = await engine.run(task)

        rows = await store.list_all_trades(task.id)
        balance = task.initial_balance
        for row in rows:
            if row.side == LedgerSide.BUY:
                balance -= row.amount
            else:
                balance += row.amount
            assert row.balance_after == balance
        assert result.final_balance == balance

    @pytest.mark.asyncio
    async def test_stop_request_ends_run_after_current_page(self, store, metadata, clock):
        async def stop_on_first_page(request):
            if request.offset == 0:
                await store.update_status(task.id, TaskStatus.STOPPED)

        source = FakeActivitySource(self.TRADES, on_fetch=stop_on_first_page)
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)

        result = await engine.run(task)

        rows = await store.list_all_trades(task.id)
        assert [r.side for r in rows] == [LedgerSide.BUY, LedgerSide.BUY]
        assert result.status == TaskStatus.STOPPED
        assert result.profit_amount == Decimal("0")
        assert result.last_processed_trade_index == 1
        assert (await store.load_task(task.id)).status == TaskStatus.STOPPED
        assert len(source.requests) == 1

    @pytest.mark.asyncio
    async def test_resume_after_back_dated_settlement(self, clock):
        """A settlement stamped before its BUY is not replayed twice on resume."""
        trades = [
            make_trade(0, "BUY", price="0.50", size="200", market_id="0xres"),
            make_trade(1, "BUY", price="0.50", size="20"),
            make_trade(2, "BUY", price="0.50", size="20"),
            make_trade(3, "BUY", price="0.50", size="20"),
        ]
        resolved_at = trades[0].timestamp - HOUR_MS

        def markets():
            return FakeMarketMetadata({
                "0xmarket1": make_market(),
                "0xres": make_market("0xres", prices=("1", "0"), resolved_at_ms=resolved_at),
            })

        baseline_store = InMemoryTaskStore()
        baseline = build_engine(baseline_store, markets(), clock, FakeActivitySource(trades))
        baseline_task = await create_and_load(baseline_store)
        baseline_result = await baseline.run(baseline_task)

        store = InMemoryTaskStore()

        async def stop_on_first_page(request):
            if request.offset == 0:
                await store.update_status(task.id, TaskStatus.STOPPED)

        engine = build_engine(store, markets(), clock, FakeActivitySource(trades, on_fetch=stop_on_first_page))
        task = await create_and_load(store)
        stopped = await engine.run(task)
        assert stopped.status == TaskStatus.STOPPED

        await store.update_status(task.id, TaskStatus.PENDING)
        resumed = await engine.run(await store.load_task(task.id))

        rows = await store.list_all_trades(task.id)
        settlements = [r for r in rows if r.market_id == "0xres" and r.side == LedgerSide.SETTLEMENT]
        assert len(settlements) == 1
        assert settlements[0].trade_time == resolved_at
        assert ledger_view(rows) == ledger_view(await baseline_store.list_all_trades(baseline_task.id))
        assert resumed.final_balance == baseline_result.final_balance == Decimal("1103")

    @pytest.mark.asyncio
    async def test_stop_during_final_fetch_is_not_overwritten(self, store, metadata, clock):
        async def stop_on_empty_page(request):
            if request.offset == 2:
                await store.update_status(task.id, TaskStatus.STOPPED)

        source = FakeActivitySource(self.TRADES[:2], on_fetch=stop_on_empty_page)
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store)

        result = await engine.run(task)

        assert result.status == TaskStatus.STOPPED
        assert (await store.load_task(task.id)).status == TaskStatus.STOPPED
        rows = await store.list_all_trades(task.id)
        assert rows[-1].outcome == OUTCOME_MARK


# ============================================================
# DAILY LOSS LIMIT
# ============================================================

class TestDailyLoss:
    """Tests for the per-day realized loss gate on BUYs."""

    DAY_START = NOW_MS - 7 * MILLIS_PER_DAY + 3 * HOUR_MS

    TRADES = [
        make_trade(0, "BUY", price="0.50", size="200", timestamp=DAY_START),
        # Sells half at a loss of 10
        make_trade(1, "SELL", price="0.40", size="100", timestamp=DAY_START + HOUR_MS),
        # Win of 5 is not netted against the loss
        make_trade(2, "SELL", price="0.60", size="50", timestamp=DAY_START + 2 * HOUR_MS),
        # Loss equals the limit: still allowed
        make_trade(3, "BUY", price="0.50", size="20", timestamp=DAY_START + 3 * HOUR_MS),
        # Loss of 0.7 takes the day over the limit
        make_trade(4, "SELL", price="0.40", size="7", timestamp=DAY_START + 4 * HOUR_MS),
        make_trade(5, "BUY", price="0.50", size="20", timestamp=DAY_START + 5 * HOUR_MS),
        make_trade(6, "BUY", price="0.50", size="20", timestamp=DAY_START + MILLIS_PER_DAY),
    ]

    @pytest.mark.asyncio
    async def test_losses_block_same_day_buys(self, store, metadata, clock):
        engine = build_engine(store, metadata, clock, FakeActivitySource(self.TRADES))
        task = await create_and_load(store, max_daily_loss=Decimal("10"))

        await engine.run(task)

        rows = await store.list_all_trades(task.id)
        sells = [r for r in rows if r.side == LedgerSide.SELL]
        assert [r.profit_loss for r in sells] == [Decimal("-10"), Decimal("5"), Decimal("-0.7")]
        buys = [r.leader_trade_id for r in rows if r.side == LedgerSide.BUY]
        assert buys == ["0xtx0", "0xtx3", "0xtx6"]

    @pytest.mark.asyncio
    async def test_loss_tracker_rebuilt_on_resume(self, store, metadata, clock):
        source = FakeActivitySource(self.TRADES, failures={4: [503] * 5})
        engine = build_engine(store, metadata, clock, source)
        task = await create_and_load(store, max_daily_loss=Decimal("10"))
        with pytest.raises(RetryExhaustedError):
            await engine.run(task)

        await store.update_status(task.id, TaskStatus.PENDING)
        await engine.run(await store.load_task(task.id))

        buys = [r.leader_trade_id for r in await store.list_all_trades(task.id) if r.side == LedgerSide.BUY]
        assert buys == ["0xtx0", "0xtx3", "0xtx6"]
