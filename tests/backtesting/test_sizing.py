"""
Sizing and Statistics Tests.

============================================================
PURPOSE
============================================================
Unit tests for the pure Decimal helpers and ledger aggregates.

============================================================
"""

from decimal import Decimal

import pytest

from backtesting.sizing import (
    apply_buy_slippage,
    apply_sell_slippage,
    buy_quantity,
    clamp_order_size,
    follow_amount,
    money,
    profit_rate,
    ratio_sell_quantity,
    round_down,
    weighted_average_price,
)
from backtesting.statistics import average_holding_time, calculate_statistics, max_drawdown
from backtesting.types import BacktestTrade, CopyMode, LedgerSide

from tests.conftest import make_task, make_trade


MIN_PRICE = Decimal("0.00000001")


def ledger_row(side, balance_after, profit_loss=None, trade_time=0):
    return BacktestTrade(
        task_id=1,
        trade_time=trade_time,
        market_id="0xmarket1",
        side=side,
        quantity=Decimal("1"),
        price=Decimal("0.5"),
        amount=Decimal("0.5"),
        balance_after=Decimal(balance_after),
        profit_loss=Decimal(profit_loss) if profit_loss is not None else None,
    )


# ============================================================
# SLIPPAGE
# ============================================================

class TestSlippage:
    """Tests for slippage application."""

    def test_buy_price_moves_up(self):
        assert apply_buy_slippage(Decimal("0.50"), Decimal("2"), MIN_PRICE) == Decimal("0.51")

    def test_sell_price_moves_down(self):
        assert apply_sell_slippage(Decimal("0.50"), Decimal("2"), MIN_PRICE) == Decimal("0.49")

    def test_zero_slippage_is_identity(self):
        assert apply_buy_slippage(Decimal("0.37"), Decimal("0"), MIN_PRICE) == Decimal("0.37")
        assert apply_sell_slippage(Decimal("0.37"), Decimal("0"), MIN_PRICE) == Decimal("0.37")

    def test_sell_price_never_below_tick(self):
        assert apply_sell_slippage(Decimal("0.00000001"), Decimal("99"), MIN_PRICE) == MIN_PRICE


# ============================================================
# SIZING
# ============================================================

class TestSizing:
    """Tests for order sizing."""

    def test_ratio_follow_amount(self):
        task = make_task(copy_ratio=Decimal("0.1"))
        assert follow_amount(task, make_trade(0, price="0.50", size="200")) == Decimal("10")

    def test_fixed_follow_amount(self):
        task = make_task(copy_mode=CopyMode.FIXED, fixed_amount=Decimal("7"))
        assert follow_amount(task, make_trade(0, price="0.50", size="200")) == Decimal("7")

    @pytest.mark.parametrize("amount,expected", [("0.5", "1"), ("50", "50"), ("500", "100")])
    def test_clamp_order_size(self, amount, expected):
        assert clamp_order_size(Decimal(amount), Decimal("1"), Decimal("100")) == Decimal(expected)

    def test_buy_quantity_rounds_down(self):
        assert buy_quantity(Decimal("10"), Decimal("0.3"), 8) == Decimal("33.33333333")

    def test_weighted_average_price(self):
        avg = weighted_average_price(Decimal("100"), Decimal("0.40"), Decimal("300"), Decimal("0.60"), 8)
        assert avg == Decimal("0.55")

    def test_ratio_sell_quantity_follows_leader_fraction(self):
        assert ratio_sell_quantity(Decimal("80"), Decimal("25"), Decimal("100"), 8, 8) == Decimal("20")

    def test_ratio_sell_quantity_without_leader_open_sells_all(self):
        assert ratio_sell_quantity(Decimal("80"), Decimal("25"), Decimal("0"), 8, 8) == Decimal("80")

    def test_money_rounds_half_up(self):
        assert money(Decimal("1.000000005")) == Decimal("1.00000001")
        assert round_down(Decimal("1.999999999"), 8) == Decimal("1.99999999")

    def test_profit_rate(self):
        assert profit_rate(Decimal("15"), Decimal("1000")) == Decimal("1.5")
        assert profit_rate(Decimal("1"), Decimal("3")) == Decimal("33.33")
        assert profit_rate(Decimal("1"), Decimal("0")) == Decimal("0")


# ============================================================
# STATISTICS
# ============================================================

class TestStatistics:
    """Tests for ledger aggregates."""

    def test_empty_ledger(self):
        stats = calculate_statistics([])
        assert stats.total_trades == 0
        assert stats.win_rate == Decimal("0")
        assert stats.max_drawdown == Decimal("0")
        assert stats.avg_holding_time is None

    def test_counts_and_extremes(self):
        rows = [
            ledger_row(LedgerSide.BUY, "900"),
            ledger_row(LedgerSide.SELL, "960", "10"),
            ledger_row(LedgerSide.BUY, "860"),
            ledger_row(LedgerSide.SETTLEMENT, "860", "-40"),
            ledger_row(LedgerSide.SETTLEMENT, "870", "5"),
        ]
        stats = calculate_statistics(rows)

        assert stats.buy_trades == 2
        assert stats.sell_trades == 1
        assert stats.win_trades == 2
        assert stats.loss_trades == 1
        assert stats.win_rate == Decimal("66.67")
        assert stats.max_profit == Decimal("10")
        assert stats.max_loss == Decimal("-40")
        assert stats.total_profit == Decimal("15")
        assert stats.total_loss == Decimal("-40")

    def test_drawdown_measured_from_running_peak(self):
        rows = [
            ledger_row(LedgerSide.BUY, "900"),
            ledger_row(LedgerSide.SELL, "1000", "10"),
            ledger_row(LedgerSide.BUY, "950"),
            ledger_row(LedgerSide.BUY, "800"),
            ledger_row(LedgerSide.SELL, "1100", "20"),
        ]
        assert max_drawdown(rows) == Decimal("200")

    def test_holding_time_pairs_adjacent_buy_sell(self):
        rows = [
            ledger_row(LedgerSide.BUY, "900", trade_time=1000),
            ledger_row(LedgerSide.SELL, "950", "5", trade_time=4000),
            ledger_row(LedgerSide.BUY, "900", trade_time=5000),
            ledger_row(LedgerSide.SETTLEMENT, "950", "5", trade_time=6000),
            ledger_row(LedgerSide.BUY, "900", trade_time=7000),
            ledger_row(LedgerSide.SELL, "950", "5", trade_time=8001),
        ]
        assert average_holding_time(rows) == 2000
