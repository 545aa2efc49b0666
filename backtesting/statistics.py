"""
Backtesting - Statistics Calculator.

Pure function over a finished, time-ordered ledger.

Holding time pairs each BUY with the row immediately after it when
that row is a SELL. This is an adjacency heuristic, not position
matching.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from .types import BacktestStatistics, BacktestTrade, LedgerSide


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def calculate_statistics(trades: Sequence[BacktestTrade]) -> BacktestStatistics:
    """Aggregate counts, P&L extremes, drawdown and holding time."""
    buy_trades = sum(1 for t in trades if t.side == LedgerSide.BUY)
    sell_trades = sum(1 for t in trades if t.side == LedgerSide.SELL)
    win_trades = sum(1 for t in trades if t.profit_loss is not None and t.profit_loss > ZERO)
    loss_trades = sum(1 for t in trades if t.profit_loss is not None and t.profit_loss < ZERO)

    total_profit = ZERO
    total_loss = ZERO
    max_profit = ZERO
    max_loss = ZERO
    for trade in trades:
        pnl = trade.profit_loss
        if pnl is None:
            continue
        if pnl > ZERO:
            total_profit += pnl
            max_profit = max(max_profit, pnl)
        else:
            total_loss += pnl
            max_loss = min(max_loss, pnl)

    if buy_trades + sell_trades > 0:
        win_rate = (
            (Decimal(win_trades) / Decimal(buy_trades + sell_trades)).quantize(
                Decimal("0.0001"), rounding=ROUND_HALF_UP
            )
            * HUNDRED
        )
    else:
        win_rate = ZERO

    return BacktestStatistics(
        total_trades=len(trades),
        buy_trades=buy_trades,
        sell_trades=sell_trades,
        win_trades=win_trades,
        loss_trades=loss_trades,
        win_rate=win_rate,
        max_profit=max_profit,
        max_loss=max_loss,
        max_drawdown=max_drawdown(trades),
        avg_holding_time=average_holding_time(trades),
        total_profit=total_profit,
        total_loss=total_loss,
    )


def max_drawdown(trades: Sequence[BacktestTrade]) -> Decimal:
    """Largest fall of balance_after below its running peak."""
    if not trades:
        return ZERO
    peak = trades[0].balance_after
    worst = ZERO
    for trade in trades:
        balance = trade.balance_after
        if balance > peak:
            peak = balance
        worst = max(worst, peak - balance)
    return worst


def average_holding_time(trades: Sequence[BacktestTrade]) -> Optional[int]:
    """Mean BUY -> next-row SELL gap in ms, None when no pair exists."""
    total = 0
    count = 0
    for current, following in zip(trades, trades[1:]):
        if current.side == LedgerSide.BUY and following.side == LedgerSide.SELL:
            total += following.trade_time - current.trade_time
            count += 1
    if count == 0:
        return None
    return total // count
