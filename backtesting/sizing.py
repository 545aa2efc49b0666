"""
Backtesting - Order Sizing and Slippage.

============================================================
PURPOSE
============================================================
Pure Decimal arithmetic used by the replay engine.

ROUNDING:
- Quantities: quantity_scale places, ROUND_DOWN
- Average prices and ratio divisions: price_scale places
  (HALF_UP for averages, ROUND_DOWN for ratios)
- Money (amounts, cost basis, P&L): 8 places, HALF_UP
- Slippage factor: percent / 100 at 8 places, HALF_UP

============================================================
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional

from data_sources.models import TradeData

from .types import BacktestTask, CopyMode


HUNDRED = Decimal("100")
ONE = Decimal("1")
ZERO = Decimal("0")
MONEY_SCALE = 8


def _quantum(scale: int) -> Decimal:
    return Decimal(1).scaleb(-scale)


def round_down(value: Decimal, scale: int) -> Decimal:
    return value.quantize(_quantum(scale), rounding=ROUND_DOWN)


def round_half_up(value: Decimal, scale: int) -> Decimal:
    return value.quantize(_quantum(scale), rounding=ROUND_HALF_UP)


def money(value: Decimal) -> Decimal:
    """Round a currency amount to ledger precision."""
    return round_half_up(value, MONEY_SCALE)


# ============================================================
# SLIPPAGE
# ============================================================

def _slippage_factor(slippage_percent: Decimal) -> Decimal:
    return round_half_up(slippage_percent / HUNDRED, 8)


def apply_buy_slippage(price: Decimal, slippage_percent: Decimal, min_price: Decimal) -> Decimal:
    """Worse fill for a buy: price moves up."""
    if slippage_percent <= ZERO:
        return price
    return max(price * (ONE + _slippage_factor(slippage_percent)), min_price)


def apply_sell_slippage(price: Decimal, slippage_percent: Decimal, min_price: Decimal) -> Decimal:
    """Worse fill for a sell: price moves down, never below the minimum tick."""
    if slippage_percent <= ZERO:
        return price
    return max(price * (ONE - _slippage_factor(slippage_percent)), min_price)


# ============================================================
# BUY SIZING
# ============================================================

def follow_amount(task: BacktestTask, trade: TradeData) -> Decimal:
    """Leader amount scaled by the copy ratio, or the fixed amount."""
    if task.copy_mode == CopyMode.RATIO:
        return money(trade.amount * task.copy_ratio)
    if task.fixed_amount is not None:
        return task.fixed_amount
    return trade.amount


def clamp_order_size(amount: Decimal, min_order_size: Decimal, max_order_size: Decimal) -> Decimal:
    """Above max -> max; below min -> min."""
    if amount > max_order_size:
        return max_order_size
    if amount < min_order_size:
        return min_order_size
    return amount


def buy_quantity(amount: Decimal, execution_price: Decimal, quantity_scale: int) -> Decimal:
    return round_down(amount / execution_price, quantity_scale)


def weighted_average_price(
    old_quantity: Decimal,
    old_avg_price: Decimal,
    added_quantity: Decimal,
    added_price: Decimal,
    price_scale: int,
) -> Decimal:
    """Quantity-weighted average after adding to a position."""
    new_quantity = old_quantity + added_quantity
    if new_quantity <= ZERO:
        return old_avg_price
    weighted_cost = old_quantity * old_avg_price + added_quantity * added_price
    return round_half_up(weighted_cost / new_quantity, price_scale)


# ============================================================
# SELL SIZING
# ============================================================

def ratio_sell_quantity(
    position_quantity: Decimal,
    leader_sell_size: Decimal,
    leader_open_quantity: Optional[Decimal],
    price_scale: int,
    quantity_scale: int,
) -> Decimal:
    """
    Sell the same fraction of the position that the leader sold of theirs.

    With no known leader open quantity the whole position is sold.
    """
    if leader_open_quantity is None or leader_open_quantity <= ZERO:
        return position_quantity
    fraction = round_down(leader_sell_size / leader_open_quantity, price_scale)
    return round_down(position_quantity * fraction, quantity_scale)


def quantity_for_amount(amount: Decimal, execution_price: Decimal, quantity_scale: int) -> Decimal:
    return round_down(amount / execution_price, quantity_scale)


def profit_rate(profit_amount: Decimal, initial_balance: Decimal) -> Decimal:
    """Profit as a percentage of the initial balance (ratio at 4 places)."""
    if initial_balance <= ZERO:
        return ZERO
    return round_half_up(profit_amount / initial_balance, 4) * HUNDRED
