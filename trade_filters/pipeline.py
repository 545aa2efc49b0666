"""
Trade Filters - Admission-Control Pipeline.

============================================================
PURPOSE
============================================================
Decides whether a leader trade may be copied. Shared by live
copy trading and the backtest replay.

CHECK ORDER (short-circuits on first failure):
1. Keyword filter (unless DISABLED)
2. Market tradability (closed / archived / inactive / ended)
3. Market-expiry cap
4. Price range
5. Order book existence
6. Spread
7. Depth
8. Position-size cap

The order book is fetched when liquidity checks are not skipped,
or when a spread or depth limit is configured. Local checks run
first so a rejected trade never costs a network call.

Failures are returned as data. Nothing here raises for a rejected
trade.

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from core.clock import ClockProtocol, SystemClock
from market_data.base import OrderBookProvider
from market_data.exceptions import OrderBookNotFoundError
from market_data.models import OrderBook

from .types import (
    FilterConfig,
    FilterResult,
    FilterStatus,
    KeywordFilterMode,
    MarketContext,
    PositionExposureProvider,
)


logger = logging.getLogger(__name__)


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f")


# ============================================================
# PIPELINE
# ============================================================

class TradeFilterPipeline:
    """
    Short-circuiting chain of admission checks.

    The pipeline holds no per-trade state; every input arrives through
    ``check``.
    """

    def __init__(
        self,
        order_books: Optional[OrderBookProvider] = None,
        exposure: Optional[PositionExposureProvider] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize pipeline.

        Args:
            order_books: Live order book source (needed for liquidity checks)
            exposure: Exposure lookup (needed for the position cap)
            clock: Time source for tradability and expiry checks
        """
        self._order_books = order_books
        self._exposure = exposure
        self._clock = clock or SystemClock()

    async def check(
        self,
        config: FilterConfig,
        market: MarketContext,
        trade_price: Optional[Decimal] = None,
        follow_amount: Optional[Decimal] = None,
        skip_liquidity_checks: bool = False,
        exposure: Optional[PositionExposureProvider] = None,
    ) -> FilterResult:
        """
        Run every enabled check in order.

        Args:
            config: Enabled checks and limits
            market: Market being traded
            trade_price: Leader's trade price (price-range check)
            follow_amount: Follower order amount (position cap)
            skip_liquidity_checks: Skip the order book existence check
            exposure: Overrides the pipeline's exposure provider for this call

        Returns:
            FilterResult
        """
        # 1. Keyword filter
        if config.keyword_filter_mode != KeywordFilterMode.DISABLED:
            result = self._check_keywords(config, market.market_title)
            if not result.is_passed:
                return result

        # 2. Market tradability
        result = self._check_tradable(market)
        if not result.is_passed:
            return result

        # 3. Market-expiry cap
        if config.max_market_end_ms is not None:
            result = self._check_market_end_date(config, market.end_date_ms)
            if not result.is_passed:
                return result

        # 4. Price range
        if trade_price is not None:
            result = self._check_price_range(config, trade_price)
            if not result.is_passed:
                return result

        # 5. Order book existence
        order_book: Optional[OrderBook] = None
        if not skip_liquidity_checks or config.needs_order_book:
            book_or_failure = await self._fetch_order_book(market.token_id)
            if isinstance(book_or_failure, FilterResult):
                return book_or_failure
            order_book = book_or_failure

        # 6. Spread
        if config.max_spread is not None:
            result = self._check_spread(config, order_book)
            if not result.is_passed:
                return result

        # 7. Depth
        if config.min_order_depth is not None:
            result = self._check_depth(config, order_book)
            if not result.is_passed:
                return result

        # 8. Position-size cap
        if follow_amount is not None and market.market_id:
            result = await self._check_position_limit(
                config, follow_amount, market.market_id, market.outcome_index,
                exposure or self._exposure,
            )
            if not result.is_passed:
                return result

        return FilterResult.passed(order_book)

    # --------------------------------------------------------
    # Individual checks
    # --------------------------------------------------------

    def _check_keywords(self, config: FilterConfig, title: Optional[str]) -> FilterResult:
        if not title or not title.strip():
            return FilterResult.failed(FilterStatus.KEYWORD, "Market title is empty, cannot apply keyword filter")

        keywords = [k for k in config.keywords if k and k.strip()]
        if not keywords:
            if config.keyword_filter_mode == KeywordFilterMode.WHITELIST:
                return FilterResult.failed(FilterStatus.KEYWORD, "Whitelist mode with an empty keyword list")
            return FilterResult.passed()

        title_lower = title.lower()
        matched = [k for k in keywords if k.lower() in title_lower]

        if config.keyword_filter_mode == KeywordFilterMode.WHITELIST and not matched:
            return FilterResult.failed(
                FilterStatus.KEYWORD,
                f"Whitelist: title {title!r} contains none of {', '.join(keywords)}",
            )
        if config.keyword_filter_mode == KeywordFilterMode.BLACKLIST and matched:
            return FilterResult.failed(
                FilterStatus.KEYWORD,
                f"Blacklist: title {title!r} contains {', '.join(matched)}",
            )
        return FilterResult.passed()

    def _check_tradable(self, market: MarketContext) -> FilterResult:
        label = market.market_id or "unknown"
        if market.closed is True:
            return FilterResult.failed(FilterStatus.MARKET_STATUS, f"Market {label} is closed")
        if market.archived is True:
            return FilterResult.failed(FilterStatus.MARKET_STATUS, f"Market {label} is archived")
        if market.active is False:
            return FilterResult.failed(FilterStatus.MARKET_STATUS, f"Market {label} is inactive")
        if market.end_date_ms is not None and market.end_date_ms <= self._clock.now_ms():
            return FilterResult.failed(FilterStatus.MARKET_STATUS, f"Market {label} has ended")
        return FilterResult.passed()

    def _check_market_end_date(self, config: FilterConfig, end_date_ms: Optional[int]) -> FilterResult:
        if end_date_ms is None:
            return FilterResult.failed(FilterStatus.MARKET_END_DATE, "Market end date unknown")
        remaining = end_date_ms - self._clock.now_ms()
        if remaining > config.max_market_end_ms:
            return FilterResult.failed(
                FilterStatus.MARKET_END_DATE,
                f"Market ends in {remaining}ms, limit is {config.max_market_end_ms}ms",
            )
        return FilterResult.passed()

    def _check_price_range(self, config: FilterConfig, price: Decimal) -> FilterResult:
        if config.min_price is not None and price < config.min_price:
            return FilterResult.failed(
                FilterStatus.PRICE_RANGE, f"Price below minimum: {_fmt(price)} < {_fmt(config.min_price)}",
            )
        if config.max_price is not None and price > config.max_price:
            return FilterResult.failed(
                FilterStatus.PRICE_RANGE, f"Price above maximum: {_fmt(price)} > {_fmt(config.max_price)}",
            )
        return FilterResult.passed()

    async def _fetch_order_book(self, token_id: str):
        """Return the book, or a FilterResult describing why there is none."""
        if not token_id or not token_id.strip():
            return FilterResult.failed(FilterStatus.ORDERBOOK_ERROR, "Token id is empty, cannot fetch order book")
        if self._order_books is None:
            return FilterResult.failed(FilterStatus.ORDERBOOK_ERROR, "No order book provider configured")

        try:
            book = await self._order_books.get_order_book(token_id)
        except OrderBookNotFoundError:
            return FilterResult.failed(FilterStatus.MARKET_STATUS, "Market not tradable: order book does not exist")
        except Exception as e:
            message = str(e).lower()
            if "404" in message or "no orderbook exists" in message:
                return FilterResult.failed(
                    FilterStatus.MARKET_STATUS, "Market not tradable: order book does not exist",
                )
            logger.debug(f"Order book fetch failed for token {token_id}: {e}")
            return FilterResult.failed(FilterStatus.ORDERBOOK_ERROR, f"Failed to fetch order book: {e}")

        if book is None:
            return FilterResult.failed(FilterStatus.ORDERBOOK_ERROR, "Order book is empty")
        if book.is_empty:
            return FilterResult.failed(FilterStatus.MARKET_STATUS, "Market not tradable: order book has no bids or asks")
        return book

    def _check_spread(self, config: FilterConfig, book: Optional[OrderBook]) -> FilterResult:
        if book is None:
            return FilterResult.failed(FilterStatus.ORDERBOOK_ERROR, "Order book unavailable for spread check")
        spread = book.spread
        if spread is None:
            return FilterResult.failed(FilterStatus.SPREAD, "Order book is missing best bid or best ask", book)
        if spread > config.max_spread:
            return FilterResult.failed(
                FilterStatus.SPREAD, f"Spread too wide: {_fmt(spread)} > {_fmt(config.max_spread)}", book,
            )
        return FilterResult.passed(book)

    def _check_depth(self, config: FilterConfig, book: Optional[OrderBook]) -> FilterResult:
        if book is None:
            return FilterResult.failed(FilterStatus.ORDERBOOK_ERROR, "Order book unavailable for depth check")
        depth = book.total_depth
        if depth < config.min_order_depth:
            return FilterResult.failed(
                FilterStatus.ORDER_DEPTH,
                f"Order depth too thin: {_fmt(depth)} < {_fmt(config.min_order_depth)}",
                book,
            )
        return FilterResult.passed(book)

    async def _check_position_limit(
        self,
        config: FilterConfig,
        follow_amount: Decimal,
        market_id: str,
        outcome_index: Optional[int],
        exposure: Optional[PositionExposureProvider],
    ) -> FilterResult:
        if config.max_position_value is None or outcome_index is None:
            return FilterResult.passed()
        if exposure is None:
            return FilterResult.failed(FilterStatus.POSITION_LIMIT, "No exposure source, cannot check position limit")

        try:
            tracked = await exposure.get_tracked_exposure(market_id, outcome_index)
            external = await exposure.get_external_position_value(market_id, outcome_index)
        except Exception as e:
            logger.warning(f"Exposure lookup failed for {market_id}:{outcome_index}: {e}")
            return FilterResult.failed(FilterStatus.POSITION_LIMIT, "Failed to load positions, cannot check position limit")

        current = max(tracked, external)
        total = current + follow_amount
        if total > config.max_position_value:
            return FilterResult.failed(
                FilterStatus.POSITION_LIMIT,
                f"Position limit exceeded for {market_id} outcome {outcome_index}: "
                f"current {_fmt(current)} (tracked {_fmt(tracked)}, external {_fmt(external)}) "
                f"+ order {_fmt(follow_amount)} = {_fmt(total)} > {_fmt(config.max_position_value)}",
            )
        return FilterResult.passed()
