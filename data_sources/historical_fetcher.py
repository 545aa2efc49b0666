"""
Data Sources - Historical Trade Fetcher.

============================================================
PURPOSE
============================================================
Wraps an activity source with the paging policy the replay
engine depends on.

RULES (evaluated per page):
1. Offset cap: page * page_size > max_offset -> empty page, no request
2. HTTP 400 on page > 0 -> empty page (the source's end-of-data signal)
3. Other 4xx except 429 -> NonRetryableFetchError, whole fetch aborts
4. Network errors, 5xx, 429 -> retry with a fixed delay
5. After max_attempts failures -> RetryExhaustedError

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from data_sources.base import BaseActivitySource
from data_sources.config import FetcherConfig
from data_sources.exceptions import (
    FetchError,
    NonRetryableFetchError,
    RetryExhaustedError,
)
from data_sources.models import ActivityRequest, TradeData


logger = logging.getLogger(__name__)


class HistoricalTradeFetcher:
    """
    Page-at-a-time access to a leader's historical trades.

    Pages are 0-based. An empty list always means "no more data".
    """

    def __init__(
        self,
        source: BaseActivitySource,
        config: Optional[FetcherConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._config = config or FetcherConfig()
        self._sleep = sleep

    @property
    def page_size(self) -> int:
        return self._config.page_size

    async def fetch_page(
        self,
        leader_address: str,
        start_ms: int,
        end_ms: int,
        page: int,
        page_size: Optional[int] = None,
    ) -> list[TradeData]:
        """
        Fetch and normalize one page of trades.

        Raises:
            NonRetryableFetchError: 4xx other than 429 (and 400 on page 0)
            RetryExhaustedError: every attempt failed with a retryable error
        """
        size = page_size or self._config.page_size
        offset = page * size

        if offset > self._config.max_offset:
            logger.info(
                f"Offset {offset} exceeds cap {self._config.max_offset}, "
                f"treating page {page} as end of data"
            )
            return []

        request = ActivityRequest(
            address=leader_address,
            start_ms=start_ms,
            end_ms=end_ms,
            limit=size,
            offset=offset,
        )
        request.validate()

        max_attempts = self._config.max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                raw_rows = await self._source.fetch_activity(request)
                trades = self._source.normalize(raw_rows, request)
                logger.debug(
                    f"Page {page}: {len(raw_rows)} raw rows, {len(trades)} trades "
                    f"(attempt {attempt}/{max_attempts})"
                )
                return trades

            except FetchError as e:
                if e.status_code == 400 and page > 0:
                    logger.info(f"HTTP 400 on page {page}, treating as end of data")
                    return []
                if not e.is_retryable():
                    raise NonRetryableFetchError(
                        message=f"Non-retryable HTTP {e.status_code} fetching page {page}",
                        source_name=self._source.name,
                        status_code=e.status_code,
                        response_body=e.response_body,
                        request_url=e.request_url,
                        original_error=e,
                    ) from e
                last_error = e

            except Exception as e:
                last_error = e

            logger.warning(
                f"Fetch page {page} failed (attempt {attempt}/{max_attempts}): {last_error}"
            )
            if attempt < max_attempts:
                await self._sleep(self._config.retry_delay_seconds)

        raise RetryExhaustedError(
            message=f"Failed to fetch page {page} after {max_attempts} attempts: {last_error}",
            source_name=self._source.name,
            attempts=max_attempts,
            page=page,
            original_error=last_error,
        )
