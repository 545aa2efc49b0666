"""
Base Activity Source - Abstract interface for historical trade providers.

All providers MUST implement this interface to ensure:
- Isolation
- Replaceability
- One normalized output type (TradeData)

``HttpJsonClient`` holds the aiohttp session handling shared by every
HTTP collaborator (activity source, market metadata, order book).
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from data_sources.exceptions import FetchError, RateLimitError
from data_sources.models import ActivityRequest, TradeData


logger = logging.getLogger(__name__)


class HttpJsonClient:
    """
    Owns an aiohttp session and turns HTTP failures into FetchError.

    A session may be injected (shared across clients); otherwise one is
    created lazily and closed by ``close()``.
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def name(self) -> str:
        """Identifier used in logs and errors."""
        return self.__class__.__name__

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "CopyTradeBacktest/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make HTTP request and decode the JSON body."""
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
            ) as response:
                latency_ms = (time.time() - start_time) * 1000

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        source_name=self.name,
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                        request_url=url,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}: {body[:200]}",
                        source_name=self.name,
                        status_code=response.status,
                        response_body=body[:1000],
                        request_url=url,
                    )

                data = await response.json(content_type=None)
                logger.debug(f"[{self.name}] {method} {url} completed in {latency_ms:.1f}ms")
                return data

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(
                message=f"Connection error: {e!r}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            ) from e

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


class BaseActivitySource(HttpJsonClient, ABC):
    """
    Abstract base class for historical trade sources.

    Each source implementation must:
    1. Implement fetch_activity() - Get one page of raw rows
    2. Implement normalize() - Convert rows to TradeData, dropping bad rows

    Retry, end-of-data and offset-cap policy live in the fetcher, not here.
    """

    @abstractmethod
    async def fetch_activity(
        self,
        request: ActivityRequest,
    ) -> list[dict[str, Any]]:
        """
        Fetch one page of raw activity rows, ascending by timestamp.

        Raises:
            FetchError: on non-2xx status (status_code set) or network error
        """
        pass

    @abstractmethod
    def normalize(
        self,
        raw_data: list[dict[str, Any]],
        request: ActivityRequest,
    ) -> list[TradeData]:
        """
        Normalize raw provider rows to TradeData.

        Malformed rows are logged and dropped, never raised.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
