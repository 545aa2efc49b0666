"""
Data Source Exceptions - Exception hierarchy for the historical trade source.

Fetch failures are classified here so the fetcher can decide between
retrying, treating a response as end-of-data, or aborting the run:

    status 400 on page > 0      -> end of data
    status 429, 5xx, no status  -> retry
    any other 4xx               -> NonRetryableFetchError
    attempts used up            -> RetryExhaustedError

The string form of these errors becomes a FAILED task's error message.
"""

from typing import Any, Optional


class DataSourceError(Exception):
    """Base exception for all data source errors."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error
        self.context = context or {}

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class FetchError(DataSourceError):
    """
    A request to a provider failed.

    ``status_code`` is None for network errors and timeouts.
    """

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    def is_server_error(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code < 600

    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    def is_retryable(self) -> bool:
        """Network errors, 5xx and 429 may succeed on a later attempt."""
        return not self.is_client_error() or self.is_rate_limited()


class RateLimitError(FetchError):
    """HTTP 429; ``retry_after_seconds`` echoes the Retry-After header."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        request_url: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            source_name,
            status_code=429,
            request_url=request_url,
        )
        self.retry_after_seconds = retry_after_seconds


class NonRetryableFetchError(FetchError):
    """A 4xx response (other than 429) that must abort the whole fetch."""


class RetryExhaustedError(DataSourceError):
    """Every attempt for a page failed."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        attempts: int = 0,
        page: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, {"attempts": attempts, "page": page})
        self.attempts = attempts
        self.page = page


class NormalizationError(DataSourceError):
    """A single raw row could not be mapped to a TradeData."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source_name, original_error)
        self.raw_data = raw_data
        self.field_name = field_name
