"""
Polymarket Activity Source - Data API adapter.

Implements historical trade fetching from the Polymarket Data API
``/activity`` endpoint. No authentication required.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from data_sources.base import BaseActivitySource
from data_sources.exceptions import FetchError, NormalizationError
from data_sources.models import ActivityRequest, TradeData, TradeSide


logger = logging.getLogger(__name__)


class PolymarketActivitySource(BaseActivitySource):
    """
    Polymarket Data API activity source.

    Endpoints used:
    - /activity - User activity (trades, splits, merges, redeems)

    Only TRADE rows are requested and kept. Rows come back sorted
    ascending by timestamp so offsets are stable between calls.
    """

    BASE_URL = "https://data-api.polymarket.com"
    ACTIVITY_TYPE = "TRADE"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(timeout, session)
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "polymarket_data_api"

    async def fetch_activity(
        self,
        request: ActivityRequest,
    ) -> list[dict[str, Any]]:
        """Fetch one page of the leader's trade activity."""
        request.validate()
        url = f"{self._base_url}/activity"

        params: dict[str, Any] = {
            "user": request.address,
            "type": self.ACTIVITY_TYPE,
            "start": request.start_seconds,
            "end": request.end_seconds,
            "limit": request.limit,
            "offset": request.offset,
            "sortBy": "TIMESTAMP",
            "sortDirection": "ASC",
        }

        data = await self._make_request("GET", url, params=params)

        if data is None:
            return []
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
        if not isinstance(data, list):
            raise FetchError(
                message=f"Unexpected activity payload type: {type(data).__name__}",
                source_name=self.name,
                request_url=url,
            )
        return data

    def normalize(
        self,
        raw_data: list[dict[str, Any]],
        request: ActivityRequest,
    ) -> list[TradeData]:
        """Normalize activity rows; malformed rows are dropped with a warning."""
        result: list[TradeData] = []
        for row in raw_data:
            try:
                trade = self._normalize_row(row, request)
            except NormalizationError as e:
                logger.warning(f"[{self.name}] Dropping activity row: {e.message} (field={e.field_name})")
                continue
            if trade is not None:
                result.append(trade)
        return result

    def _normalize_row(
        self,
        row: dict[str, Any],
        request: ActivityRequest,
    ) -> Optional[TradeData]:
        """Map one raw row; returns None for rows that are simply out of scope."""
        if not isinstance(row, dict):
            raise NormalizationError("Row is not an object", source_name=self.name, raw_data=row)

        row_type = str(row.get("type") or "").upper()
        if row_type != self.ACTIVITY_TYPE:
            return None

        side = TradeSide.parse(row.get("side"))
        if side is None:
            raise NormalizationError(
                "Missing or unknown side", source_name=self.name, raw_data=row, field_name="side",
            )

        price = self._required_decimal(row, "price")
        size = self._required_decimal(row, "size")
        amount = self._required_decimal(row, "usdcSize")

        raw_ts = row.get("timestamp")
        try:
            timestamp_seconds = int(raw_ts)
        except (TypeError, ValueError):
            raise NormalizationError(
                "Missing or invalid timestamp", source_name=self.name, raw_data=row, field_name="timestamp",
            )
        timestamp_ms = timestamp_seconds * 1000
        if timestamp_ms < request.start_ms or timestamp_ms > request.end_ms:
            logger.debug(f"[{self.name}] Row outside range: ts={timestamp_ms}")
            return None

        market_id = row.get("conditionId")
        if not market_id:
            raise NormalizationError(
                "Missing conditionId", source_name=self.name, raw_data=row, field_name="conditionId",
            )

        outcome_index = self._optional_int(row.get("outcomeIndex"))
        outcome = row.get("outcome")
        if not outcome:
            outcome = str(outcome_index) if outcome_index is not None else ""

        trade_id = row.get("transactionHash") or f"{timestamp_seconds}_{market_id}_{side.value}"

        return TradeData(
            trade_id=trade_id,
            market_id=market_id,
            side=side,
            price=price,
            size=size,
            amount=amount,
            timestamp=timestamp_ms,
            outcome=outcome,
            outcome_index=outcome_index,
            market_title=row.get("title") or "",
            market_slug=row.get("slug"),
        )

    def _required_decimal(self, row: dict[str, Any], field_name: str) -> Decimal:
        value = row.get(field_name)
        if value is None or value == "":
            raise NormalizationError(
                f"Missing {field_name}", source_name=self.name, raw_data=row, field_name=field_name,
            )
        try:
            result = Decimal(str(value))
        except InvalidOperation as e:
            raise NormalizationError(
                f"Invalid {field_name}: {value!r}",
                source_name=self.name,
                raw_data=row,
                field_name=field_name,
                original_error=e,
            )
        if not result.is_finite():
            raise NormalizationError(
                f"Non-finite {field_name}: {value!r}", source_name=self.name, raw_data=row, field_name=field_name,
            )
        return result

    @staticmethod
    def _optional_int(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
