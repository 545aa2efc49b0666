"""
Gamma Market Client - Polymarket market metadata adapter.

Endpoints used:
- /markets?condition_ids=<id> - market by condition id

List-valued fields (outcomes, outcomePrices, clobTokenIds) arrive as
JSON-encoded strings and are decoded here.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from data_sources.base import HttpJsonClient
from market_data.base import MarketMetadataProvider
from market_data.models import MarketInfo


logger = logging.getLogger(__name__)


def _decode_list(value: Any) -> list[Any]:
    """Decode a JSON-array string (or pass a list through)."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            logger.debug(f"Undecodable list field: {value!r}")
            return []
        return decoded if isinstance(decoded, list) else []
    return []


def _parse_timestamp_ms(value: Any) -> Optional[int]:
    """Parse ISO-ish timestamps such as '2024-11-05T12:00:00Z' or '2024-11-06 05:13:40+00'."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace(" ", "T", 1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    elif len(text) >= 3 and text[-3] in "+-" and text[-2:].isdigit():
        text = text + ":00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def parse_market(raw: dict[str, Any], market_id: Optional[str] = None) -> MarketInfo:
    """Map a Gamma market object to MarketInfo."""
    prices = tuple(p for p in (_to_decimal(v) for v in _decode_list(raw.get("outcomePrices"))) if p is not None)
    closed = raw.get("closed")
    resolved_at_ms = None
    if closed:
        resolved_at_ms = _parse_timestamp_ms(raw.get("closedTime")) or _parse_timestamp_ms(raw.get("umaEndDate"))
        if resolved_at_ms is None and str(raw.get("umaResolutionStatus") or "").lower() == "resolved":
            resolved_at_ms = _parse_timestamp_ms(raw.get("endDate"))

    return MarketInfo(
        market_id=market_id or raw.get("conditionId") or "",
        title=raw.get("question") or "",
        slug=raw.get("slug"),
        outcomes=tuple(str(o) for o in _decode_list(raw.get("outcomes"))),
        outcome_prices=prices,
        token_ids=tuple(str(t) for t in _decode_list(raw.get("clobTokenIds"))),
        active=raw.get("active"),
        closed=closed,
        archived=raw.get("archived"),
        end_date_ms=_parse_timestamp_ms(raw.get("endDate")),
        resolved_at_ms=resolved_at_ms,
    )


class GammaMarketClient(HttpJsonClient, MarketMetadataProvider):
    """Polymarket Gamma API market metadata client."""

    BASE_URL = "https://gamma-api.polymarket.com"

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
        return "polymarket_gamma_api"

    async def get_market(self, market_id: str) -> Optional[MarketInfo]:
        """Fetch one market by condition id."""
        url = f"{self._base_url}/markets"
        data = await self._make_request("GET", url, params={"condition_ids": market_id})

        if isinstance(data, dict):
            data = data.get("data") or [data]
        if not data:
            logger.debug(f"[{self.name}] Market not found: {market_id}")
            return None
        return parse_market(data[0], market_id)
