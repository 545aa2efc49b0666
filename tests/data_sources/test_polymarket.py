"""
Polymarket Activity Source Tests.

Request parameters and row normalization. HTTP is patched at
``_make_request``.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from data_sources import ActivityRequest, FetchError, PolymarketActivitySource, TradeSide


START_S = 1_700_000_000
END_S = START_S + 86_400

REQUEST = ActivityRequest(
    address="0xleader",
    start_ms=START_S * 1000,
    end_ms=END_S * 1000,
    limit=100,
    offset=200,
)


def activity_row(**overrides):
    row = {
        "type": "TRADE",
        "side": "BUY",
        "price": 0.42,
        "size": "100",
        "usdcSize": "42",
        "timestamp": START_S + 60,
        "conditionId": "0xmarket1",
        "outcome": "Yes",
        "outcomeIndex": 0,
        "title": "Will it rain tomorrow?",
        "slug": "will-it-rain",
        "transactionHash": "0xtx1",
    }
    row.update(overrides)
    return row


@pytest.fixture
def source():
    return PolymarketActivitySource(base_url="https://data.example/")


class TestFetchActivity:
    """Tests for the activity request."""

    @pytest.mark.asyncio
    async def test_query_parameters(self, source):
        with patch.object(source, "_make_request", AsyncMock(return_value=[activity_row()])) as mock:
            rows = await source.fetch_activity(REQUEST)

        assert len(rows) == 1
        method, url = mock.await_args.args
        params = mock.await_args.kwargs["params"]
        assert method == "GET"
        assert url == "https://data.example/activity"
        assert params["user"] == "0xleader"
        assert params["type"] == "TRADE"
        assert params["start"] == START_S
        assert params["end"] == END_S
        assert params["limit"] == 100
        assert params["offset"] == 200
        assert params["sortDirection"] == "ASC"

    @pytest.mark.asyncio
    async def test_wrapped_and_empty_payloads(self, source):
        with patch.object(source, "_make_request", AsyncMock(return_value={"data": [activity_row()]})):
            assert len(await source.fetch_activity(REQUEST)) == 1
        with patch.object(source, "_make_request", AsyncMock(return_value=None)):
            assert await source.fetch_activity(REQUEST) == []

    @pytest.mark.asyncio
    async def test_unexpected_payload(self, source):
        with patch.object(source, "_make_request", AsyncMock(return_value="oops")):
            with pytest.raises(FetchError):
                await source.fetch_activity(REQUEST)


class TestNormalize:
    """Tests for row mapping."""

    def test_full_row(self, source):
        (trade,) = source.normalize([activity_row()], REQUEST)

        assert trade.trade_id == "0xtx1"
        assert trade.market_id == "0xmarket1"
        assert trade.side == TradeSide.BUY
        assert trade.price == Decimal("0.42")
        assert trade.size == Decimal("100")
        assert trade.amount == Decimal("42")
        assert trade.timestamp == (START_S + 60) * 1000
        assert trade.outcome == "Yes"
        assert trade.outcome_index == 0
        assert trade.market_title == "Will it rain tomorrow?"
        assert trade.market_slug == "will-it-rain"

    def test_lowercase_side(self, source):
        (trade,) = source.normalize([activity_row(side="sell")], REQUEST)
        assert trade.side == TradeSide.SELL

    def test_outcome_label_falls_back_to_index(self, source):
        (trade,) = source.normalize([activity_row(outcome="", outcomeIndex="1")], REQUEST)
        assert trade.outcome == "1"
        assert trade.outcome_index == 1

    def test_trade_id_synthesized_without_hash(self, source):
        (trade,) = source.normalize([activity_row(transactionHash=None)], REQUEST)
        assert trade.trade_id == f"{START_S + 60}_0xmarket1_BUY"

    @pytest.mark.parametrize("overrides", [
        {"type": "REDEEM"},
        {"timestamp": START_S - 1},
        {"timestamp": END_S + 1},
    ])
    def test_out_of_scope_rows_skipped(self, source, overrides):
        assert source.normalize([activity_row(**overrides)], REQUEST) == []

    @pytest.mark.parametrize("overrides", [
        {"side": "HOLD"},
        {"price": None},
        {"size": "abc"},
        {"usdcSize": "NaN"},
        {"timestamp": "soon"},
        {"conditionId": ""},
    ])
    def test_malformed_rows_dropped(self, source, overrides):
        rows = [activity_row(**overrides), activity_row(transactionHash="0xtx2")]
        trades = source.normalize(rows, REQUEST)
        assert [t.trade_id for t in trades] == ["0xtx2"]

    def test_non_object_row_dropped(self, source):
        assert source.normalize(["junk"], REQUEST) == []
