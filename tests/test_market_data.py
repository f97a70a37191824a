"""Tests for MarketDataGateway (Gamma / CLOB / Data API reads)."""

from __future__ import annotations

import re
from datetime import datetime, timezone

import aiohttp
from aioresponses import aioresponses

from polycopy.gateway.market_data import MarketDataGateway

CONDITION_ID = "0xcond01"
GAMMA_BY_CONDITION = re.compile(r"^https://gamma-api\.polymarket\.com/markets\?.*condition_ids=0xcond01")
GAMMA_BY_ID = re.compile(r"^https://gamma-api\.polymarket\.com/markets/12345\b")
BOOK_YES = re.compile(r"^https://clob\.polymarket\.com/book\?token_id=tok_yes\b")
BOOK_NO = re.compile(r"^https://clob\.polymarket\.com/book\?token_id=tok_no\b")
POSITIONS = re.compile(r"^https://data-api\.polymarket\.com/positions\b")
ACTIVITY = re.compile(r"^https://data-api\.polymarket\.com/activity\b")

GAMMA_MARKET = {
    "id": "12345",
    "conditionId": CONDITION_ID,
    "question": "Will BTC close above $100k?",
    "clobTokenIds": '["tok_yes", "tok_no"]',
    "outcomes": '["Yes", "No"]',
}


def _gateway() -> MarketDataGateway:
    return MarketDataGateway(backoff_base=0.0)


class TestSession:
    async def test_async_context_manager(self):
        async with MarketDataGateway() as gateway:
            assert gateway._session is not None
        assert gateway._session is None

    async def test_close_without_open(self):
        await MarketDataGateway().close()


class TestMarkets:
    async def test_get_market_by_condition_id(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_CONDITION, payload=[GAMMA_MARKET])
            async with _gateway() as gateway:
                market = await gateway.get_market(CONDITION_ID)
        assert market["id"] == "12345"

    async def test_get_market_by_gamma_id(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_ID, payload=GAMMA_MARKET)
            async with _gateway() as gateway:
                market = await gateway.get_market("12345")
        assert market["conditionId"] == CONDITION_ID

    async def test_get_market_404(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_ID, status=404)
            async with _gateway() as gateway:
                assert await gateway.get_market("12345") is None

    async def test_market_tokens_cached(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_CONDITION, payload=[GAMMA_MARKET])
            async with _gateway() as gateway:
                first = await gateway.get_market_tokens(CONDITION_ID)
                second = await gateway.get_market_tokens(CONDITION_ID)
        assert first is second
        assert first.token_for("yes") == "tok_yes"
        assert first.token_for("NO") == "tok_no"


class TestOrderBook:
    async def test_normalized_book(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_CONDITION, payload=[GAMMA_MARKET])
            m.get(BOOK_YES, payload={"asks": [{"price": "0.40", "size": "5000"}], "bids": []})
            m.get(BOOK_NO, payload={"asks": [{"price": "0.55", "size": "5000"}], "bids": []})
            async with _gateway() as gateway:
                book = await gateway.get_order_book(CONDITION_ID)

        assert book["marketId"] == CONDITION_ID
        assert book["outcomes"]["YES"]["asks"][0]["price"] == "0.40"
        assert book["outcomes"]["NO"]["asks"][0]["price"] == "0.55"
        assert book["market"]["question"] == "Will BTC close above $100k?"

    async def test_unknown_market(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_CONDITION, payload=[])
            async with _gateway() as gateway:
                assert await gateway.get_order_book(CONDITION_ID) is None

    async def test_both_books_missing(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_CONDITION, payload=[GAMMA_MARKET])
            m.get(BOOK_YES, status=404)
            m.get(BOOK_NO, status=404)
            async with _gateway() as gateway:
                assert await gateway.get_order_book(CONDITION_ID) is None


class TestWalletTrades:
    async def test_positions_first(self):
        with aioresponses() as m:
            m.get(POSITIONS, payload=[{
                "conditionId": CONDITION_ID, "outcome": "Yes", "avgPrice": 0.4,
                "size": 100, "asset": "tok_yes",
            }])
            async with _gateway() as gateway:
                records = await gateway.get_wallet_trades("0xWALLET")

        assert len(records) == 1
        assert records[0]["side"] == "buy"
        assert records[0]["positionId"] == "tok_yes"

    async def test_falls_back_to_activity(self):
        with aioresponses() as m:
            m.get(POSITIONS, payload=[])
            m.get(ACTIVITY, payload=[
                {"type": "TRADE", "conditionId": CONDITION_ID, "side": "BUY", "outcome": "No",
                 "price": 0.5, "size": 10, "timestamp": "2026-01-05T12:00:00Z"},
            ])
            async with _gateway() as gateway:
                records = await gateway.get_wallet_trades("0xWALLET")

        assert records[0]["outcome"] == "No"
        assert records[0]["side"] == "buy"

    async def test_since_filters_locally(self):
        since = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
        with aioresponses() as m:
            m.get(POSITIONS, payload=[])
            m.get(ACTIVITY, payload=[
                {"type": "TRADE", "conditionId": "a", "side": "BUY", "outcome": "Yes",
                 "price": 0.5, "size": 1, "timestamp": "2026-01-05T11:59:00Z"},
                {"type": "TRADE", "conditionId": "b", "side": "BUY", "outcome": "Yes",
                 "price": 0.5, "size": 1, "timestamp": "2026-01-05T12:00:00Z"},
                {"type": "TRADE", "conditionId": "c", "side": "BUY", "outcome": "Yes",
                 "price": 0.5, "size": 1},
            ])
            async with _gateway() as gateway:
                records = await gateway.get_wallet_trades("0xWALLET", since=since)

        assert [r["marketId"] for r in records] == ["b", "c"]


class TestRetry:
    async def test_429_then_success(self):
        with aioresponses() as m:
            m.get(GAMMA_BY_ID, status=429)
            m.get(GAMMA_BY_ID, payload=GAMMA_MARKET)
            async with _gateway() as gateway:
                market = await gateway.get_market("12345")
        assert market["id"] == "12345"

    async def test_persistent_500_returns_none(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(GAMMA_BY_ID, status=500)
            async with _gateway() as gateway:
                assert await gateway.get_market("12345") is None

    async def test_connection_error_returns_empty(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(POSITIONS, exception=aiohttp.ClientConnectionError("refused"))
            for _ in range(3):
                m.get(ACTIVITY, exception=aiohttp.ClientConnectionError("refused"))
            async with _gateway() as gateway:
                assert await gateway.get_wallet_trades("0xWALLET") == []
