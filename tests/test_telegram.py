"""Tests for TelegramAlerter."""

from __future__ import annotations

import re
from unittest.mock import AsyncMock, patch

import pytest
from aioresponses import aioresponses

from conftest import make_opportunity, make_trade
from polycopy.monitoring.telegram import TelegramAlerter

SEND_PATTERN = re.compile(r"^https://api\.telegram\.org/botfake_token/sendMessage$")


@pytest.fixture
def alerter():
    return TelegramAlerter(bot_token="fake_token", chat_id="12345")


@pytest.fixture
def disabled_alerter():
    return TelegramAlerter()


class TestTelegramAlerterEnabled:
    def test_enabled_with_tokens(self, alerter):
        assert alerter.enabled is True

    def test_disabled_without_tokens(self, disabled_alerter):
        assert disabled_alerter.enabled is False

    def test_disabled_with_only_bot_token(self):
        assert TelegramAlerter(bot_token="token").enabled is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
        monkeypatch.setenv("TELEGRAM_CHAT_ID", "c")
        assert TelegramAlerter.from_env().enabled


class TestTelegramNoOp:
    async def test_all_alerts_noop(self, disabled_alerter):
        with patch.object(disabled_alerter, "_send_message", new_callable=AsyncMock) as mock_send:
            await disabled_alerter.alert_copy(make_trade(), 50.0)
            await disabled_alerter.alert_opportunity(make_opportunity())
            await disabled_alerter.alert_error("boom")
            await disabled_alerter.alert_info("hi")
        mock_send.assert_not_called()


class TestTelegramFormatting:
    async def test_copy_message(self, alerter):
        with patch.object(alerter, "_send_message", new_callable=AsyncMock) as mock_send:
            await alerter.alert_copy(make_trade(price=0.5), 123.456, arbitrage=True)
        text = mock_send.call_args[0][0]
        assert "Arb Pair Copied" in text
        assert "whale" in text
        assert "$123.46" in text

    async def test_opportunity_message_contains_profit(self, alerter):
        with patch.object(alerter, "_send_message", new_callable=AsyncMock) as mock_send:
            await alerter.alert_opportunity(make_opportunity(yes_price=0.40, no_price=0.55))
        text = mock_send.call_args[0][0]
        assert "4.22%" in text
        assert "🔍" in text

    async def test_info_message(self, alerter):
        with patch.object(alerter, "_send_message", new_callable=AsyncMock) as mock_send:
            await alerter.alert_info("started")
        text = mock_send.call_args[0][0]
        assert text.startswith("ℹ️")
        assert "ERROR" not in text

    async def test_error_message(self, alerter):
        with patch.object(alerter, "_send_message", new_callable=AsyncMock) as mock_send:
            await alerter.alert_error("disk full")
        assert "<b>ERROR</b>\ndisk full" in mock_send.call_args[0][0]


class TestTelegramHttp:
    async def test_posts_html_message(self, alerter):
        with aioresponses() as m:
            m.post(SEND_PATTERN, payload={"ok": True})
            await alerter.alert_error("hello")
            [(key, calls)] = m.requests.items()
        payload = calls[0].kwargs["json"]
        assert payload["chat_id"] == "12345"
        assert payload["parse_mode"] == "HTML"
        assert "hello" in payload["text"]

    async def test_send_failure_no_crash(self, alerter):
        with patch.object(
            alerter, "_send_message", new_callable=AsyncMock, side_effect=Exception("HTTP 500"),
        ):
            await alerter.alert_error("test")

    async def test_non_200_logged(self, alerter):
        with aioresponses() as m:
            m.post(SEND_PATTERN, status=400, body="bad request")
            await alerter.alert_error("hello")
