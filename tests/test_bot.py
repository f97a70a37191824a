"""Tests for BotOrchestrator: wiring, dispatch, lifecycle, persistence."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from conftest import MARKET, WALLET, make_book, make_trade
from polycopy.bot import BotOrchestrator
from polycopy.config import BotConfig, WalletConfig
from polycopy.errors import ConfigError
from polycopy.monitoring.telegram import TelegramAlerter
from polycopy.trading.copy_trader import SkipReason


@pytest.fixture
def market_data():
    gateway = AsyncMock()
    gateway.get_wallet_trades.return_value = []
    gateway.get_order_book.return_value = make_book([(0.40, 5000)], [(0.55, 5000)])
    return gateway


def _bot(market_data, order_gateway, wallets=None, **config_kwargs) -> BotOrchestrator:
    if wallets is None:
        wallets = [WalletConfig(
            address=WALLET, name="whale", position_size_multiplier=0.1,
            require_arb_signal=False,
        )]
    config = BotConfig(wallets=wallets, **config_kwargs)
    return BotOrchestrator(
        config, market_data=market_data, order_gateway=order_gateway, alerter=TelegramAlerter(),
    )


class TestDispatch:
    async def test_routes_to_wallet_trader(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway)

        result = await bot.dispatch(make_trade())

        assert result
        assert bot.ledger.get_exposure().open_positions == 1
        assert bot.markets_to_scan() == [MARKET]

    async def test_unknown_wallet(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway)
        assert await bot.dispatch(make_trade(wallet_address="0xstranger")) is None
        order_gateway.place_order.assert_not_awaited()

    async def test_same_wallet_trades_processed_in_order(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway)
        trade = make_trade()

        results = await asyncio.gather(bot.dispatch(trade), bot.dispatch(trade))

        assert sum(1 for r in results if r) == 1
        assert order_gateway.place_order.await_count == 1

    async def test_unscanned_market_scanned_before_signal_gate(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, wallets=[
            WalletConfig(address=WALLET, name="whale", position_size_multiplier=0.1),
        ])

        result = await bot.dispatch(make_trade())

        market_data.get_order_book.assert_awaited_once_with(MARKET)
        assert result.copied
        assert result.arbitrage
        assert bot.ledger.get_exposure().open_positions == 2

    async def test_unscanned_market_without_arb_is_skipped(self, market_data, order_gateway):
        market_data.get_order_book.return_value = make_book([(0.55, 5000)], [(0.50, 5000)])
        bot = _bot(market_data, order_gateway, wallets=[
            WalletConfig(address=WALLET, name="whale", position_size_multiplier=0.1),
        ])

        result = await bot.dispatch(make_trade())

        assert result.reason is SkipReason.NO_ARB_SIGNAL
        order_gateway.place_order.assert_not_awaited()

    async def test_scan_loop_markets_not_rescanned_on_dispatch(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, enabled_markets=[MARKET], wallets=[
            WalletConfig(address=WALLET, name="whale", position_size_multiplier=0.1),
        ])
        await bot.scan_once()
        market_data.get_order_book.reset_mock()

        assert await bot.dispatch(make_trade())
        market_data.get_order_book.assert_not_awaited()

    def test_configured_markets_take_precedence(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, enabled_markets=["0xa", "0xb"])
        bot._remember_market("0xc")
        assert bot.markets_to_scan() == ["0xa", "0xb"]


class TestScan:
    async def test_scan_once_updates_detector(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, enabled_markets=[MARKET])

        assert await bot.scan_once() == 1
        assert bot.detector.has_opportunity(MARKET)
        market_data.get_order_book.assert_awaited_with(MARKET)

    async def test_nothing_to_scan(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway)
        assert await bot.scan_once() == 0
        market_data.get_order_book.assert_not_awaited()


class TestLifecycle:
    async def test_no_enabled_wallet_is_fatal(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, wallets=[
            WalletConfig(address=WALLET, name="off", enabled=False),
        ])
        with pytest.raises(ConfigError):
            await bot.start()
        assert not bot.running

    async def test_start_and_stop(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway)

        await bot.start()
        await asyncio.sleep(0.05)
        assert bot.running
        assert len(bot._tasks) == 3
        market_data.get_wallet_trades.assert_awaited()

        await bot.stop()
        assert not bot.running
        assert bot._tasks == []
        market_data.close.assert_awaited_once()
        order_gateway.ensure_credentials.assert_not_awaited()

    async def test_live_mode_prepares_venue(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, dry_run=False)
        await bot.start()
        await asyncio.sleep(0.01)
        await bot.stop()

        order_gateway.ensure_credentials.assert_awaited_once()
        order_gateway.refresh_allowance.assert_awaited_once_with()

    async def test_state_persisted_and_restored(self, market_data, order_gateway, tmp_path):
        state_file = tmp_path / "state.json"
        bot = _bot(market_data, order_gateway, state_file=str(state_file))
        await bot.start()
        trade = make_trade()
        await bot.dispatch(trade)
        await bot.stop()

        assert json.loads(state_file.read_text())["positions"][0]["market_id"] == MARKET
        assert (tmp_path / "state_dedup.json").exists()

        restarted = _bot(market_data, order_gateway, state_file=str(state_file))
        await restarted.start()
        assert restarted.ledger.get_exposure().open_positions == 1
        assert restarted.traders[WALLET].is_processed(trade)
        await restarted.stop()


class TestStatus:
    async def test_status_snapshot(self, market_data, order_gateway):
        bot = _bot(market_data, order_gateway, enabled_markets=[MARKET])
        await bot.dispatch(make_trade())
        await bot.scan_once()

        status = bot.status()

        assert status["dry_run"] is True
        assert status["exposure"]["open_positions"] == 1
        assert status["exposure"]["total_exposure_usd"] == pytest.approx(500.0)
        assert status["open_orders"] == 1
        assert status["opportunities"][0]["market_id"] == MARKET
        assert status["wallets"][WALLET]["copy"]["copied"] == 1
        assert status["wallets"][WALLET]["monitor"]["total_trades"] == 0
