"""Bot orchestrator: wires gateways, detector, ledger, monitor and copy traders.

Tasks started by start():
    - wallet monitor loop (novel trades → dispatch → CopyTrader)
    - arbitrage scan loop (configured markets, else markets seen in trades)
    - status loop (periodic exposure / stats log)
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from polycopy.config import BotConfig
from polycopy.errors import ConfigError
from polycopy.execution.executor import OrderExecutor
from polycopy.gateway.clob_orders import ClobOrderGateway
from polycopy.gateway.market_data import MarketDataGateway
from polycopy.models.trade import WalletTrade
from polycopy.monitoring.telegram import TelegramAlerter
from polycopy.monitoring.wallet_monitor import WalletMonitor
from polycopy.risk.ledger import RiskLedger
from polycopy.strategy.arbitrage_detector import ArbitrageDetector
from polycopy.trading.copy_trader import CopyResult, CopyTrader

logger = logging.getLogger(__name__)

# 거래에서 관측한 마켓 중 스캔 대상 최대 수
MAX_SCAN_MARKETS = 200


class BotOrchestrator:
    """Owns every long-lived component and the background tasks.

    Args:
        config: 봇 전체 설정.
        market_data: 읽기 게이트웨이 (테스트 주입용).
        order_gateway: 주문 게이트웨이 (테스트 주입용).
        alerter: 텔레그램 알림 (없으면 env에서 생성).
    """

    def __init__(
        self,
        config: BotConfig,
        market_data: Optional[MarketDataGateway] = None,
        order_gateway: Optional[ClobOrderGateway] = None,
        alerter: Optional[TelegramAlerter] = None,
    ):
        self.config = config
        self.market_data = market_data or MarketDataGateway(config.polymarket)
        self.order_gateway = order_gateway or ClobOrderGateway.from_config(
            config.polymarket, self.market_data, dry_run=config.dry_run,
        )
        self.alerter = alerter or TelegramAlerter.from_env()

        self.ledger = RiskLedger(config.risk)
        self.executor = OrderExecutor(self.order_gateway)
        self.detector = ArbitrageDetector(config.arbitrage, self.market_data)
        self.monitor = WalletMonitor(config.wallets, self.market_data, handler=self.dispatch)

        self.traders: dict[str, CopyTrader] = {
            wallet.address: CopyTrader(wallet, self.detector, self.ledger, self.executor)
            for wallet in config.wallets
        }
        self._wallet_locks: dict[str, asyncio.Lock] = {
            address: asyncio.Lock() for address in self.traders
        }

        self._seen_markets: dict[str, None] = {}
        self._alerted_markets: set[str] = set()
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, trade: WalletTrade) -> Optional[CopyResult]:
        """지갑별 락 아래에서 해당 CopyTrader로 전달."""
        trader = self.traders.get(trade.wallet_address)
        if trader is None:
            logger.warning("No copy trader configured for wallet %s", trade.wallet_address)
            return None

        await self._ensure_scanned(trade, trader)
        self._remember_market(trade.market_id)
        async with self._wallet_locks[trade.wallet_address]:
            result = await trader.process_trade(trade)

        if result:
            await self.alerter.alert_copy(trade, result.size_usd, result.arbitrage)
        return result

    async def _ensure_scanned(self, trade: WalletTrade, trader: CopyTrader) -> None:
        """스캔 루프가 아직 보지 못한 마켓이면 신호 게이트 전에 1회 스캔."""
        if not trader.config.require_arb_signal:
            return
        markets = trader.config.markets_filter
        if markets is not None and trade.market_id not in markets:
            return
        if not self.config.arbitrage.internal_arb_enabled:
            return
        if trade.market_id in self.markets_to_scan():
            return
        if self.detector.has_opportunity(trade.market_id):
            return
        logger.debug("[ARB] first sight of %s, scanning before copy", trade.market_id)
        await self.detector.scan_markets([trade.market_id])

    def _remember_market(self, market_id: str) -> None:
        self._seen_markets.pop(market_id, None)
        self._seen_markets[market_id] = None
        while len(self._seen_markets) > MAX_SCAN_MARKETS:
            self._seen_markets.pop(next(iter(self._seen_markets)))

    def markets_to_scan(self) -> list[str]:
        """설정된 마켓 우선, 없으면 추적 거래에서 관측된 마켓."""
        if self.config.enabled_markets:
            return list(self.config.enabled_markets)
        return list(self._seen_markets)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Validate config, restore state, launch background loops."""
        if not self.config.enabled_wallets():
            raise ConfigError(
                "No enabled wallets configured (set TARGET_WALLET_1 and friends)",
            )
        if self._running:
            return

        self._restore_state()
        self._stop_event.clear()
        self._running = True

        mode = "DRY RUN" if self.config.dry_run else "LIVE"
        logger.info(
            "Starting polycopy (%s): %d wallets, internal arb %s",
            mode, len(self.monitor.wallets),
            "enabled" if self.config.arbitrage.internal_arb_enabled else "disabled",
        )

        if not self.config.dry_run:
            self._spawn(self._prepare_venue())

        self._tasks = [
            asyncio.create_task(
                self.monitor.start_monitoring(self.config.wallet_check_interval_seconds),
                name="wallet-monitor",
            ),
            asyncio.create_task(self._arb_loop(), name="arb-scan"),
            asyncio.create_task(self._status_loop(), name="status"),
        ]

        if self.alerter.enabled:
            self._spawn(self.alerter.alert_info(
                f"🟢 polycopy started: {mode} mode\n"
                f"Wallets: {len(self.monitor.wallets)}",
            ))

    async def stop(self) -> None:
        """Signal all loops, wait for them, close sessions, persist state."""
        if not self._running:
            return
        logger.info("Stopping bot...")
        self._running = False
        self._stop_event.set()
        self.monitor.stop_monitoring()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("Task %s ended with error: %s", task.get_name(), result)
        self._tasks = []

        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)

        await self.market_data.close()
        self._persist_state()
        logger.info("Bot stopped")

    async def _prepare_venue(self) -> None:
        """자격증명 파생 + USDC allowance 갱신. 실패는 로그만."""
        await self.order_gateway.ensure_credentials()
        await self.order_gateway.refresh_allowance()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def scan_once(self) -> int:
        """차익 스캔 1회. 유효 기회 수 반환."""
        markets = self.markets_to_scan()
        if not markets or not self.config.arbitrage.internal_arb_enabled:
            return 0

        opportunities = await self.detector.scan_markets(markets)
        current = {opp.market_id for opp in opportunities}
        for opp in opportunities:
            if opp.market_id not in self._alerted_markets:
                await self.alerter.alert_opportunity(opp)
        self._alerted_markets = current
        return len(opportunities)

    async def _arb_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.scan_once()
            except Exception:
                logger.exception("[ARB] Scan cycle error")
            await self._sleep(self.config.arb_scan_interval_seconds)

    async def _status_loop(self) -> None:
        while not self._stop_event.is_set():
            await self._sleep(self.config.status_interval_seconds)
            if self._stop_event.is_set():
                break
            status = self.status()
            exposure = status["exposure"]
            logger.info(
                "Status: exposure=$%.2f (%d positions) daily_pnl=$%+.2f "
                "open_orders=%d opportunities=%d",
                exposure["total_exposure_usd"], exposure["open_positions"],
                exposure["daily_pnl_usd"], status["open_orders"],
                len(status["opportunities"]),
            )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict:
        exposure = self.ledger.get_exposure()
        return {
            "running": self._running,
            "dry_run": self.config.dry_run,
            "exposure": {
                "total_exposure_usd": exposure.total_exposure_usd,
                "market_exposures": dict(exposure.market_exposures),
                "open_positions": exposure.open_positions,
                "daily_pnl_usd": exposure.daily_pnl_usd,
                "available_exposure": exposure.available_exposure,
            },
            "open_orders": len(self.executor.get_active_orders()),
            "opportunities": [
                {
                    "market_id": opp.market_id,
                    "profit_pct": round(opp.profit_pct, 6),
                }
                for opp in self.detector.active_opportunities()
            ],
            "wallets": {
                address: {
                    "monitor": self.monitor.get_wallet_stats(address),
                    "copy": trader.stats,
                }
                for address, trader in self.traders.items()
            },
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _state_paths(self) -> Optional[tuple[Path, Path]]:
        if not self.config.state_file:
            return None
        ledger_path = Path(self.config.state_file)
        dedup_path = ledger_path.with_name(f"{ledger_path.stem}_dedup.json")
        return ledger_path, dedup_path

    def _persist_state(self) -> None:
        paths = self._state_paths()
        if paths is None:
            return
        ledger_path, dedup_path = paths
        self.ledger.save_state(ledger_path)

        state = {address: t.export_processed() for address, t in self.traders.items()}
        tmp_path = dedup_path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(state))
            tmp_path.replace(dedup_path)
            logger.info("Saved dedup keys to %s", dedup_path)
        except Exception as e:
            logger.error("Failed to save dedup keys: %s", e)
            if tmp_path.exists():
                tmp_path.unlink()

    def _restore_state(self) -> None:
        paths = self._state_paths()
        if paths is None:
            return
        ledger_path, dedup_path = paths
        self.ledger.load_state(ledger_path)

        if not dedup_path.exists():
            return
        try:
            state = json.loads(dedup_path.read_text() or "{}")
        except json.JSONDecodeError as e:
            logger.error("Corrupt dedup file %s: %s, starting fresh", dedup_path, e)
            return
        if not isinstance(state, dict):
            return
        for address, keys in state.items():
            trader = self.traders.get(address)
            if trader is not None and isinstance(keys, list):
                restored = trader.import_processed(keys)
                logger.info("Restored %d dedup keys for %s", restored, trader.config.name)
