"""Wallet monitor: polls tracked wallets and forwards novel trades.

One shared instance polls every enabled wallet per cycle. A trade is novel
when its tx hash is unseen and no history entry has the same
market/outcome/side within 5 seconds.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol

from polycopy.config import WalletConfig
from polycopy.models.trade import WalletTrade

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW_SECONDS = 5.0
HEARTBEAT_EVERY_CHECKS = 60
DEFAULT_HISTORY_LIMIT = 1000
TRADES_PER_POLL = 100
# since 필터 여유: 늦게 인덱싱된 거래도 다시 받아 dedup으로 걸러냄
SINCE_LOOKBACK_SECONDS = 30.0

TradeHandler = Callable[[WalletTrade], Awaitable[None]]


class WalletTradeSource(Protocol):
    async def get_wallet_trades(
        self, wallet_address: str, since: Optional[datetime] = None, limit: int = 100,
    ) -> list[dict]: ...


class WalletMonitor:
    """Poll wallets and hand novel trades to ``handler``.

    Args:
        wallet_configs: 추적 지갑 설정 (비활성 지갑은 무시).
        gateway: get_wallet_trades 제공자.
        handler: 새 거래마다 await되는 코루틴 (보통 BotOrchestrator.dispatch).
        history_limit: 지갑별 거래 이력 최대 보관 수.
    """

    def __init__(
        self,
        wallet_configs: list[WalletConfig],
        gateway: WalletTradeSource,
        handler: Optional[TradeHandler] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.wallets: dict[str, WalletConfig] = {
            wc.address: wc for wc in wallet_configs if wc.enabled
        }
        self._gateway = gateway
        self._handler = handler
        self._history_limit = history_limit
        self.trade_history: dict[str, deque[WalletTrade]] = {
            address: deque(maxlen=history_limit) for address in self.wallets
        }
        self.last_trade_timestamps: dict[str, datetime] = {}
        self._known_positions: dict[str, OrderedDict[str, None]] = {
            address: OrderedDict() for address in self.wallets
        }
        self._check_counts: dict[str, int] = {address: 0 for address in self.wallets}
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def start_monitoring(self, interval: float = 1.0) -> None:
        """stop_monitoring() 호출 전까지 주기적으로 전체 지갑 폴링."""
        self._running = True
        self._stop_event.clear()
        logger.info("Starting wallet monitoring for %d wallets", len(self.wallets))

        while self._running:
            await self.check_all_wallets()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Wallet monitoring stopped")

    def stop_monitoring(self) -> None:
        """Cooperative stop; the current cycle finishes first."""
        self._running = False
        self._stop_event.set()

    async def check_all_wallets(self) -> int:
        """모든 지갑 동시 폴링. 전달된 새 거래 수 반환.

        Wallets run concurrently; trades within one wallet stay in order.
        """
        counts = await asyncio.gather(
            *(self._check_guarded(address) for address in list(self.wallets)),
        )
        return sum(counts)

    async def _check_guarded(self, wallet_address: str) -> int:
        try:
            return await self.check_wallet(wallet_address)
        except Exception:
            logger.exception("Error checking wallet %s", wallet_address)
            return 0

    async def check_wallet(self, wallet_address: str) -> int:
        config = self.wallets.get(wallet_address)
        if config is None:
            return 0

        since = self.last_trade_timestamps.get(wallet_address)
        query_since = since - timedelta(seconds=SINCE_LOOKBACK_SECONDS) if since else None
        records = await self._gateway.get_wallet_trades(
            wallet_address, since=query_since, limit=TRADES_PER_POLL,
        )

        self._check_counts[wallet_address] += 1
        check_count = self._check_counts[wallet_address]
        if check_count % HEARTBEAT_EVERY_CHECKS == 0:
            logger.info(
                "[%s] Monitoring active - check #%d, %d records, last trade: %s",
                config.name, check_count, len(records),
                since.isoformat() if since else "none",
            )

        forwarded = 0
        for record in records:
            trade = WalletTrade.from_raw(record, config.address, config.name)
            if trade is None:
                continue

            if trade.position_id and self._seen_position(wallet_address, trade.position_id):
                continue

            if not self.is_new_trade(trade, wallet_address):
                continue

            logger.info(
                "New trade from %s: %s $%.2f of %s @ $%.4f in %s",
                config.name, trade.side, trade.size_usd, trade.outcome,
                trade.price, trade.market_question or trade.market_id,
            )
            self.trade_history[wallet_address].append(trade)
            if trade.timestamp_observed:
                last = self.last_trade_timestamps.get(wallet_address)
                if last is None or trade.timestamp > last:
                    self.last_trade_timestamps[wallet_address] = trade.timestamp

            forwarded += 1
            if self._handler is not None:
                try:
                    await self._handler(trade)
                except Exception:
                    logger.exception("Trade handler failed for %s", config.name)

        return forwarded

    # ------------------------------------------------------------------
    # Dedup
    # ------------------------------------------------------------------

    def _seen_position(self, wallet_address: str, position_id: str) -> bool:
        """position id 최초 관측이면 기록 후 False."""
        known = self._known_positions[wallet_address]
        if position_id in known:
            return True
        known[position_id] = None
        while len(known) > self._history_limit:
            known.popitem(last=False)
        return False

    def is_new_trade(self, trade: WalletTrade, wallet_address: str) -> bool:
        """tx hash 일치 또는 5초 이내 동일 market/outcome/side면 중복."""
        for existing in self.trade_history.get(wallet_address, ()):
            if trade.tx_hash and existing.tx_hash and trade.tx_hash == existing.tx_hash:
                return False
            if (
                existing.market_id == trade.market_id
                and existing.outcome == trade.outcome
                and existing.side == trade.side
                and abs((existing.timestamp - trade.timestamp).total_seconds())
                < DUPLICATE_WINDOW_SECONDS
            ):
                return False
        return True

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_wallet_stats(self, wallet_address: str) -> Optional[dict]:
        """지갑별 관측 거래 통계. 추적하지 않는 지갑이면 None."""
        history = self.trade_history.get(wallet_address)
        if history is None:
            return None

        last = self.last_trade_timestamps.get(wallet_address)
        return {
            "name": self.wallets[wallet_address].name,
            "total_trades": len(history),
            "total_volume_usd": round(sum(t.size_usd for t in history), 2),
            "buy_trades": sum(1 for t in history if t.side == "buy"),
            "sell_trades": sum(1 for t in history if t.side == "sell"),
            "last_trade": last.isoformat() if last else None,
            "checks": self._check_counts.get(wallet_address, 0),
        }

    def get_recent_trades(self, wallet_address: str, limit: int = 10) -> list[WalletTrade]:
        history = self.trade_history.get(wallet_address)
        if not history:
            return []
        return list(history)[-limit:]
