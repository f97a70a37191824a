"""Telegram Bot API alerts.

복사 거래, 아비트라지 기회, 에러 알림 전송.
봇 토큰 미설정 시 모든 메서드가 no-op (크래시 없음).
"""

from __future__ import annotations

import logging
import os

import aiohttp

from polycopy.models.opportunity import ArbitrageOpportunity
from polycopy.models.trade import WalletTrade

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramAlerter:
    """Telegram 알림 발송기.

    Args:
        bot_token: Telegram Bot API 토큰. None이면 비활성.
        chat_id: 메시지 대상 채팅 ID. None이면 비활성.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id

    @classmethod
    def from_env(cls) -> TelegramAlerter:
        return cls(
            bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
            chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
        )

    @property
    def enabled(self) -> bool:
        """토큰과 chat_id 모두 설정됐을 때만 활성."""
        return bool(self._bot_token and self._chat_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def alert_copy(
        self, trade: WalletTrade, size_usd: float, arbitrage: bool = False,
    ) -> None:
        """복사 거래 체결 알림."""
        await self._deliver("copy", lambda: self._format_copy(trade, size_usd, arbitrage))

    async def alert_opportunity(self, opp: ArbitrageOpportunity) -> None:
        await self._deliver("opportunity", lambda: self._format_opportunity(opp))

    async def alert_info(self, message: str) -> None:
        """상태 알림 (시작/종료 등)."""
        await self._deliver("info", lambda: f"ℹ️ {message}")

    async def alert_error(self, message: str) -> None:
        await self._deliver("error", lambda: f"🚨 <b>ERROR</b>\n{message}")

    async def _deliver(self, kind: str, render) -> None:
        """비활성이면 무시. 전송 실패는 로그만 남김."""
        if not self.enabled:
            return
        try:
            await self._send_message(render())
        except Exception as exc:
            logger.error("Failed to send %s alert: %s", kind, exc)

    # ------------------------------------------------------------------
    # Internal: HTTP
    # ------------------------------------------------------------------

    async def _send_message(self, text: str, parse_mode: str = "HTML") -> None:
        """Telegram sendMessage API 호출."""
        url = f"{TELEGRAM_API_URL}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning("Telegram API %d: %s", resp.status, body[:200])

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    def _format_copy(self, trade: WalletTrade, size_usd: float, arbitrage: bool) -> str:
        title = "Arb Pair Copied" if arbitrage else "Trade Copied"
        return (
            f"✅ <b>{title}</b>\n"
            f"{'━' * 24}\n"
            f"Wallet: {trade.wallet_name}\n"
            f"Market: {(trade.market_question or trade.market_id)[:60]}\n"
            f"Side: {trade.side.upper()} {trade.outcome} @ ${trade.price:.4f}\n"
            f"Size: ${size_usd:.2f}"
        )

    def _format_opportunity(self, opp: ArbitrageOpportunity) -> str:
        return (
            f"🔍 <b>Arb Found</b>\n"
            f"{'━' * 24}\n"
            f"Market: {opp.market_question[:60]}\n"
            f"Profit: <b>{opp.profit_pct * 100:.2f}%</b>\n"
            f"YES: ${opp.yes_price:.4f} | NO: ${opp.no_price:.4f}\n"
            f"Cost (fees): ${opp.fee_adjusted_cost:.4f}"
        )
