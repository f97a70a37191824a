"""CLOB order gateway: order submission, cancellation, credentials, allowances.

dry_run=True: 시뮬레이션 (CLOB 미호출).
dry_run=False: py_clob_client로 실제 오더 제출.

절대 크래시하지 않는다. 모든 에러를 graceful하게 처리.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    OrderType,
)

from polycopy.config import PolymarketConfig
from polycopy.gateway.market_data import MarketDataGateway

logger = logging.getLogger(__name__)


class ClobOrderGateway:
    """Place and cancel limit orders on the Polymarket CLOB.

    Args:
        token_source: 마켓 id → YES/NO token id 조회용 게이트웨이.
        dry_run: True면 CLOB 호출 없이 성공 응답을 시뮬레이션.
        clob_client: 미리 구성된 ClobClient (테스트 주입용).
    """

    def __init__(
        self,
        token_source: MarketDataGateway,
        dry_run: bool = True,
        clob_client: Optional[ClobClient] = None,
    ):
        self.dry_run = dry_run
        self._tokens = token_source
        self._client = clob_client
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: PolymarketConfig,
        token_source: MarketDataGateway,
        dry_run: bool = True,
    ) -> ClobOrderGateway:
        """PolymarketConfig로 ClobClient 초기화 후 게이트웨이 생성."""
        if dry_run or not config.private_key:
            if not dry_run:
                logger.error("Live mode requested but POLYMARKET_PRIVATE_KEY is not set")
            return cls(token_source, dry_run=dry_run)

        client = ClobClient(
            host=config.clob_api_url,
            chain_id=config.chain_id,
            key=config.private_key,
            signature_type=config.signature_type,
            funder=config.funder,
        )
        if config.has_api_creds:
            client.set_api_creds(ApiCreds(
                api_key=config.api_key,
                api_secret=config.api_secret,
                api_passphrase=config.api_passphrase,
            ))
        return cls(token_source, dry_run=False, clob_client=client)

    # ------------------------------------------------------------------
    # Startup side effects (fire-and-forget)
    # ------------------------------------------------------------------

    async def ensure_credentials(self) -> bool:
        """L2 API 자격증명 생성 또는 파생. 실패해도 복사 거래를 막지 않음."""
        if self.dry_run or self._client is None:
            return False
        try:
            creds = await asyncio.to_thread(self._client.create_or_derive_api_creds)
            self._client.set_api_creds(creds)
            logger.info("CLOB API credentials ready")
            return True
        except Exception as exc:
            logger.error("Failed to derive CLOB API credentials: %s", exc)
            return False

    async def refresh_allowance(self, token_id: Optional[str] = None) -> bool:
        """잔고/승인 상태 갱신 (COLLATERAL 또는 conditional token). 실패는 로그만."""
        if self.dry_run or self._client is None:
            return False
        if token_id:
            params = BalanceAllowanceParams(
                asset_type=AssetType.CONDITIONAL, token_id=token_id,
            )
        else:
            params = BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)
        try:
            await asyncio.to_thread(self._client.update_balance_allowance, params)
            logger.debug("Allowance refreshed for %s", token_id or "COLLATERAL")
            return True
        except Exception as exc:
            logger.warning("Allowance refresh failed for %s: %s", token_id or "COLLATERAL", exc)
            return False

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def place_order(
        self,
        market_id: str,
        outcome: str,
        side: str,
        price: float,
        size: float,
    ) -> Optional[dict]:
        """Submit a GTC limit order. Returns the venue response or None on failure."""
        if self.dry_run:
            logger.info(
                "[DRY RUN] Would submit: %s %.2f %s @ $%.4f | market=%s",
                side.upper(), size, outcome, price, market_id,
            )
            return {"dry_run": True}

        if self._client is None:
            logger.error("[ORDER] No CLOB client configured")
            return None

        tokens = await self._tokens.get_market_tokens(market_id)
        if tokens is None:
            logger.error("[ORDER] Cannot resolve token ids for market %s", market_id)
            return None
        token_id = tokens.token_for(outcome)

        try:
            order_args = OrderArgs(
                token_id=token_id,
                price=round(price, 4),
                size=round(size, 2),
                side=side.upper(),
            )
            signed_order = await asyncio.to_thread(self._client.create_order, order_args)
            response = await asyncio.to_thread(
                self._client.post_order, signed_order, OrderType.GTC,
            )
        except Exception as exc:
            logger.error(
                "[ORDER] Submit failed: %s | market=%s %s %s @ $%.4f",
                exc, market_id, side, outcome, price,
            )
            return None

        if not isinstance(response, dict):
            logger.error("[ORDER] Invalid response type: %s", type(response).__name__)
            return None
        if response.get("success") is False:
            logger.error("[ORDER] Rejected by venue: %s", response.get("errorMsg", response))
            return None

        if side.lower() == "buy":
            self._spawn(self.refresh_allowance(token_id))
        return response

    async def cancel_order(self, order_id: str) -> bool:
        """Cancel an open order. True only when the venue confirms."""
        if self.dry_run:
            logger.info("[DRY RUN] Would cancel order %s", order_id)
            return True
        if self._client is None:
            return False
        try:
            response = await asyncio.to_thread(self._client.cancel, order_id)
        except Exception as exc:
            logger.error("[CANCEL] Order %s failed: %s", order_id, exc)
            return False

        if isinstance(response, dict):
            if order_id in (response.get("canceled") or []):
                return True
            not_canceled = response.get("not_canceled") or {}
            if order_id in not_canceled:
                logger.warning("[CANCEL] Venue refused %s: %s", order_id, not_canceled[order_id])
            return False
        return bool(response)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
