"""Market data gateway: Gamma, CLOB and Data API reads with retry.

Usage:
    async with MarketDataGateway() as gateway:
        book = await gateway.get_order_book("0xabc...")
        trades = await gateway.get_wallet_trades("0xwallet", since=None, limit=100)

절대 크래시하지 않는다. 모든 HTTP 에러는 None / 빈 리스트로 변환.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import aiohttp

from polycopy.config import PolymarketConfig
from polycopy.gateway.normalize import (
    extract_outcome_tokens,
    transform_api_trades,
    transform_order_book,
    transform_positions_to_trades,
)
from polycopy.models.trade import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 1.0  # seconds, doubled per 429


@dataclass(frozen=True)
class MarketTokens:
    """CLOB token ids for a binary market."""

    market_id: str
    question: str
    yes_token_id: str
    no_token_id: str

    def token_for(self, outcome: str) -> str:
        return self.yes_token_id if outcome.upper() == "YES" else self.no_token_id


def _extract_list(data) -> list[dict]:
    """{"data": [...]} 또는 [...] 응답에서 리스트 추출."""
    if isinstance(data, dict):
        inner = data.get("data")
        return inner if isinstance(inner, list) else []
    if isinstance(data, list):
        return data
    return []


class MarketDataGateway:
    """Async read client for Polymarket's data services.

    Args:
        config: 엔드포인트 / 타임아웃 설정.
        max_retries: 요청당 최대 시도 횟수.
        backoff_base: 429 백오프 시작 대기 (초).
    """

    def __init__(
        self,
        config: Optional[PolymarketConfig] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
    ):
        self.config = config or PolymarketConfig()
        self.timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._session: Optional[aiohttp.ClientSession] = None
        self._tokens: dict[str, MarketTokens] = {}

    async def open(self) -> None:
        """Open aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> MarketDataGateway:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Markets (Gamma)
    # ------------------------------------------------------------------

    async def get_market(self, market_id: str) -> Optional[dict]:
        """Market lookup by Gamma id or condition id (0x...). 실패 시 None."""
        if market_id.startswith("0x"):
            url = f"{self.config.gamma_api_url}/markets"
            markets = _extract_list(
                await self._get_json(url, {"condition_ids": market_id}),
            )
            return markets[0] if markets else None

        data = await self._get_json(f"{self.config.gamma_api_url}/markets/{market_id}", {})
        if isinstance(data, dict):
            inner = data.get("data")
            return inner if isinstance(inner, dict) else data
        return None

    async def get_market_tokens(self, market_id: str) -> Optional[MarketTokens]:
        """마켓의 YES/NO CLOB token id 조회 (캐시)."""
        cached = self._tokens.get(market_id)
        if cached is not None:
            return cached

        market = await self.get_market(market_id)
        if market is None:
            logger.debug("Market %s not found", market_id)
            return None
        mapping = extract_outcome_tokens(market)
        if mapping is None:
            logger.debug("Market %s has no YES/NO token ids", market_id)
            return None

        tokens = MarketTokens(
            market_id=market_id,
            question=str(market.get("question", "")),
            yes_token_id=mapping["YES"],
            no_token_id=mapping["NO"],
        )
        self._tokens[market_id] = tokens
        return tokens

    # ------------------------------------------------------------------
    # Order books (CLOB)
    # ------------------------------------------------------------------

    async def get_order_book(self, market_id: str) -> Optional[dict]:
        """Normalized YES/NO order book for a market. 실패 시 None."""
        tokens = await self.get_market_tokens(market_id)
        if tokens is None:
            return None

        url = f"{self.config.clob_api_url}/book"
        yes_book, no_book = await asyncio.gather(
            self._get_json(url, {"token_id": tokens.yes_token_id}),
            self._get_json(url, {"token_id": tokens.no_token_id}),
        )
        if yes_book is None and no_book is None:
            return None

        return transform_order_book(
            market_id,
            {"YES": yes_book, "NO": no_book},
            market={"id": market_id, "question": tokens.question},
        )

    # ------------------------------------------------------------------
    # Wallet activity (Data API)
    # ------------------------------------------------------------------

    async def get_wallet_positions(self, wallet_address: str) -> list[dict]:
        """GET /positions?user=: 지갑 포지션. 실패 시 빈 리스트."""
        url = f"{self.config.data_api_url}/positions"
        params = {"user": wallet_address.lower()}
        return _extract_list(await self._get_json(url, params))

    async def get_wallet_activity(self, wallet_address: str, limit: int = 100) -> list[dict]:
        """GET /activity?user=: 지갑 거래 활동. 실패 시 빈 리스트."""
        url = f"{self.config.data_api_url}/activity"
        params = {
            "user": wallet_address.lower(),
            "limit": str(limit),
            "type": "TRADE",
        }
        return _extract_list(await self._get_json(url, params))

    async def get_wallet_trades(
        self,
        wallet_address: str,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[dict]:
        """Raw trade records for a wallet, newest window first.

        Positions are tried first, then the activity feed. The venue has no
        true "since" filter, so records older than ``since`` are dropped
        locally; records without a timestamp are kept for the caller's dedup.
        """
        positions = await self.get_wallet_positions(wallet_address)
        if positions:
            records = transform_positions_to_trades(positions[:limit])
        else:
            activity = await self.get_wallet_activity(wallet_address, limit=limit)
            records = transform_api_trades(activity)

        if since is None:
            return records

        kept = []
        for record in records:
            ts = parse_timestamp(record.get("timestamp"))
            if ts is None or ts >= since:
                kept.append(record)
        return kept

    # ------------------------------------------------------------------
    # HTTP helper with retry
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: dict):
        """GET → parsed JSON. 429시 지수 백오프. 400/404 즉시 포기. 실패 시 None."""
        await self.open()
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self._session.get(url, params=params) as resp:
                    if resp.status == 200:
                        return await resp.json(content_type=None)
                    if resp.status == 429:
                        wait = self.backoff_base * (2 ** (attempt - 1))
                        logger.warning(
                            "API 429 rate limit %s (attempt %d/%d), backing off %.1fs",
                            url, attempt, self.max_retries, wait,
                        )
                        await asyncio.sleep(wait)
                        continue
                    if resp.status in (400, 404):
                        # auth-gated or unknown resource: retrying won't help
                        logger.debug("API %s returned %d", url, resp.status)
                        return None
                    logger.warning(
                        "API %s returned %d (attempt %d/%d)",
                        url, resp.status, attempt, self.max_retries,
                    )
            except Exception as exc:
                logger.warning(
                    "API %s error (attempt %d/%d): %s",
                    url, attempt, self.max_retries, exc,
                )

            if attempt < self.max_retries:
                await asyncio.sleep(0.1 * self.backoff_base * (2 ** (attempt - 1)))

        return None
