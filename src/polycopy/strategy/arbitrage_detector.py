"""Same-market arbitrage detector (YES_ask + NO_ask < $1 after fees).

A Dutch Book exists when buying one YES and one NO share costs less than the
guaranteed $1.00 payout, net of fees:

    fee_adjusted_cost = (yes_ask + no_ask) * (1 + fee_rate)
    profit_pct        = (1 - fee_adjusted_cost) / fee_adjusted_cost

Soft-signal component: malformed or partial order books yield "no
opportunity", never an error.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from polycopy.config import ArbitrageConfig
from polycopy.models.opportunity import ArbitrageOpportunity, OpportunityType

logger = logging.getLogger(__name__)


class OrderBookSource(Protocol):
    async def get_order_book(self, market_id: str) -> Optional[dict]: ...


def _price(level: dict) -> Optional[float]:
    try:
        value = float(level["price"])
    except (KeyError, TypeError, ValueError):
        return None
    return value if value > 0 else None


def _size(level: dict) -> float:
    try:
        return float(level.get("size", 0) or 0)
    except (TypeError, ValueError):
        return 0.0


def best_ask(order_book: dict, outcome: str) -> Optional[tuple[float, float]]:
    """오더북에서 outcome의 최저 ask (price, size). 없으면 None.

    asks may arrive unsorted; unparseable levels are skipped.
    """
    outcomes = order_book.get("outcomes") if isinstance(order_book, dict) else None
    if not isinstance(outcomes, dict):
        return None
    outcome_data = outcomes.get(outcome)
    if not isinstance(outcome_data, dict):
        return None
    asks = outcome_data.get("asks")
    if not isinstance(asks, list) or not asks:
        return None

    levels = []
    for level in asks:
        if not isinstance(level, dict):
            continue
        price = _price(level)
        if price is not None:
            levels.append((price, _size(level)))
    if not levels:
        return None

    levels.sort(key=lambda lv: lv[0])
    return levels[0]


def _market_question(order_book: dict, market_id: str) -> str:
    market_info = order_book.get("market") or order_book.get("marketInfo")
    if isinstance(market_info, dict) and market_info.get("question"):
        return str(market_info["question"])
    return market_id


class ArbitrageDetector:
    """Scan order books for internal arbitrage and keep the latest per market.

    Args:
        config: 수익률/유동성 임계값 (런타임 변경 가능).
        book_source: ``get_order_book(market_id)``를 제공하는 게이트웨이.
        concurrency: scan_markets 동시 요청 수.
    """

    def __init__(
        self,
        config: ArbitrageConfig,
        book_source: OrderBookSource,
        concurrency: int = 5,
    ):
        self.config = config
        self._books = book_source
        self._semaphore = asyncio.Semaphore(concurrency)
        self._active: dict[str, ArbitrageOpportunity] = {}

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def scan(self, market_id: str) -> Optional[ArbitrageOpportunity]:
        """Fetch one market's book and return a valid opportunity or None."""
        try:
            order_book = await self._books.get_order_book(market_id)
        except Exception as exc:
            logger.debug("[ARB] Order book fetch failed for %s: %s", market_id, exc)
            return None
        if not order_book:
            return None

        if self.config.internal_arb_enabled:
            opp = self.detect_internal(market_id, order_book)
            if opp is not None and self.is_valid(opp):
                return opp

        if self.config.cross_platform_enabled:
            opp = self.detect_cross_platform(market_id, order_book)
            if opp is not None and self.is_valid(opp):
                return opp

        return None

    def detect_internal(
        self, market_id: str, order_book: dict,
    ) -> Optional[ArbitrageOpportunity]:
        """YES + NO best asks → opportunity if fee-adjusted cost clears the margin."""
        yes = best_ask(order_book, "YES")
        no = best_ask(order_book, "NO")
        if yes is None or no is None:
            return None

        yes_price, yes_size = yes
        no_price, no_size = no
        total_cost = yes_price + no_price
        fee_adjusted_cost = total_cost * (1.0 + self.config.fee_rate)

        if fee_adjusted_cost >= 1.0 - self.config.min_margin:
            return None

        profit_pct = (1.0 - fee_adjusted_cost) / fee_adjusted_cost

        return ArbitrageOpportunity(
            market_id=market_id,
            market_question=_market_question(order_book, market_id),
            opportunity_type=OpportunityType.INTERNAL,
            yes_price=yes_price,
            no_price=no_price,
            total_cost=total_cost,
            fee_adjusted_cost=fee_adjusted_cost,
            profit_pct=profit_pct,
            profit_usd=profit_pct * 1.0,
            liquidity_yes=yes_size * yes_price,
            liquidity_no=no_size * no_price,
            detected_at=datetime.now(tz=timezone.utc),
        )

    def detect_cross_platform(
        self, market_id: str, order_book: dict,
    ) -> Optional[ArbitrageOpportunity]:
        """Cross-venue slot. Matching against another venue is not implemented."""
        return None

    # ------------------------------------------------------------------
    # Validity & storage
    # ------------------------------------------------------------------

    def is_valid(self, opp: ArbitrageOpportunity) -> bool:
        """수익률 범위 + 양쪽 최소 유동성 체크."""
        cfg = self.config
        if opp.profit_pct < cfg.min_arb_profit_pct:
            return False
        if opp.profit_pct > cfg.max_arb_profit_pct:
            return False
        if opp.liquidity_yes < cfg.min_liquidity_usd:
            return False
        if opp.liquidity_no < cfg.min_liquidity_usd:
            return False
        return True

    async def scan_markets(self, market_ids: list[str]) -> list[ArbitrageOpportunity]:
        """Scan a batch; last scan wins per market. Returns valid opps, best first."""
        if not market_ids:
            return []

        unique_ids = list(dict.fromkeys(market_ids))
        results = await asyncio.gather(
            *(self._scan_one(mid) for mid in unique_ids),
        )

        opportunities: list[ArbitrageOpportunity] = []
        for market_id, opp in zip(unique_ids, results):
            if opp is None:
                self._active.pop(market_id, None)
                continue
            self._active[market_id] = opp
            opportunities.append(opp)
            logger.info(
                "[ARB] %s | profit=%.2f%% yes=$%.4f no=$%.4f liq=$%.0f/$%.0f",
                opp.market_question[:60], opp.profit_pct * 100,
                opp.yes_price, opp.no_price, opp.liquidity_yes, opp.liquidity_no,
            )

        opportunities.sort(key=lambda o: o.profit_pct, reverse=True)
        return opportunities

    async def _scan_one(self, market_id: str) -> Optional[ArbitrageOpportunity]:
        async with self._semaphore:
            return await self.scan(market_id)

    def get_opportunity(self, market_id: str) -> Optional[ArbitrageOpportunity]:
        """Latest stored opportunity, only if it still passes is_valid."""
        opp = self._active.get(market_id)
        if opp is None or not self.is_valid(opp):
            return None
        return opp

    def has_opportunity(self, market_id: str) -> bool:
        return self.get_opportunity(market_id) is not None

    def active_opportunities(self) -> list[ArbitrageOpportunity]:
        """현재 유효한 기회 목록."""
        return [opp for opp in self._active.values() if self.is_valid(opp)]

    def update_config(self, **changes) -> None:
        """Adjust thresholds at runtime (e.g. ``min_liquidity_usd=500``)."""
        for key, value in changes.items():
            if not hasattr(self.config, key):
                raise AttributeError(f"Unknown arbitrage setting: {key}")
            setattr(self.config, key, value)
        logger.info("[ARB] Config updated: %s", changes)
