"""Copy trader: decide whether and how much to copy one observed wallet trade.

Pipeline per trade:
    dedup → eligibility → arb signal gate → sizing → risk reserve → execute

A trade is marked processed only after a successful copy, so a failed copy
can be retried on a later observation.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from polycopy.config import WalletConfig
from polycopy.execution.arb_saga import ArbSaga
from polycopy.execution.executor import OrderExecutor
from polycopy.models.opportunity import ArbitrageOpportunity, OpportunityType
from polycopy.models.trade import WalletTrade
from polycopy.risk.ledger import RiskLedger
from polycopy.strategy.arbitrage_detector import ArbitrageDetector

logger = logging.getLogger(__name__)

# 최소 복사 사이즈 (USD). 미만이면 리스크 체크 전에 버림
MIN_COPY_SIZE_USD = 10.0
DEFAULT_DEDUP_LIMIT = 10_000

DedupKey = tuple[str, str, str, str]


class SkipReason(Enum):
    """Why a trade was not copied."""
    DUPLICATE = "duplicate"
    WALLET_DISABLED = "wallet_disabled"
    MARKET_FILTERED = "market_filtered"
    NO_ARB_SIGNAL = "no_arb_signal"
    SIZE_TOO_SMALL = "size_too_small"
    RISK_BLOCKED = "risk_blocked"
    EXECUTION_FAILED = "execution_failed"


@dataclass(frozen=True)
class CopyResult:
    """Outcome of process_trade. Truthy only when the trade was copied."""

    copied: bool
    reason: Optional[SkipReason] = None
    size_usd: float = 0.0
    arbitrage: bool = False

    def __bool__(self) -> bool:
        return self.copied


class CopyTrader:
    """One instance per tracked wallet.

    Args:
        config: 지갑별 복사 정책.
        detector: 차익 시그널 조회용.
        ledger: 공유 리스크 원장.
        executor: 공유 주문 실행기.
        dedup_limit: 처리 완료 키 최대 보관 수 (오래된 것부터 제거).
    """

    def __init__(
        self,
        config: WalletConfig,
        detector: ArbitrageDetector,
        ledger: RiskLedger,
        executor: OrderExecutor,
        dedup_limit: int = DEFAULT_DEDUP_LIMIT,
    ):
        self.config = config
        self._detector = detector
        self._ledger = ledger
        self._executor = executor
        self._dedup_limit = dedup_limit
        self._processed: OrderedDict[DedupKey, None] = OrderedDict()
        self._copied = 0
        self._copied_usd = 0.0
        self._skipped: Counter = Counter()

    # ------------------------------------------------------------------
    # Main entry
    # ------------------------------------------------------------------

    async def process_trade(self, trade: WalletTrade) -> CopyResult:
        key = trade.dedup_key
        if key in self._processed:
            return self._skip(trade, SkipReason.DUPLICATE)

        if not self.config.enabled:
            return self._skip(trade, SkipReason.WALLET_DISABLED)
        markets = self.config.markets_filter
        if markets is not None and trade.market_id not in markets:
            return self._skip(trade, SkipReason.MARKET_FILTERED)

        opportunity: Optional[ArbitrageOpportunity] = None
        if self.config.require_arb_signal:
            opportunity = self._detector.get_opportunity(trade.market_id)
            if opportunity is None:
                return self._skip(trade, SkipReason.NO_ARB_SIGNAL)

        size_usd = self.calculate_position_size(trade)
        if size_usd <= 0:
            return self._skip(trade, SkipReason.SIZE_TOO_SMALL)

        if opportunity is not None and opportunity.opportunity_type is OpportunityType.INTERNAL:
            copied = await self._copy_arbitrage(trade, opportunity, size_usd)
            arbitrage = True
        else:
            copied = await self._copy_directional(trade, size_usd)
            arbitrage = False

        if copied is None:
            return self._skip(trade, SkipReason.RISK_BLOCKED)
        if not copied:
            logger.error(
                "[COPY] Failed to execute copy of %s trade on %s",
                trade.wallet_name, trade.market_id,
            )
            return self._skip(trade, SkipReason.EXECUTION_FAILED)

        self._mark_processed(key)
        self._copied += 1
        self._copied_usd += size_usd
        logger.info(
            "[COPY] %s: %s $%.2f of %s @ $%.4f%s",
            trade.wallet_name, trade.side, size_usd, trade.outcome, trade.price,
            " (arb pair)" if arbitrage else "",
        )
        return CopyResult(copied=True, size_usd=size_usd, arbitrage=arbitrage)

    def calculate_position_size(self, trade: WalletTrade) -> float:
        """min(size_usd × multiplier, max). $10 미만이면 0."""
        scaled = trade.size_usd * self.config.position_size_multiplier
        final = min(scaled, self.config.max_position_size_usd)
        if final < MIN_COPY_SIZE_USD:
            return 0.0
        return final

    # ------------------------------------------------------------------
    # Execution paths
    # ------------------------------------------------------------------

    async def _copy_directional(self, trade: WalletTrade, size_usd: float) -> Optional[bool]:
        """Single order mirroring the wallet. None = risk blocked."""
        reservation = await self._ledger.try_open_position(
            trade.market_id, size_usd, trade.outcome, trade.side, trade.price,
        )
        if reservation is None:
            return None

        shares = size_usd / trade.price
        order = await self._executor.place_order(
            trade.market_id, trade.outcome, trade.side, trade.price, shares,
        )
        if order is None:
            await self._ledger.release_position(reservation)
            return False
        return True

    async def _copy_arbitrage(
        self, trade: WalletTrade, opp: ArbitrageOpportunity, size_usd: float,
    ) -> Optional[bool]:
        """Buy YES and NO 50/50 at the opportunity's asks. None = risk blocked."""
        half = size_usd / 2.0
        reservations = await self._ledger.try_open_positions(
            opp.market_id,
            [("YES", "buy", half, opp.yes_price), ("NO", "buy", half, opp.no_price)],
        )
        if reservations is None:
            return None

        saga = ArbSaga.from_opportunity(opp, size_usd)
        if await saga.execute(self._executor):
            logger.info(
                "[COPY] Arbitrage pair on %s: $%.2f YES + $%.2f NO for %.2f%% profit",
                opp.market_id, half, half, opp.profit_pct * 100,
            )
            return True

        for reservation in reservations:
            await self._ledger.release_position(reservation)
        return False

    # ------------------------------------------------------------------
    # Dedup memory
    # ------------------------------------------------------------------

    def is_processed(self, trade: WalletTrade) -> bool:
        return trade.dedup_key in self._processed

    def _mark_processed(self, key: DedupKey) -> None:
        self._processed[key] = None
        self._processed.move_to_end(key)
        while len(self._processed) > self._dedup_limit:
            self._processed.popitem(last=False)

    def export_processed(self) -> list[list[str]]:
        """처리 완료 키 (JSON 직렬화 가능, 오래된 순)."""
        return [list(key) for key in self._processed]

    def import_processed(self, keys: Iterable[Iterable[str]]) -> int:
        """재시작 시 처리 완료 키 복원. 복원된 개수 반환."""
        count = 0
        for raw in keys:
            if not isinstance(raw, (list, tuple)):
                continue
            key = tuple(str(part) for part in raw)
            if len(key) != 4:
                continue
            self._mark_processed(key)
            count += 1
        return count

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _skip(self, trade: WalletTrade, reason: SkipReason) -> CopyResult:
        self._skipped[reason] += 1
        log = logger.info if reason is SkipReason.RISK_BLOCKED else logger.debug
        log(
            "[COPY] Skip %s trade on %s (%s %s): %s",
            trade.wallet_name, trade.market_id, trade.side, trade.outcome, reason.value,
        )
        return CopyResult(copied=False, reason=reason)

    @property
    def stats(self) -> dict:
        return {
            "wallet": self.config.name,
            "copied": self._copied,
            "copied_usd": round(self._copied_usd, 2),
            "skipped": {reason.value: n for reason, n in self._skipped.items()},
            "processed_keys": len(self._processed),
        }
