"""Risk ledger: open positions, exposure caps, daily PnL.

Single owner of position state. Gate order for a new position:
    1. daily PnL above -max_daily_loss_usd
    2. total exposure + size <= max_total_exposure_usd
    3. market exposure + size <= max_position_per_market_usd

The copy trader reserves through try_open_position (check + record in one
critical section) and gives the reservation back with release_position when
order placement fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from polycopy.config import RiskConfig

logger = logging.getLogger(__name__)

# 헤지 권고 임계값: |yes - no| / (yes + no)
HEDGE_IMBALANCE_THRESHOLD = 0.2


def _utc_today() -> date:
    """현재 UTC 날짜."""
    return datetime.now(tz=timezone.utc).date()


class LotSelection(Enum):
    """Which open lot close_position consumes first."""
    FIFO = "fifo"
    LIFO = "lifo"


@dataclass
class Position:
    """An open position held by the bot."""

    market_id: str
    outcome: str  # "YES" or "NO"
    side: str  # "buy" or "sell"
    size_usd: float
    entry_price: Optional[float] = None
    opened_at: datetime = field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
    )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["opened_at"] = self.opened_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Position:
        data = dict(data)
        data["opened_at"] = datetime.fromisoformat(data["opened_at"])
        return cls(**data)


@dataclass(frozen=True)
class ExposureMetrics:
    """Point-in-time exposure snapshot."""

    total_exposure_usd: float
    market_exposures: dict[str, float]
    open_positions: int
    daily_pnl_usd: float
    available_exposure: float


class RiskLedger:
    """Track positions and enforce portfolio-wide caps.

    Args:
        config: 노출/손실 한도.
        lot_selection: close_position 시 소모할 lot 순서 (기본 FIFO).
    """

    def __init__(
        self,
        config: Optional[RiskConfig] = None,
        lot_selection: LotSelection = LotSelection.FIFO,
    ):
        self.config = config or RiskConfig()
        self.lot_selection = lot_selection
        self._positions: list[Position] = []
        self._total_exposure: float = 0.0
        self._daily_pnl: float = 0.0
        self._last_reset_date: date = _utc_today()
        self._lock = asyncio.Lock()

    @property
    def positions(self) -> list[Position]:
        return list(self._positions)

    @property
    def total_exposure(self) -> float:
        return self._total_exposure

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    def market_exposure(self, market_id: str) -> float:
        return sum(p.size_usd for p in self._positions if p.market_id == market_id)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def can_open_position(self, market_id: str, size_usd: float) -> bool:
        """세 가지 한도 순서대로 체크. 첫 실패에서 중단."""
        self._maybe_reset_daily()
        cfg = self.config

        if self._daily_pnl <= -cfg.max_daily_loss_usd:
            logger.warning(
                "Daily loss limit reached: pnl=$%.2f limit=$%.2f",
                self._daily_pnl, cfg.max_daily_loss_usd,
            )
            return False

        if self._total_exposure + size_usd > cfg.max_total_exposure_usd:
            logger.warning(
                "Total exposure limit: $%.2f + $%.2f > $%.2f",
                self._total_exposure, size_usd, cfg.max_total_exposure_usd,
            )
            return False

        market_exposure = self.market_exposure(market_id)
        if market_exposure + size_usd > cfg.max_position_per_market_usd:
            logger.warning(
                "Market exposure limit %s: $%.2f + $%.2f > $%.2f",
                market_id, market_exposure, size_usd,
                cfg.max_position_per_market_usd,
            )
            return False

        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_position(
        self,
        market_id: str,
        size_usd: float,
        outcome: str,
        side: str,
        entry_price: Optional[float] = None,
    ) -> Position:
        """Append a position unconditionally (no limit check)."""
        position = Position(
            market_id=market_id,
            outcome=outcome.upper(),
            side=side.lower(),
            size_usd=size_usd,
            entry_price=entry_price,
        )
        self._positions.append(position)
        self._total_exposure += size_usd
        logger.debug(
            "Position recorded: %s %s %s $%.2f (total=$%.2f)",
            market_id, outcome, side, size_usd, self._total_exposure,
        )
        return position

    async def try_open_position(
        self,
        market_id: str,
        size_usd: float,
        outcome: str,
        side: str,
        entry_price: Optional[float] = None,
    ) -> Optional[Position]:
        """Check limits and record in one step. Returns the reservation or None."""
        reserved = await self.try_open_positions(
            market_id, [(outcome, side, size_usd, entry_price)],
        )
        return reserved[0] if reserved else None

    async def try_open_positions(
        self,
        market_id: str,
        legs: list[tuple[str, str, float, Optional[float]]],
    ) -> Optional[list[Position]]:
        """Reserve several legs of one market against their combined size.

        legs: (outcome, side, size_usd, entry_price) tuples. All or nothing.
        """
        total = sum(size for _, _, size, _ in legs)
        async with self._lock:
            if not self.can_open_position(market_id, total):
                return None
            return [
                self.record_position(market_id, size, outcome, side, price)
                for outcome, side, size, price in legs
            ]

    async def release_position(self, position: Position) -> bool:
        """Undo a reservation (order placement failed). No PnL impact."""
        async with self._lock:
            for i, held in enumerate(self._positions):
                if held is position:
                    del self._positions[i]
                    self._total_exposure -= position.size_usd
                    logger.debug(
                        "Reservation released: %s $%.2f", position.market_id, position.size_usd,
                    )
                    return True
        return False

    async def close_position(
        self,
        market_id: str,
        outcome: str,
        exit_price: Optional[float] = None,
    ) -> Optional[float]:
        """Close one matching buy lot. Returns realized PnL or None if nothing matched.

        pnl = (exit - entry) * size / entry when both prices are known, else 0.
        """
        outcome = outcome.upper()
        async with self._lock:
            self._maybe_reset_daily()
            indices = range(len(self._positions))
            if self.lot_selection is LotSelection.LIFO:
                indices = reversed(indices)

            for i in indices:
                pos = self._positions[i]
                if pos.market_id == market_id and pos.outcome == outcome and pos.side == "buy":
                    break
            else:
                return None

            del self._positions[i]
            self._total_exposure -= pos.size_usd

            if exit_price is not None and pos.entry_price and pos.entry_price > 0:
                pnl = (exit_price - pos.entry_price) * pos.size_usd / pos.entry_price
            else:
                pnl = 0.0
            self._daily_pnl += pnl

        logger.info(
            "Position closed: %s %s $%.2f pnl=$%+.2f (daily=$%+.2f)",
            market_id, outcome, pos.size_usd, pnl, self._daily_pnl,
        )
        return pnl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_exposure(self) -> ExposureMetrics:
        """현재 노출 스냅샷. UTC 날짜가 바뀌었으면 일일 PnL 리셋."""
        self._maybe_reset_daily()
        markets: dict[str, float] = {}
        for pos in self._positions:
            markets[pos.market_id] = markets.get(pos.market_id, 0.0) + pos.size_usd
        return ExposureMetrics(
            total_exposure_usd=self._total_exposure,
            market_exposures=markets,
            open_positions=len(self._positions),
            daily_pnl_usd=self._daily_pnl,
            available_exposure=max(
                0.0, self.config.max_total_exposure_usd - self._total_exposure,
            ),
        )

    def should_hedge(self, market_id: str) -> bool:
        """Advisory: YES/NO 노출 불균형이 20% 초과면 True."""
        if not self.config.enable_auto_hedge:
            return False
        legs = [p for p in self._positions if p.market_id == market_id]
        if len(legs) < 2:
            return False

        yes = sum(p.size_usd for p in legs if p.outcome == "YES")
        no = sum(p.size_usd for p in legs if p.outcome == "NO")
        total = yes + no
        if total <= 0:
            return False
        return abs(yes - no) / total > HEDGE_IMBALANCE_THRESHOLD

    def _maybe_reset_daily(self) -> None:
        """자정(UTC) 경과 시 일일 PnL 리셋."""
        today = _utc_today()
        if self._last_reset_date != today:
            logger.info("New day, resetting daily PnL (was $%+.2f)", self._daily_pnl)
            self._daily_pnl = 0.0
            self._last_reset_date = today

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_state(self, path: Path) -> None:
        """Save ledger to JSON (atomic write via temp+rename)."""
        path = Path(path)
        state = {
            "total_exposure": self._total_exposure,
            "daily_pnl": self._daily_pnl,
            "last_reset_date": self._last_reset_date.isoformat(),
            "lot_selection": self.lot_selection.value,
            "positions": [p.to_dict() for p in self._positions],
        }
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(state, indent=2))
            tmp_path.replace(path)
            logger.info("Saved ledger state to %s", path)
        except Exception as e:
            logger.error("Failed to save ledger state: %s", e)
            if tmp_path.exists():
                tmp_path.unlink()

    def load_state(self, path: Path) -> bool:
        """Load ledger from JSON. Corrupt or missing file → start fresh (False)."""
        path = Path(path)
        if not path.exists():
            logger.info("No ledger state at %s, starting fresh", path)
            return False

        try:
            content = path.read_text().strip()
            if not content:
                logger.warning("Ledger state %s is empty, starting fresh", path)
                return False

            state = json.loads(content)
            if "positions" not in state or "total_exposure" not in state:
                logger.warning("Ledger state %s missing required keys, starting fresh", path)
                return False

            positions = [Position.from_dict(p) for p in state["positions"]]
            last_reset = date.fromisoformat(
                state.get("last_reset_date") or _utc_today().isoformat(),
            )
            stored_total = float(state.get("total_exposure") or 0.0)
            daily_pnl = float(state.get("daily_pnl") or 0.0)
        except json.JSONDecodeError as e:
            logger.error("Corrupt ledger state %s: %s, starting fresh", path, e)
            return False
        except (TypeError, ValueError, KeyError) as e:
            logger.error("Invalid ledger state %s: %s, starting fresh", path, e)
            return False

        self._positions = positions
        # exposure is rebuilt from positions; the stored total is only an integrity hint
        self._total_exposure = sum(p.size_usd for p in positions)
        if abs(stored_total - self._total_exposure) > 0.01:
            logger.warning(
                "Ledger total mismatch: stored=$%.2f rebuilt=$%.2f",
                stored_total, self._total_exposure,
            )
        self._daily_pnl = daily_pnl
        self._last_reset_date = last_reset
        self._maybe_reset_daily()

        logger.info(
            "Loaded ledger: %d positions, exposure=$%.2f, daily_pnl=$%+.2f",
            len(self._positions), self._total_exposure, self._daily_pnl,
        )
        return True
