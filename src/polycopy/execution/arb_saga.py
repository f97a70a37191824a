"""Two-leg arbitrage saga.

Both legs (buy YES + buy NO) are placed; if only one is accepted, the
accepted leg is cancelled so the bot is never left holding one side.

State Machine:
    INIT → SUBMITTED → BOTH_PLACED → COMMITTED
                    → PARTIAL_YES → COMPENSATED | COMPENSATION_FAILED
                    → PARTIAL_NO  → COMPENSATED | COMPENSATION_FAILED
                    → NONE_PLACED (terminal)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from polycopy.execution.executor import Order, OrderExecutor
from polycopy.models.opportunity import ArbitrageOpportunity

logger = logging.getLogger(__name__)


class SagaState(Enum):
    """Two-leg saga states."""
    INIT = auto()
    SUBMITTED = auto()
    BOTH_PLACED = auto()
    PARTIAL_YES = auto()           # YES placed, NO not
    PARTIAL_NO = auto()            # NO placed, YES not
    NONE_PLACED = auto()           # Neither placed (terminal)
    COMPENSATED = auto()           # Orphan leg cancelled (terminal)
    COMPENSATION_FAILED = auto()   # Orphan leg still live (terminal)
    COMMITTED = auto()             # Both legs live (terminal)


@dataclass
class SagaLeg:
    """One leg of the saga."""
    outcome: str
    price: float = 0.0
    shares: float = 0.0
    size_usd: float = 0.0
    order: Optional[Order] = None
    done: bool = False

    @property
    def placed(self) -> bool:
        return self.order is not None


@dataclass
class ArbSaga:
    """Buy YES and NO of one market as a unit.

    Usage:
        saga = ArbSaga.from_opportunity(opp, size_usd=200.0)
        if await saga.execute(executor):
            ...  # record both legs
    """

    market_id: str
    saga_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: SagaState = SagaState.INIT
    yes_leg: SagaLeg = field(default_factory=lambda: SagaLeg("YES"))
    no_leg: SagaLeg = field(default_factory=lambda: SagaLeg("NO"))
    compensation_attempts: int = 0

    @classmethod
    def from_opportunity(cls, opp: ArbitrageOpportunity, size_usd: float) -> ArbSaga:
        """50/50 split at the opportunity's asks."""
        saga = cls(market_id=opp.market_id)
        saga.submit(opp.yes_price, opp.no_price, size_usd)
        return saga

    def submit(self, yes_price: float, no_price: float, size_usd: float) -> None:
        """Size both legs. shares = leg_usd / price."""
        if self.state != SagaState.INIT:
            raise ValueError(f"Cannot submit from state {self.state}")
        if yes_price <= 0 or no_price <= 0:
            raise ValueError("Leg prices must be positive")

        leg_usd = size_usd / 2.0
        self.yes_leg = SagaLeg("YES", price=yes_price, shares=leg_usd / yes_price, size_usd=leg_usd)
        self.no_leg = SagaLeg("NO", price=no_price, shares=leg_usd / no_price, size_usd=leg_usd)
        self.state = SagaState.SUBMITTED

        logger.info(
            "[SAGA] id=%s market=%s submit YES@$%.4f NO@$%.4f leg=$%.2f",
            self.saga_id, self.market_id, yes_price, no_price, leg_usd,
        )

    def leg(self, outcome: str) -> SagaLeg:
        return self.yes_leg if outcome.upper() == "YES" else self.no_leg

    def record_leg(self, outcome: str, order: Optional[Order]) -> None:
        """Record placement result for one leg (None = rejected)."""
        leg = self.leg(outcome)
        leg.order = order
        leg.done = True
        self._update_state()

        logger.info(
            "[SAGA] id=%s %s placed=%s state=%s",
            self.saga_id, leg.outcome, leg.placed, self.state.name,
        )

    def _update_state(self) -> None:
        if not (self.yes_leg.done and self.no_leg.done):
            return

        yes_ok = self.yes_leg.placed
        no_ok = self.no_leg.placed
        if yes_ok and no_ok:
            self.state = SagaState.BOTH_PLACED
        elif yes_ok:
            self.state = SagaState.PARTIAL_YES
        elif no_ok:
            self.state = SagaState.PARTIAL_NO
        else:
            self.state = SagaState.NONE_PLACED

    def needs_compensation(self) -> Optional[str]:
        """Leg to cancel ("YES" / "NO") or None."""
        if self.state == SagaState.PARTIAL_YES:
            return "YES"
        if self.state == SagaState.PARTIAL_NO:
            return "NO"
        return None

    def record_compensation(self, outcome: str, success: bool) -> None:
        self.compensation_attempts += 1
        self.state = SagaState.COMPENSATED if success else SagaState.COMPENSATION_FAILED
        log = logger.info if success else logger.error
        log(
            "[SAGA] id=%s compensate %s success=%s state=%s",
            self.saga_id, outcome, success, self.state.name,
        )

    def commit(self) -> None:
        if self.state != SagaState.BOTH_PLACED:
            raise ValueError(f"Cannot commit from state {self.state}")
        self.state = SagaState.COMMITTED
        logger.info("[SAGA] id=%s market=%s committed", self.saga_id, self.market_id)

    def is_terminal(self) -> bool:
        return self.state in (
            SagaState.COMMITTED,
            SagaState.COMPENSATED,
            SagaState.COMPENSATION_FAILED,
            SagaState.NONE_PLACED,
        )

    async def execute(self, executor: OrderExecutor) -> bool:
        """Place both legs, cancel an orphan leg on partial failure.

        Returns True only when both legs are live (COMMITTED).
        """
        if self.state != SagaState.SUBMITTED:
            raise ValueError(f"Cannot execute from state {self.state}")

        yes_order, no_order = await asyncio.gather(
            executor.place_order(
                self.market_id, "YES", "buy", self.yes_leg.price, self.yes_leg.shares,
            ),
            executor.place_order(
                self.market_id, "NO", "buy", self.no_leg.price, self.no_leg.shares,
            ),
        )
        self.record_leg("YES", yes_order)
        self.record_leg("NO", no_order)

        orphan = self.needs_compensation()
        if orphan is not None:
            order = self.leg(orphan).order
            cancelled = await executor.cancel_order(order.order_id)
            self.record_compensation(orphan, cancelled)
            return False

        if self.state == SagaState.BOTH_PLACED:
            self.commit()
            return True
        return False
