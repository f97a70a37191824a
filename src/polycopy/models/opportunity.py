"""ArbitrageOpportunity and OpportunityType data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class OpportunityType(Enum):
    """아비트라지 유형."""

    INTERNAL = "internal"              # YES_ask + NO_ask < $1.00 (same market)
    CROSS_PLATFORM = "cross-platform"  # reserved, never produced


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """감지된 아비트라지 기회. 생성 후 읽기 전용."""

    market_id: str
    market_question: str
    opportunity_type: OpportunityType
    yes_price: float
    no_price: float
    total_cost: float          # yes + no
    fee_adjusted_cost: float   # total_cost * (1 + fee_rate)
    profit_pct: float          # (1 - fee_adjusted_cost) / fee_adjusted_cost
    profit_usd: float          # profit per $1 stake
    liquidity_yes: float       # best ask size * price
    liquidity_no: float
    detected_at: datetime
    expires_at: Optional[datetime] = None

    @property
    def is_internal(self) -> bool:
        return self.opportunity_type is OpportunityType.INTERNAL
