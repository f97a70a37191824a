"""WalletTrade: normalized observation of a tracked wallet's trade."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

VALID_OUTCOMES = ("YES", "NO")
VALID_SIDES = ("buy", "sell")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """RFC-3339 문자열 또는 unix epoch(초/밀리초) → aware UTC datetime. 실패 시 None."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e12:  # milliseconds
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class WalletTrade:
    """A tracked wallet's on-venue trade. Never mutated after creation."""

    wallet_address: str
    wallet_name: str
    market_id: str
    market_question: str
    outcome: str      # "YES" | "NO"
    side: str         # "buy" | "sell"
    price: float
    size: float       # shares
    size_usd: float   # size * price
    timestamp: datetime
    tx_hash: Optional[str] = None
    position_id: Optional[str] = None
    # False when the record had no timestamp and observation time was used
    timestamp_observed: bool = True

    @classmethod
    def from_raw(
        cls,
        record: dict,
        wallet_address: str,
        wallet_name: str,
    ) -> Optional[WalletTrade]:
        """Raw trade record → WalletTrade. 필수 필드가 없거나 유효하지 않으면 None.

        Rejected: missing market id, outcome not YES/NO, side not buy/sell,
        price <= 0. A missing timestamp falls back to the observation time.
        """
        if not isinstance(record, dict):
            return None

        market_id = _to_str(record.get("marketId"))
        if market_id is None:
            return None

        outcome = (_to_str(record.get("outcome")) or "").upper()
        side = (_to_str(record.get("side")) or "").lower()
        price = _to_float(record.get("price"))
        if outcome not in VALID_OUTCOMES or side not in VALID_SIDES:
            return None
        if price is None or price <= 0:
            return None

        size = _to_float(record.get("size")) or 0.0
        timestamp = parse_timestamp(record.get("timestamp"))
        observed = timestamp is not None
        if not observed:
            timestamp = datetime.now(tz=timezone.utc)

        return cls(
            wallet_address=wallet_address,
            wallet_name=wallet_name,
            market_id=market_id,
            market_question=_to_str(record.get("question")) or "",
            outcome=outcome,
            side=side,
            price=price,
            size=size,
            size_usd=size * price,
            timestamp=timestamp,
            tx_hash=_to_str(record.get("txHash")),
            position_id=_to_str(record.get("positionId")),
            timestamp_observed=observed,
        )

    @property
    def dedup_key(self) -> tuple[str, str, str, str]:
        """(tx_hash, market_id, outcome, side): copy trader 중복 제거 키."""
        return (self.tx_hash or "", self.market_id, self.outcome, self.side)
