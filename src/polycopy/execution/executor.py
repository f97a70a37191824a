"""Order executor: tracks orders placed through the order gateway.

절대 크래시하지 않는다. 게이트웨이 실패는 None / False로 변환.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class OrderStatus(Enum):
    """주문 상태."""

    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass
class Order:
    """An order the bot has submitted."""

    order_id: str
    market_id: str
    outcome: str
    side: str
    price: float
    size: float  # shares
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
    )

    @property
    def notional_usd(self) -> float:
        return self.price * self.size


class OrderGateway(Protocol):
    async def place_order(
        self, market_id: str, outcome: str, side: str, price: float, size: float,
    ) -> Optional[dict]: ...

    async def cancel_order(self, order_id: str) -> bool: ...


def _response_order_id(response: dict) -> Optional[str]:
    for key in ("id", "orderId", "orderID"):
        value = response.get(key)
        if value:
            return str(value)
    return None


class OrderExecutor:
    """Place/cancel orders and keep the in-memory order book of the bot.

    Args:
        gateway: place_order / cancel_order를 제공하는 주문 게이트웨이.
    """

    def __init__(self, gateway: OrderGateway):
        self._gateway = gateway
        self._orders: dict[str, Order] = {}

    async def place_order(
        self,
        market_id: str,
        outcome: str,
        side: str,
        price: float,
        size: float,
    ) -> Optional[Order]:
        """Submit one order. Returns the tracked Order, or None on any failure."""
        try:
            response = await self._gateway.place_order(market_id, outcome, side, price, size)
        except Exception as exc:
            logger.error(
                "[ORDER] place failed: %s | %s %s %s @ $%.4f",
                exc, market_id, side, outcome, price,
            )
            return None

        if response is None:
            logger.warning(
                "[ORDER] rejected: %s %s %s %.2f @ $%.4f",
                market_id, side, outcome, size, price,
            )
            return None

        order_id = None
        if isinstance(response, dict):
            order_id = _response_order_id(response)
        if order_id is None:
            order_id = str(uuid.uuid4())

        order = Order(
            order_id=order_id,
            market_id=market_id,
            outcome=outcome.upper(),
            side=side.lower(),
            price=price,
            size=size,
        )
        self._orders[order_id] = order
        logger.info(
            "[ORDER] placed %s: %s %.2f %s @ $%.4f | market=%s",
            order_id, order.side.upper(), size, order.outcome, price, market_id,
        )
        return order

    async def cancel_order(self, order_id: str) -> bool:
        """Cancel a tracked order. Unknown (or already cancelled) id → False."""
        order = self._orders.get(order_id)
        if order is None:
            logger.warning("[ORDER] cancel for unknown order %s", order_id)
            return False

        try:
            cancelled = await self._gateway.cancel_order(order_id)
        except Exception as exc:
            logger.error("[ORDER] cancel failed for %s: %s", order_id, exc)
            return False

        if cancelled:
            # cancelled orders leave the table; callers keep their own reference
            order.status = OrderStatus.CANCELLED
            del self._orders[order_id]
            logger.info("[ORDER] cancelled %s", order_id)
            return True
        return False

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def get_active_orders(self) -> list[Order]:
        """PENDING 상태 주문."""
        return [o for o in self._orders.values() if o.status is OrderStatus.PENDING]

    def get_market_orders(self, market_id: str) -> list[Order]:
        return [o for o in self._orders.values() if o.market_id == market_id]
