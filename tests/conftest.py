"""Shared test fixtures for polycopy."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from polycopy.config import ArbitrageConfig, WalletConfig
from polycopy.models.opportunity import ArbitrageOpportunity, OpportunityType
from polycopy.models.trade import WalletTrade

WALLET = "0xwhale000000000000000000000000000000000001"
MARKET = "0xmarket01"


def make_book(
    yes_asks: list[tuple[float, float]] | None,
    no_asks: list[tuple[float, float]] | None,
    question: str | None = "Will BTC close above $100k?",
    market_id: str = MARKET,
) -> dict:
    """Normalized order book with (price, size) ask levels."""
    outcomes = {}
    if yes_asks is not None:
        outcomes["YES"] = {"asks": [{"price": str(p), "size": str(s)} for p, s in yes_asks], "bids": []}
    if no_asks is not None:
        outcomes["NO"] = {"asks": [{"price": str(p), "size": str(s)} for p, s in no_asks], "bids": []}
    book = {"marketId": market_id, "outcomes": outcomes}
    if question is not None:
        book["market"] = {"id": market_id, "question": question}
    return book


def make_trade(
    market_id: str = MARKET,
    outcome: str = "YES",
    side: str = "buy",
    price: float = 0.50,
    size: float = 10_000.0,
    tx_hash: str | None = "0xtx1",
    wallet_address: str = WALLET,
    timestamp: datetime | None = None,
) -> WalletTrade:
    return WalletTrade(
        wallet_address=wallet_address,
        wallet_name="whale",
        market_id=market_id,
        market_question="Will BTC close above $100k?",
        outcome=outcome,
        side=side,
        price=price,
        size=size,
        size_usd=size * price,
        timestamp=timestamp or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
        tx_hash=tx_hash,
    )


def make_opportunity(
    market_id: str = MARKET,
    yes_price: float = 0.40,
    no_price: float = 0.55,
    fee_rate: float = 0.01,
    liquidity: float = 2000.0,
) -> ArbitrageOpportunity:
    total = yes_price + no_price
    adjusted = total * (1 + fee_rate)
    profit = (1 - adjusted) / adjusted
    return ArbitrageOpportunity(
        market_id=market_id,
        market_question="Will BTC close above $100k?",
        opportunity_type=OpportunityType.INTERNAL,
        yes_price=yes_price,
        no_price=no_price,
        total_cost=total,
        fee_adjusted_cost=adjusted,
        profit_pct=profit,
        profit_usd=profit,
        liquidity_yes=liquidity,
        liquidity_no=liquidity,
        detected_at=datetime.now(tz=timezone.utc),
    )


@pytest.fixture
def arb_config() -> ArbitrageConfig:
    return ArbitrageConfig()


@pytest.fixture
def wallet_config() -> WalletConfig:
    """Copies 10% of the wallet's notional, no arb signal required."""
    return WalletConfig(
        address=WALLET,
        name="whale",
        position_size_multiplier=0.1,
        max_position_size_usd=2000.0,
        require_arb_signal=False,
    )


@pytest.fixture
def order_gateway() -> AsyncMock:
    """Order gateway that accepts every order and cancel."""
    gateway = AsyncMock()
    counter = {"n": 0}

    async def _place(market_id, outcome, side, price, size):
        counter["n"] += 1
        return {"success": True, "orderID": f"{outcome.lower()}-{counter['n']}"}

    gateway.place_order.side_effect = _place
    gateway.cancel_order.return_value = True
    return gateway
