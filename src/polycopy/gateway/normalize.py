"""Venue response normalization: order books and wallet trade records.

Polymarket의 Gamma/CLOB/Data API 응답을 코어가 소비하는 형태로 변환.
모든 함수는 순수 함수이며 예외를 던지지 않는다.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

OUTCOME_KEYS = ("YES", "NO")


def _first(record: dict, *keys: str) -> Any:
    """첫 번째로 존재하는(None 아닌) 키의 값."""
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def _nested(record: dict, parent: str, key: str) -> Any:
    inner = record.get(parent)
    if isinstance(inner, dict):
        return inner.get(key)
    return None


def _json_list(value: Any) -> Optional[list]:
    """Gamma API는 리스트를 JSON 문자열로 반환할 수 있음."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return None
        return parsed if isinstance(parsed, list) else None
    return None


# ---------------------------------------------------------------------------
# Market metadata
# ---------------------------------------------------------------------------


def extract_outcome_tokens(raw_market: dict) -> Optional[dict[str, str]]:
    """Gamma market dict → {"YES": token_id, "NO": token_id}. 파싱 실패 시 None.

    Token ids are matched to outcome labels when ``outcomes`` is present
    ("Yes"/"No"); otherwise the first id is YES and the second NO.
    """
    if not isinstance(raw_market, dict):
        return None
    token_ids = _json_list(raw_market.get("clobTokenIds"))
    if not token_ids or len(token_ids) < 2:
        return None

    outcomes = _json_list(raw_market.get("outcomes"))
    if outcomes and len(outcomes) == len(token_ids):
        mapping: dict[str, str] = {}
        for label, token in zip(outcomes, token_ids):
            key = str(label).strip().upper()
            if key in OUTCOME_KEYS:
                mapping[key] = str(token)
        if set(mapping) == set(OUTCOME_KEYS):
            return mapping

    return {"YES": str(token_ids[0]), "NO": str(token_ids[1])}


# ---------------------------------------------------------------------------
# Order books
# ---------------------------------------------------------------------------


def _levels(raw: Any) -> list[dict]:
    if not isinstance(raw, list):
        return []
    return [level for level in raw if isinstance(level, dict)]


def transform_order_book(
    market_id: str,
    books_by_outcome: dict[str, Optional[dict]],
    market: Optional[dict] = None,
) -> dict:
    """Per-outcome CLOB books → normalized book.

    Result shape::

        {"marketId": ..., "outcomes": {"YES": {"asks": [...], "bids": [...]},
                                        "NO": {...}},
         "market": {"id": ..., "question": ...}}

    Outcomes whose book could not be fetched are omitted.
    """
    transformed: dict = {"marketId": market_id, "outcomes": {}}
    for outcome in OUTCOME_KEYS:
        book = books_by_outcome.get(outcome)
        if not isinstance(book, dict):
            continue
        transformed["outcomes"][outcome] = {
            "asks": _levels(book.get("asks")),
            "bids": _levels(book.get("bids")),
        }
    if isinstance(market, dict):
        transformed["market"] = {
            "id": market.get("id", market_id),
            "question": market.get("question", ""),
        }
    return transformed


# ---------------------------------------------------------------------------
# Wallet trades
# ---------------------------------------------------------------------------


def _market_id(record: dict) -> Any:
    return (
        _first(record, "marketId", "conditionId", "condition_id")
        or _nested(record, "market", "id")
    )


def _question(record: dict) -> Any:
    return _first(record, "question", "title") or _nested(record, "market", "question")


def transform_positions_to_trades(positions: list[dict]) -> list[dict]:
    """Data API /positions → raw trade records (side는 항상 buy)."""
    trades = []
    for position in positions:
        if not isinstance(position, dict):
            continue
        trades.append({
            "marketId": _market_id(position),
            "question": _question(position),
            "outcome": position.get("outcome"),
            "side": "buy",
            "price": _first(position, "price", "avgPrice", "pricePerShare"),
            "size": _first(position, "size", "amount", "quantity"),
            "timestamp": _first(position, "createdAt", "timestamp", "openedAt"),
            "txHash": _first(position, "txHash", "transactionHash"),
            "positionId": _first(position, "id", "positionId", "asset"),
        })
    return trades


def transform_api_trades(api_trades: list[dict]) -> list[dict]:
    """Data API /activity (or trades) → raw trade records."""
    trades = []
    for trade in api_trades:
        if not isinstance(trade, dict):
            continue
        activity_type = trade.get("type")
        if activity_type is not None and str(activity_type).upper() != "TRADE":
            continue  # REDEEM, SPLIT, MERGE, REWARD ...
        side = trade.get("side")
        trades.append({
            "marketId": _market_id(trade),
            "question": _question(trade),
            "outcome": trade.get("outcome"),
            "side": str(side).lower() if side is not None else None,
            "price": _first(trade, "price", "pricePerShare"),
            "size": _first(trade, "size", "amount"),
            "timestamp": _first(trade, "timestamp", "createdAt", "time"),
            "txHash": _first(trade, "txHash", "transactionHash", "hash"),
        })
    return trades
