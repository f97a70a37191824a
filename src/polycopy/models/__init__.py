"""Data models for polycopy."""

from polycopy.models.opportunity import ArbitrageOpportunity, OpportunityType
from polycopy.models.trade import WalletTrade

__all__ = [
    "ArbitrageOpportunity",
    "OpportunityType",
    "WalletTrade",
]
