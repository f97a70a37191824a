"""polycopy: Polymarket wallet copy-trading with arbitrage gating."""

__version__ = "0.1.0"
