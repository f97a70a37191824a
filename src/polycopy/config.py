"""Bot configuration: wallets, arbitrage thresholds, risk caps, env-based config."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Venue endpoints
# ---------------------------------------------------------------------------

CLOB_API_URL = "https://clob.polymarket.com"
GAMMA_API_URL = "https://gamma-api.polymarket.com"
DATA_API_URL = "https://data-api.polymarket.com"
POLYGON_CHAIN_ID = 137

# 최대 추적 지갑 수 (TARGET_WALLET_1 .. TARGET_WALLET_N)
MAX_TARGET_WALLETS = 20

# 최소 폴링 간격 (초)
MIN_WALLET_CHECK_INTERVAL = 0.5
MIN_ARB_SCAN_INTERVAL = 0.25


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str) -> Optional[list[str]]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Section configs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalletConfig:
    """Copy policy for one tracked wallet. Immutable after load."""

    address: str
    name: str
    enabled: bool = True
    min_win_rate: float = 0.70  # stored only
    max_position_size_usd: float = 2000.0
    position_size_multiplier: float = 0.01
    markets_filter: Optional[tuple[str, ...]] = None
    require_arb_signal: bool = True

    @classmethod
    def from_env(cls, index: int) -> Optional[WalletConfig]:
        """TARGET_WALLET_<index>[_*] 환경변수에서 지갑 설정 로드. 없으면 None."""
        prefix = f"TARGET_WALLET_{index}"
        address = os.environ.get(prefix, "").strip()
        if not address:
            return None

        markets = _env_list(f"{prefix}_MARKETS")
        return cls(
            address=address,
            name=os.environ.get(f"{prefix}_NAME", f"wallet_{index}"),
            enabled=_env_bool(f"{prefix}_ENABLED", True),
            min_win_rate=_env_float(f"{prefix}_MIN_WIN_RATE", 0.70),
            max_position_size_usd=_env_float(f"{prefix}_MAX_POSITION_USD", 2000.0),
            position_size_multiplier=_env_float(f"{prefix}_MULTIPLIER", 0.01),
            markets_filter=tuple(markets) if markets else None,
            require_arb_signal=_env_bool(f"{prefix}_REQUIRE_ARB", True),
        )


@dataclass
class ArbitrageConfig:
    """Thresholds for the same-market arbitrage detector.

    Mutable so thresholds can be tuned at runtime; the detector re-validates
    stored opportunities on every read.
    """

    min_arb_profit_pct: float = 0.01
    max_arb_profit_pct: float = 0.05
    internal_arb_enabled: bool = True
    cross_platform_enabled: bool = False
    min_liquidity_usd: float = 1000.0
    fee_rate: float = 0.01
    min_margin: float = 0.01

    @classmethod
    def from_env(cls) -> ArbitrageConfig:
        return cls(
            min_arb_profit_pct=_env_float("MIN_ARB_PROFIT_PCT", 0.01),
            max_arb_profit_pct=_env_float("MAX_ARB_PROFIT_PCT", 0.05),
            internal_arb_enabled=_env_bool("INTERNAL_ARB_ENABLED", True),
            cross_platform_enabled=_env_bool("CROSS_PLATFORM_ENABLED", False),
            min_liquidity_usd=_env_float("MIN_LIQUIDITY_USD", 1000.0),
        )


@dataclass
class RiskConfig:
    """Portfolio-wide risk caps (USD)."""

    max_total_exposure_usd: float = 10_000.0
    max_position_per_market_usd: float = 2_000.0
    max_daily_loss_usd: float = 500.0
    enable_auto_hedge: bool = True

    @classmethod
    def from_env(cls) -> RiskConfig:
        return cls(
            max_total_exposure_usd=_env_float("MAX_TOTAL_EXPOSURE_USD", 10_000.0),
            max_position_per_market_usd=_env_float(
                "MAX_POSITION_PER_MARKET_USD", 2_000.0,
            ),
            max_daily_loss_usd=_env_float("MAX_DAILY_LOSS_USD", 500.0),
            enable_auto_hedge=_env_bool("ENABLE_AUTO_HEDGE", True),
        )


@dataclass
class PolymarketConfig:
    """Venue endpoints and credentials."""

    clob_api_url: str = CLOB_API_URL
    gamma_api_url: str = GAMMA_API_URL
    data_api_url: str = DATA_API_URL
    chain_id: int = POLYGON_CHAIN_ID
    private_key: Optional[str] = None
    funder: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    api_passphrase: Optional[str] = None
    signature_type: int = 2  # POLY_PROXY
    request_timeout: int = 10  # seconds

    @classmethod
    def from_env(cls) -> PolymarketConfig:
        return cls(
            private_key=os.environ.get("POLYMARKET_PRIVATE_KEY") or None,
            funder=os.environ.get("POLYMARKET_FUNDER") or None,
            api_key=os.environ.get("POLYMARKET_API_KEY") or None,
            api_secret=os.environ.get("POLYMARKET_API_SECRET") or None,
            api_passphrase=os.environ.get("POLYMARKET_API_PASSPHRASE") or None,
        )

    @property
    def has_api_creds(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)


# ---------------------------------------------------------------------------
# BotConfig: 환경변수 기반 설정
# ---------------------------------------------------------------------------


@dataclass
class BotConfig:
    """봇 전체 설정. 환경변수 또는 기본값."""

    wallets: list[WalletConfig] = field(default_factory=list)
    arbitrage: ArbitrageConfig = field(default_factory=ArbitrageConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    polymarket: PolymarketConfig = field(default_factory=PolymarketConfig)
    enabled_markets: Optional[list[str]] = None
    dry_run: bool = True
    wallet_check_interval_seconds: float = 1.0
    arb_scan_interval_seconds: float = 0.5
    status_interval_seconds: float = 60.0
    state_file: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        # 최소 폴링 간격 강제
        if self.wallet_check_interval_seconds < MIN_WALLET_CHECK_INTERVAL:
            self.wallet_check_interval_seconds = MIN_WALLET_CHECK_INTERVAL
        if self.arb_scan_interval_seconds < MIN_ARB_SCAN_INTERVAL:
            self.arb_scan_interval_seconds = MIN_ARB_SCAN_INTERVAL

    @classmethod
    def from_env(cls) -> BotConfig:
        """환경변수에서 설정 로드. 없으면 안전한 기본값."""
        wallets = []
        for index in range(1, MAX_TARGET_WALLETS + 1):
            wallet = WalletConfig.from_env(index)
            if wallet is not None:
                wallets.append(wallet)

        return cls(
            wallets=wallets,
            arbitrage=ArbitrageConfig.from_env(),
            risk=RiskConfig.from_env(),
            polymarket=PolymarketConfig.from_env(),
            enabled_markets=_env_list("POLYCOPY_MARKETS"),
            dry_run=_env_bool("POLYCOPY_DRY_RUN", True),
            wallet_check_interval_seconds=_env_float(
                "POLYCOPY_WALLET_CHECK_INTERVAL", 1.0,
            ),
            arb_scan_interval_seconds=_env_float("POLYCOPY_ARB_SCAN_INTERVAL", 0.5),
            state_file=os.environ.get("POLYCOPY_STATE_FILE") or None,
            log_level=os.environ.get("POLYCOPY_LOG_LEVEL", "INFO").upper(),
        )

    def enabled_wallets(self) -> list[WalletConfig]:
        """활성화된 지갑만 반환."""
        return [w for w in self.wallets if w.enabled]
