"""polycopy CLI: run the copy-trading bot until SIGINT/SIGTERM."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from polycopy.bot import BotOrchestrator
from polycopy.config import BotConfig
from polycopy.errors import ConfigError

logger = logging.getLogger(__name__)

BANNER = r"""
╔══════════════════════════════════════════════╗
║   polycopy: Polymarket Arb + Copy Trader     ║
╚══════════════════════════════════════════════╝
"""


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """커맨드라인 인자 파싱."""
    parser = argparse.ArgumentParser(
        prog="polycopy",
        description="Polymarket wallet copy-trading bot with arbitrage gating",
    )
    parser.add_argument(
        "--live", action="store_true", default=False,
        help="Submit real orders (default: dry run)",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Wallet poll interval in seconds (default: 1.0, min: 0.5)",
    )
    parser.add_argument(
        "--arb-interval", type=float, default=None,
        help="Arbitrage scan interval in seconds (default: 0.5, min: 0.25)",
    )
    parser.add_argument(
        "--state-file", type=str, default=None,
        help="JSON file for ledger + dedup state across restarts",
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: POLYCOPY_LOG_LEVEL or INFO)",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BotConfig:
    """환경변수 설정 위에 CLI 인자 적용."""
    config = BotConfig.from_env()
    if args.live:
        config.dry_run = False
    if args.interval is not None:
        config.wallet_check_interval_seconds = args.interval
    if args.arb_interval is not None:
        config.arb_scan_interval_seconds = args.arb_interval
    if args.state_file:
        config.state_file = args.state_file
    if args.log_level:
        config.log_level = args.log_level
    # re-apply interval floors after CLI overrides
    config.__post_init__()
    return config


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------


async def run_bot(config: BotConfig) -> None:
    """봇 시작 → 종료 시그널 대기 → graceful stop."""
    bot = BotOrchestrator(config)

    print(BANNER)
    print(f"Mode: {'DRY RUN' if config.dry_run else 'LIVE'}")
    print(f"Wallets: {len(config.enabled_wallets())}")
    print(f"Wallet interval: {config.wallet_check_interval_seconds}s")
    print(f"Arb interval: {config.arb_scan_interval_seconds}s")
    print(f"Telegram alerts: {'ON' if bot.alerter.enabled else 'OFF'}")
    print("-" * 60)

    stop_event = asyncio.Event()

    def _handle_signal():
        print("\n⚡ Shutting down gracefully...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    try:
        await bot.start()
    except ConfigError:
        await bot.market_data.close()
        raise

    try:
        await stop_event.wait()
    finally:
        await bot.stop()

    print("Goodbye! 🤙")


def cli_main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    config = build_config(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(run_bot(config))
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
