#!/usr/bin/env python3
"""
Sell Bot - Command Line Entry Point.

============================================================
USAGE
============================================================
List BTC markets once:
    python app.py markets

Poll a market, trade immediately:
    python app.py run --market LTC --trade

Run a fixed number of polling cycles:
    python app.py run --market LTC --trade --cycles 20

Credentials come from the environment (or a .env file):
    BITTREX_API_KEY=...  BITTREX_API_SECRET=...

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import TradingException
from sell_engine.activity_log import DisplayField
from sell_engine.adapters import AiohttpTransport
from sell_engine.amount import Amount
from sell_engine.bot import BotOptions, SellBot
from sell_engine.codec import ExchangeCodec
from sell_engine.config import SellBotConfig
from sell_engine.errors import InvalidNumericFormat
from sell_engine.scheduler import BatchComplete, EndpointFailed, PollingScheduler
from sell_engine.types import EndpointKind


logger = logging.getLogger("sellbot")


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up logging on stdout.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Application logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(max(log_level, logging.WARNING))

    return logger


# ============================================================
# ARGUMENTS
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="sellbot",
        description="Single-market limit-sell bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s markets
  %(prog)s run --market LTC --trade
  %(prog)s run --market LTC --trade --order-limit 0.001 --sell-limit 0.01
        """,
    )

    parser.add_argument(
        "command",
        choices=["run", "markets"],
        help="run: poll and trade; markets: print the market list once",
    )

    # --------------------------------------------------------
    # Trading Options
    # --------------------------------------------------------
    trading_group = parser.add_argument_group("Trading Options")

    trading_group.add_argument(
        "--market",
        type=str,
        default="",
        help="Market to trade, without the BTC- prefix (e.g. LTC)",
    )

    trading_group.add_argument(
        "--trade",
        action="store_true",
        help="Start trading as soon as the bot is up",
    )

    trading_group.add_argument(
        "--order-limit",
        type=str,
        default=None,
        help="Order size in BTC before deviation",
    )

    trading_group.add_argument(
        "--deviation",
        type=int,
        default=None,
        help="Random order size deviation in percent",
    )

    trading_group.add_argument(
        "--sell-limit",
        type=str,
        default=None,
        help="Total BTC proceeds after which trading stops",
    )

    # --------------------------------------------------------
    # Polling Options
    # --------------------------------------------------------
    polling_group = parser.add_argument_group("Polling Options")

    polling_group.add_argument(
        "--refresh-delay",
        type=float,
        default=None,
        help="Seconds between the end of one cycle and the next (default: 3)",
    )

    polling_group.add_argument(
        "--cycles",
        type=int,
        default=0,
        help="Stop after this many cycles (default: 0, run forever)",
    )

    polling_group.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Exchange API root",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to a .env file (default: ./.env if present)",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate command line arguments.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if args.trade and not args.market:
        errors.append("--trade requires --market")

    if args.cycles < 0:
        errors.append("--cycles must not be negative")

    for name in ("order_limit", "sell_limit"):
        value = getattr(args, name)
        if value is None:
            continue
        try:
            Amount.parse(value)
        except InvalidNumericFormat:
            errors.append(f"--{name.replace('_', '-')} is not a decimal amount: {value}")

    return errors


def build_config(args: argparse.Namespace) -> SellBotConfig:
    """Build configuration from the environment, then apply arguments."""
    config = SellBotConfig.from_env()

    if args.base_url:
        config.exchange.base_url = args.base_url.rstrip("/")
    if args.refresh_delay is not None:
        config.scheduler.refresh_delay_seconds = args.refresh_delay
    if args.order_limit is not None:
        config.trading.order_limit = Amount.parse(args.order_limit)
    if args.deviation is not None:
        config.trading.deviation_pct = args.deviation
    if args.sell_limit is not None:
        config.trading.total_sell_limit = Amount.parse(args.sell_limit)

    # the command line always runs an enabled bot
    config.enabled = True
    return config


# ============================================================
# COMMANDS
# ============================================================

async def list_markets(config: SellBotConfig) -> int:
    """Fetch the market list once and print the BTC markets."""
    transport = AiohttpTransport(config.timeout)
    scheduler = PollingScheduler(
        ExchangeCodec(config.exchange),
        transport,
        config=config.scheduler,
    )
    failures: List[str] = []

    def on_event(event) -> None:
        if isinstance(event, EndpointFailed):
            failures.append(event.message)

    scheduler.add_listener(on_event)

    try:
        await scheduler.run_cycle()
    finally:
        await transport.close()

    if failures:
        for message in failures:
            print(f"Error: {message}", file=sys.stderr)
        return 1

    prefix = config.exchange.market_prefix
    for market in scheduler.result(EndpointKind.MARKETS):
        if market.name.startswith(prefix):
            created = market.created.strftime("%Y-%m-%d %H:%M") if market.created else "-"
            print(f"{market.name[len(prefix):]:<10} {created}  {market.url}")
    return 0


async def run_bot(config: SellBotConfig, args: argparse.Namespace) -> int:
    """Run the bot until interrupted or until --cycles have completed."""
    bot = SellBot(config)
    done = asyncio.Event()

    def on_event(event) -> None:
        if isinstance(event, BatchComplete) and args.cycles and event.cycle >= args.cycles:
            done.set()

    try:
        bot.set_options(BotOptions.from_config(config))
        bot.scheduler.add_listener(on_event)

        if args.market:
            bot.select_market(args.market)
        if args.trade:
            bot.toggle_trading()

        logger.info("Running (press Ctrl+C to stop)...")
        waiters = [asyncio.ensure_future(done.wait()), bot.loop_task]
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        waiters[0].cancel()

        limit = bot.sink.value(DisplayField.SELL_LIMIT)
        if limit is not None:
            logger.info(f"Remaining sell limit: {limit} BTC")
        return 0

    except TradingException as e:
        logger.error(e.to_log_format())
        return 1
    finally:
        await bot.cleanup()


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    try:
        config = build_config(args)
    except TradingException as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Invalid configuration: {error}")
        return 1

    try:
        if args.command == "markets":
            return await list_markets(config)
        return await run_bot(config, args)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv()

    setup_logging(args.log_level, args.log_format)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
