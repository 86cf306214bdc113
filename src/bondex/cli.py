"""
cli.py - Command line entry point

Usage:
    bondex buy MINT 0.01 --relay --dynamic-fee
    bondex sell MINT 150000 --slippage-bps 300
    bondex sell-all MINT
    bondex watch MINT --entry-price 0.0000312 --balance 150000

Settings come from --config (TOML) plus BONDEX__* environment overrides;
a .env file in the working directory is loaded first.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from . import __version__
from .config.app_config import AppConfig
from .domain.errors import ConfigurationError, SubmissionError
from .domain.models import FeeMode, TradeOptions, TradeResult


def configure_logging(level: str = "INFO", log_dir: str = "logs") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
    )
    logger.add(
        f"{log_dir}/bondex_{{time:YYYY-MM-DD}}.log",
        rotation="1 day",
        retention="30 days",
        level="DEBUG",
    )


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bondex", description="Bonding curve trade execution")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", default=None, help="Path to settings TOML")
    ap.add_argument("--log-level", default="INFO")
    ap.add_argument("--relay", action="store_true", help="Deliver as a relay bundle with a tip")
    ap.add_argument("--dynamic-fee", action="store_true", help="Estimate the priority fee from recent fees")
    ap.add_argument("--slippage-bps", type=int, default=None)

    sub = ap.add_subparsers(dest="command", required=True)

    buy = sub.add_parser("buy", help="Buy tokens with SOL")
    buy.add_argument("mint")
    buy.add_argument("amount_sol", type=_decimal)

    sell = sub.add_parser("sell", help="Sell a token amount")
    sell.add_argument("mint")
    sell.add_argument("amount_tokens", type=_decimal)

    sell_all = sub.add_parser("sell-all", help="Sell the wallet's entire balance of a token")
    sell_all.add_argument("mint")

    watch = sub.add_parser("watch", help="Run stop-loss / trailing-stop exit for a position")
    watch.add_argument("mint")
    watch.add_argument("--entry-price", type=_decimal, required=True, help="SOL per token at entry")
    watch.add_argument("--balance", type=_decimal, required=True, help="Whole tokens held")

    return ap


def trade_options(config: AppConfig, args: argparse.Namespace) -> TradeOptions:
    defaults = TradeOptions()
    return TradeOptions(
        slippage_bps=args.slippage_bps if args.slippage_bps is not None else defaults.slippage_bps,
        priority_fee_sol=config.fees.fixed_fee_sol,
        dynamic_fee=args.dynamic_fee or config.fees.mode is FeeMode.DYNAMIC,
        max_priority_fee_sol=config.fees.cap_sol,
        min_priority_fee_sol=config.fees.floor_sol,
        use_relay=args.relay,
    )


def _report(result: TradeResult) -> int:
    if result.success:
        logger.info(f"RESULT | success | mode={result.mode.value} | sig={result.signature} | attempts={result.attempts}")
        return 0
    logger.error(f"RESULT | failed | mode={result.mode.value} | attempts={result.attempts} | error={result.error}")
    return 1


async def _run(config: AppConfig, args: argparse.Namespace) -> int:
    from .engines.exit_engine import ExitConfig, ExitEngine
    from .engines.trader import PumpTrader

    trader = PumpTrader.from_config(config)
    try:
        if args.command == "watch":
            engine = ExitEngine(
                trader,
                mint=args.mint,
                entry_price=args.entry_price,
                token_balance=args.balance,
                config=ExitConfig.from_settings(config.exit),
            )
            try:
                await engine.start()
            except SubmissionError as e:
                logger.error(f"WATCH | no price feed | {e}")
                return 1
            try:
                result = await engine.wait()
            finally:
                await engine.stop()
            return _report(result) if result is not None else 1

        options = trade_options(config, args)
        if args.command == "buy":
            result = await trader.buy(args.mint, args.amount_sol, options)
        elif args.command == "sell":
            result = await trader.sell(args.mint, args.amount_tokens, options)
        else:
            result = await trader.sell_all(args.mint, options)
        return _report(result)
    finally:
        await trader.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    configure_logging(args.log_level)

    try:
        config = AppConfig.load(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration Error: {e}")
        return 1

    try:
        return asyncio.run(_run(config, args))
    except ConfigurationError as e:
        logger.error(f"Configuration Error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
