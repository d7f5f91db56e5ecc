"""
Swap Quote Engine: command-line entrypoint.

Builds one ``SwapService`` per invocation, runs a single command and prints
the result as JSON on stdout. Logs go to logs/ (see config/app.json).

Commands:
    tokens                                  merged token registry
    price SYMBOL                            USD price (0 when unknown)
    search QUERY                            token search
    quote FROM TO AMOUNT [--slippage P] [--provider auto|order_router|amm]
    swap FROM TO AMOUNT --wallet W [...]    quote, then execute (dry run by default)

Usage:
    python main.py quote ETH USDC 1.5 --slippage 0.5
    SWAP_ENGINE_DRY_RUN=false python main.py swap ICP USDC 10 --wallet <id>
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from typing import Any

from dotenv import load_dotenv

from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs
from core.swap_service import SwapService, build_swap_service
from engine_logging.logger_manager import create_module_log_directories, setup_module_logger
from shared.serialization_utils import dumps
from shared.types import QuotePreference, Token

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swap-engine", description="Multi-source swap quote engine"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tokens", help="List tokens across all providers")

    price = sub.add_parser("price", help="USD price for a token symbol")
    price.add_argument("symbol")

    search = sub.add_parser("search", help="Search tokens by symbol or name")
    search.add_argument("query")

    for name, help_text in (("quote", "Get a swap quote"), ("swap", "Quote and execute a swap")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("from_symbol")
        cmd.add_argument("to_symbol")
        cmd.add_argument("amount")
        cmd.add_argument("--slippage", default=None, help="Slippage tolerance in percent")
        cmd.add_argument(
            "--provider",
            choices=[p.value for p in QuotePreference],
            default=QuotePreference.AUTO.value,
        )
        if name == "swap":
            cmd.add_argument("--wallet", required=True)

    return parser


def _token_summary(token: Token) -> dict[str, Any]:
    return {
        "id": token.id,
        "symbol": token.symbol,
        "name": token.name,
        "priceUsd": token.price_usd,
        "change24hPct": token.change_24h_pct,
        "source": token.source,
    }


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------


async def _dispatch(service: SwapService, args: argparse.Namespace) -> tuple[int, Any]:
    if args.command == "tokens":
        tokens = await service.list_tokens()
        return 0, [_token_summary(t) for t in tokens]

    if args.command == "price":
        price = await service.get_token_price_usd(args.symbol)
        return 0, {"symbol": args.symbol.upper(), "priceUsd": price}

    if args.command == "search":
        return 0, [_token_summary(t) for t in await service.search_tokens(args.query)]

    slippage = args.slippage
    if slippage is None:
        slippage = get_config().get_execution_config().get("default_slippage_pct", "1.0")
    result = await service.try_get_quote(
        args.from_symbol,
        args.to_symbol,
        args.amount,
        slippage,
        QuotePreference(args.provider),
    )
    if result.quote is None:
        return 1, {"error": result.error, "errorKind": result.error_kind}

    if args.command == "quote":
        return 0, result.quote.to_dict()

    receipt = await service.execute_swap(result.quote, args.wallet)
    return (0 if receipt.success else 1), {"quote": result.quote.to_dict(), "receipt": receipt}


async def _run(args: argparse.Namespace) -> int:
    service = build_swap_service()
    try:
        code, payload = await _dispatch(service, args)
    finally:
        await service.close()
    print(dumps(payload, indent=2))
    return code


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> None:
    """Synchronous entry point."""
    load_dotenv()
    args = _build_parser().parse_args(argv)
    create_module_log_directories()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        print(f"Config validation failed:\n{exc}", file=sys.stderr)
        sys.exit(1)

    dry_run = get_config().get_execution_config().get("dry_run", True)
    _logger.info("Running %r (dry_run=%s)", args.command, dry_run)

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
