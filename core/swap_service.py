"""
Public facade of the swap quote engine.

``SwapService`` owns one instance of every component and is the only
surface callers use. Engine failures never escape it as exceptions: quote
failures come back as ``None`` or a typed ``QuoteResult``, execution
failures on the ``SwapReceipt``.

Usage:
    service = build_swap_service()
    try:
        quote = await service.get_quote("ETH", "USDC", Decimal("1"))
        if quote is not None:
            receipt = await service.execute_swap(quote, wallet)
    finally:
        await service.close()
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import aiohttp

from config.loader import get_config
from core.cache import TTLCache
from core.quote_aggregator import QuoteAggregator
from core.token_registry import TokenRegistry, order_by_priority
from engine_logging.logger_manager import setup_module_logger
from execution.swap_executor import DryRunRelay, SwapExecutor, TransactionRelay
from providers.liquidity import LiquidityProvider
from providers.market_data import MarketDataProvider
from providers.order_router import OrderRouterProvider
from shared.constants import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_DRY_RUN,
    DEFAULT_SLIPPAGE_PCT,
    ZERO,
)
from shared.errors import SwapEngineError
from shared.types import (
    QuotePreference,
    QuoteResult,
    SwapQuote,
    SwapReceipt,
    SwapRecord,
    Token,
)


class SwapService:
    """Token discovery, quoting, pricing and execution behind one object."""

    def __init__(
        self,
        market_data: MarketDataProvider,
        liquidity: LiquidityProvider,
        order_router: OrderRouterProvider,
        registry: TokenRegistry,
        aggregator: QuoteAggregator,
        executor: SwapExecutor,
    ) -> None:
        self._market_data = market_data
        self._liquidity = liquidity
        self._order_router = order_router
        self._registry = registry
        self._aggregator = aggregator
        self._executor = executor
        self._logger = setup_module_logger(
            "swap_service", "swap_service.log", module_folder="Swap_Service_Logs"
        )

    # ------------------------------------------------------------------
    # Tokens and prices
    # ------------------------------------------------------------------

    async def list_tokens(self) -> list[Token]:
        """Fetch every adapter's list concurrently and rebuild the registry."""
        market, router, pools = await asyncio.gather(
            self._market_data.list_tokens(),
            self._order_router.list_tokens(),
            self._liquidity.list_tokens(),
        )
        return self._registry.rebuild(
            order_by_priority(
                {"market_data": market, "order_router": router, "liquidity": pools}
            )
        )

    async def get_token_price_usd(self, symbol: str) -> Decimal:
        """USD price for ``symbol``; ``0`` when no source knows it."""
        token = self._registry.lookup(symbol)
        if token is not None and token.price_usd > 0:
            return token.price_usd
        try:
            return await self._market_data.price(symbol)
        except SwapEngineError as exc:
            self._logger.warning("Price lookup for %s failed: %s", symbol, exc)
            return ZERO

    async def search_tokens(self, query: str) -> list[Token]:
        if self._registry.is_empty:
            await self.list_tokens()
        matches = self._registry.search(query)
        if matches:
            return matches
        return await self._market_data.search_tokens(query)

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def get_quote(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal | int | str,
        slippage_pct: Decimal | int | str = DEFAULT_SLIPPAGE_PCT,
        preference: QuotePreference = QuotePreference.AUTO,
    ) -> SwapQuote | None:
        """Best available quote, or None when none could be produced."""
        result = await self.try_get_quote(from_symbol, to_symbol, amount, slippage_pct, preference)
        return result.quote

    async def try_get_quote(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal | int | str,
        slippage_pct: Decimal | int | str = DEFAULT_SLIPPAGE_PCT,
        preference: QuotePreference = QuotePreference.AUTO,
    ) -> QuoteResult:
        """Like ``get_quote`` but reports why no quote was produced."""
        if self._registry.is_empty:
            # Registry prices weight pool selection
            await self.list_tokens()
        try:
            quote = await self._aggregator.get_quote(
                from_symbol, to_symbol, amount, slippage_pct, preference
            )
        except SwapEngineError as exc:
            self._logger.warning(
                "Quote %s -> %s failed (%s): %s", from_symbol, to_symbol, exc.kind.value, exc
            )
            return QuoteResult(error=str(exc), error_kind=exc.kind)
        return QuoteResult(quote=quote)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_swap(self, quote: SwapQuote, wallet: str) -> SwapReceipt:
        return await self._executor.execute(quote, wallet)

    def get_swap_history(self, wallet: str) -> list[SwapRecord]:
        return self._executor.history.for_wallet(wallet)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        await asyncio.gather(
            self._market_data.close(),
            self._liquidity.close(),
            self._order_router.close(),
        )


def build_swap_service(
    session: aiohttp.ClientSession | None = None,
    relay: TransactionRelay | None = None,
) -> SwapService:
    """
    Wire a ``SwapService`` from config.

    Args:
        session: Shared aiohttp session; each adapter creates its own if None.
        relay: Transaction relay for router swaps. Defaults to ``DryRunRelay``
            when ``execution.dry_run`` is true; otherwise router swaps fail
            until a relay is supplied.
    """
    cfg = get_config()
    cache_cfg = cfg.get_timing_config().get("cache", {})
    cache = TTLCache(
        ttl_seconds=cache_cfg.get("ttl_seconds", DEFAULT_CACHE_TTL_SECONDS),
        max_entries=cache_cfg.get("max_entries"),
    )

    market_data = MarketDataProvider(cache, session)
    liquidity = LiquidityProvider(cache, session)
    order_router = OrderRouterProvider(cache, session)
    registry = TokenRegistry()

    if relay is None and cfg.get_execution_config().get("dry_run", DEFAULT_DRY_RUN):
        relay = DryRunRelay()

    return SwapService(
        market_data=market_data,
        liquidity=liquidity,
        order_router=order_router,
        registry=registry,
        aggregator=QuoteAggregator(cache, order_router, liquidity, market_data, registry),
        executor=SwapExecutor(order_router, liquidity, relay=relay),
    )
