"""
Quote aggregation with ordered provider fallback.

Fallback chain (first usable answer wins, steps run sequentially):
    1. Order router   - executable quote with rate > 0 (cached)
    2. AMM pools      - deepest pool across venues, constant-product math (cached)
    3. Market prices  - ratio of two USD prices, tagged ESTIMATED (never cached)
    4. Held-aside DEGRADED router quote (never cached), unless
       ``allow_degraded_quotes`` is off; otherwise NoLiquidityError

``QuotePreference.AMM`` skips step 1 and ``QuotePreference.ORDER_ROUTER``
skips step 2; step 3 is always available.

Usage:
    aggregator = QuoteAggregator(cache, router, liquidity, market, registry)
    quote = await aggregator.get_quote("ICP", "USDC", Decimal("10"), Decimal("0.5"))
"""

from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from config.loader import get_config
from core.amm import calculate_swap
from core.cache import TTLCache
from core.token_registry import TokenRegistry
from engine_logging.logger_manager import (
    log_data_output,
    log_data_processing,
    setup_module_logger,
)
from providers.liquidity import LiquidityProvider
from providers.market_data import MarketDataProvider
from providers.order_router import OrderRouterProvider
from shared.constants import DEFAULT_SLIPPAGE_PCT, DEFAULT_TIME_LABEL, MAX_SLIPPAGE_PCT, ZERO
from shared.errors import InvalidRequestError, NoLiquidityError
from shared.types import FeeBreakdown, LiquidityPool, QuotePreference, QuoteProvider, SwapQuote


class QuoteAggregator:
    """Resolves a swap request to the best available ``SwapQuote``."""

    def __init__(
        self,
        cache: TTLCache,
        order_router: OrderRouterProvider,
        liquidity: LiquidityProvider,
        market_data: MarketDataProvider,
        registry: TokenRegistry,
    ) -> None:
        self._cache = cache
        self._order_router = order_router
        self._liquidity = liquidity
        self._market_data = market_data
        self._registry = registry

        execution_cfg = get_config().get_execution_config()
        self._allow_degraded: bool = execution_cfg.get("allow_degraded_quotes", True)
        labels = execution_cfg.get("estimated_time_labels", {})
        self._time_labels: dict[QuoteProvider, str] = {
            provider: labels.get(provider.value, DEFAULT_TIME_LABEL) for provider in QuoteProvider
        }

        self._logger = setup_module_logger(
            "quote_aggregator", "quote_aggregator.log", module_folder="Quote_Aggregator_Logs"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_quote(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal | int | str,
        slippage_pct: Decimal | int | str = DEFAULT_SLIPPAGE_PCT,
        preference: QuotePreference = QuotePreference.AUTO,
    ) -> SwapQuote:
        """
        Resolve a quote through the fallback chain.

        Raises:
            InvalidRequestError: bad symbols, amount or slippage.
            NoLiquidityError: no router quote, no pool and no market prices.
            DegeneratePoolError: a zero-reserve pool reached the calculator.
        """
        from_symbol, to_symbol, amount, slippage = self._validate(
            from_symbol, to_symbol, amount, slippage_pct
        )

        cache_key = self._get_cache_key(from_symbol, to_symbol, amount, preference)
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._logger.debug("Cache hit for %s", cache_key)
            return cached.with_slippage(slippage)

        trace_id = uuid4().hex[:12]
        degraded: SwapQuote | None = None

        if preference is not QuotePreference.AMM:
            router_quote = await self._order_router.quote(from_symbol, to_symbol, amount, slippage)
            if router_quote is not None:
                if router_quote.provider is QuoteProvider.ORDER_ROUTER and router_quote.rate > 0:
                    return self._finish(trace_id, cache_key, router_quote, cache=True)
                if router_quote.provider is QuoteProvider.DEGRADED:
                    degraded = router_quote

        if preference is not QuotePreference.ORDER_ROUTER:
            pool_quote = await self._quote_from_pools(
                trace_id, from_symbol, to_symbol, amount, slippage
            )
            if pool_quote is not None:
                return self._finish(trace_id, cache_key, pool_quote, cache=True)

        estimated = await self._quote_from_market(from_symbol, to_symbol, amount, slippage)
        if estimated is not None:
            return self._finish(trace_id, cache_key, estimated, cache=False)

        if degraded is not None and self._allow_degraded:
            self._logger.warning(
                "Returning DEGRADED quote for %s/%s: no live source available",
                from_symbol,
                to_symbol,
            )
            return self._finish(trace_id, cache_key, degraded, cache=False)

        self._logger.warning("No liquidity for %s -> %s (%s)", from_symbol, to_symbol, amount)
        raise NoLiquidityError(f"No quote available for {from_symbol} -> {to_symbol}")

    # ------------------------------------------------------------------
    # Fallback steps
    # ------------------------------------------------------------------

    async def _quote_from_pools(
        self,
        trace_id: str,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal,
        slippage: Decimal,
    ) -> SwapQuote | None:
        pools = [
            pool
            for pool in await self._liquidity.find_pools(from_symbol, to_symbol)
            if pool.is_valid and pool.holds(from_symbol) and pool.holds(to_symbol)
        ]
        if not pools:
            return None

        best = max(pools, key=self._pool_depth)
        log_data_processing(
            trace_id=trace_id,
            source_module="quote_aggregator",
            what=f"Pool selection for {from_symbol}/{to_symbol}",
            why="Deepest pool gives the lowest price impact",
            data_type="liquidity_pool",
            input_data=[
                {"id": p.id, "venue": p.venue.value, "depth": str(self._pool_depth(p))}
                for p in pools
            ],
            output_data={"id": best.id, "venue": best.venue.value},
        )

        result = calculate_swap(best, from_symbol, to_symbol, amount, slippage)
        provider = best.venue.provider
        return SwapQuote.build(
            from_token=from_symbol,
            to_token=to_symbol,
            from_amount=amount,
            to_amount=result.expected_out,
            slippage_pct=slippage,
            provider=provider,
            estimated_time_label=self._time_labels[provider],
            price_impact_pct=result.price_impact_pct,
            fees=FeeBreakdown(
                network=self._liquidity.network_fee(best.venue),
                protocol=result.fee_amount,
            ),
            pool_id=best.id,
        )

    async def _quote_from_market(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal,
        slippage: Decimal,
    ) -> SwapQuote | None:
        price_from, price_to = await asyncio.gather(
            self._market_data.price(from_symbol),
            self._market_data.price(to_symbol),
        )
        if price_from <= 0 or price_to <= 0:
            return None

        rate = price_from / price_to
        self._logger.info(
            "ESTIMATED %s/%s from market prices (%s / %s)",
            from_symbol,
            to_symbol,
            price_from,
            price_to,
        )
        return SwapQuote.build(
            from_token=from_symbol,
            to_token=to_symbol,
            from_amount=amount,
            to_amount=amount * rate,
            slippage_pct=slippage,
            provider=QuoteProvider.ESTIMATED,
            estimated_time_label=self._time_labels[QuoteProvider.ESTIMATED],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pool_depth(self, pool: LiquidityPool) -> Decimal:
        """
        Combined reserve value of a pool.

        USD-weighted when the registry has positive prices for both tokens,
        raw ``reserve_a + reserve_b`` otherwise. Every pool compared in one
        call holds the same pair, so all of them use the same branch.
        """
        token_a = self._registry.lookup(pool.token_a)
        token_b = self._registry.lookup(pool.token_b)
        price_a = token_a.price_usd if token_a is not None else ZERO
        price_b = token_b.price_usd if token_b is not None else ZERO
        if price_a > 0 and price_b > 0:
            return pool.reserve_a * price_a + pool.reserve_b * price_b
        return pool.reserve_a + pool.reserve_b

    def _finish(self, trace_id: str, cache_key: str, quote: SwapQuote, cache: bool) -> SwapQuote:
        if cache:
            self._cache.set(cache_key, quote)
        self._logger.info(
            "Quote %s -> %s via %s: %s -> %s (impact=%s%%)",
            quote.from_token,
            quote.to_token,
            quote.provider.value,
            quote.from_amount,
            quote.to_amount,
            quote.price_impact_pct,
        )
        log_data_output(
            trace_id=trace_id,
            source_module="quote_aggregator",
            what=f"{quote.provider.value} quote {quote.from_token}/{quote.to_token}",
            why="Best available quote for the request",
            data_type="swap_quote",
            data=quote.to_dict(),
            next_stage="swap_service",
        )
        return quote

    @staticmethod
    def _get_cache_key(
        from_symbol: str, to_symbol: str, amount: Decimal, preference: QuotePreference
    ) -> str:
        """Build deterministic cache key."""
        key = f"quote:{from_symbol}:{to_symbol}:{amount:.8f}"
        if preference is not QuotePreference.AUTO:
            key = f"{key}:{preference.value}"
        return key

    @staticmethod
    def _validate(
        from_symbol: Any, to_symbol: Any, amount: Any, slippage_pct: Any
    ) -> tuple[str, str, Decimal, Decimal]:
        if not isinstance(from_symbol, str) or not isinstance(to_symbol, str):
            raise InvalidRequestError("Token symbols must be strings")
        from_symbol, to_symbol = from_symbol.strip().upper(), to_symbol.strip().upper()
        if not from_symbol or not to_symbol:
            raise InvalidRequestError("Token symbols must be non-empty")
        if from_symbol == to_symbol:
            raise InvalidRequestError(f"Cannot swap {from_symbol} for itself")

        try:
            amount_dec = Decimal(str(amount))
            slippage_dec = Decimal(str(slippage_pct))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidRequestError(f"Invalid number: {exc}") from exc

        if not amount_dec.is_finite() or amount_dec <= 0:
            raise InvalidRequestError(f"Amount must be positive, got {amount}")
        if not slippage_dec.is_finite() or not ZERO <= slippage_dec < MAX_SLIPPAGE_PCT:
            raise InvalidRequestError(f"Slippage must be in [0, 100), got {slippage_pct}")
        return from_symbol, to_symbol, amount_dec, slippage_dec
