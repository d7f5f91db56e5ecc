"""
AMM liquidity adapter for the ICDEX and Sonic venues.

Both venues expose the same REST surface:
    GET {base}/tokens?page=N        -> {"tokens": [...], "hasMore": bool}
    GET {base}/pools/{A}/{B}        -> {"pools": [{id, tokenA, tokenB, reserves, fee}]}

Token lists are cached; pools are fetched per quote request and never
cached, since reserves move with every trade.

Usage:
    liquidity = LiquidityProvider(cache)
    pools = await liquidity.find_pools("ICP", "USDC")
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any

import aiohttp

from config.loader import get_config
from core.amm import calculate_swap
from core.cache import TTLCache
from engine_logging.logger_manager import setup_module_logger
from providers.base import ProviderAdapter, extract_items, optional_decimal, to_decimal
from shared.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_MAX_PAGES,
    DEFAULT_POOL_FEE_FRACTION,
    DEFAULT_STABLE_SYMBOL,
    ICDEX_BASE_URL,
    SONIC_BASE_URL,
    ZERO,
)
from shared.errors import (
    ExecutionFailedError,
    NoLiquidityError,
    ProviderUnavailableError,
    StaleQuoteError,
)
from shared.types import AmmVenue, LiquidityPool, SwapQuote, Token

_DEFAULT_VENUE_URLS = {
    AmmVenue.ICDEX: ICDEX_BASE_URL,
    AmmVenue.SONIC: SONIC_BASE_URL,
}


# ---------------------------------------------------------------------------
# Response mapping
# ---------------------------------------------------------------------------


def map_venue_token(item: dict[str, Any], venue: AmmVenue) -> Token | None:
    try:
        symbol = str(item["symbol"]).strip()
        if not symbol:
            return None
        address = item.get("address") or item.get("canisterId")
        decimals = item.get("decimals")
        return Token(
            id=str(address or item.get("id") or symbol),
            symbol=symbol,
            name=str(item.get("name") or symbol),
            price_usd=to_decimal(item.get("priceUsd", item.get("price"))),
            change_24h_pct=to_decimal(item.get("change24h")),
            volume_24h_usd=optional_decimal(item.get("volume24h")),
            image_url=item.get("logo") or None,
            address=str(address) if address else None,
            decimals=int(decimals) if decimals is not None else None,
            source=venue.value,
        )
    except (KeyError, TypeError, ValueError, AttributeError):
        return None


def map_pool(item: dict[str, Any], venue: AmmVenue, default_fee: Decimal) -> LiquidityPool | None:
    """
    Normalize a venue pool record.

    Reserves arrive either as ``{"reserves": {SYMBOL: amount}}`` or as flat
    ``reserveA``/``reserveB`` fields. Fees arrive as a fraction (``0.003``).
    Records that cannot be read are dropped rather than guessed at.
    """
    try:
        token_a = str(item.get("tokenA") or item["token0"]).upper()
        token_b = str(item.get("tokenB") or item["token1"]).upper()

        reserves = item.get("reserves")
        if isinstance(reserves, dict):
            by_symbol = {str(k).upper(): v for k, v in reserves.items()}
            reserve_a = to_decimal(by_symbol.get(token_a))
            reserve_b = to_decimal(by_symbol.get(token_b))
        else:
            reserve_a = to_decimal(item.get("reserveA", item.get("reserve0")))
            reserve_b = to_decimal(item.get("reserveB", item.get("reserve1")))

        fee = to_decimal(item.get("fee", item.get("feeFraction")), default=default_fee)
        if not ZERO <= fee < 1:
            return None

        return LiquidityPool(
            id=str(item.get("id") or f"{venue.value}_{token_a}_{token_b}"),
            venue=venue,
            token_a=token_a,
            token_b=token_b,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            fee_fraction=fee,
        )
    except (KeyError, TypeError, ValueError, AttributeError):
        return None


class LiquidityProvider(ProviderAdapter):
    """Token lists, pool discovery and simulated execution across AMM venues."""

    name = "liquidity"

    def __init__(
        self,
        cache: TTLCache,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        cfg = get_config()
        timing = cfg.get_timing_config()
        super().__init__(
            cache,
            session,
            timing.get("http", {}).get("request_timeout_seconds", DEFAULT_HTTP_TIMEOUT_SECONDS),
        )

        liquidity_cfg = cfg.get_provider_config("liquidity")
        venues_cfg = liquidity_cfg.get("venues", {})
        self._enabled: bool = liquidity_cfg.get("enabled", True)
        self._max_pages = int(liquidity_cfg.get("max_pages", DEFAULT_MAX_PAGES))
        self._stable_symbol: str = liquidity_cfg.get("stable_symbol", DEFAULT_STABLE_SYMBOL).upper()

        self._base_urls: dict[AmmVenue, str] = {}
        self._default_fees: dict[AmmVenue, Decimal] = {}
        self._network_fees: dict[AmmVenue, Decimal] = {}
        for venue in AmmVenue:
            venue_cfg = venues_cfg.get(venue.value, {})
            base_url = venue_cfg.get("base_url", _DEFAULT_VENUE_URLS[venue])
            self._base_urls[venue] = base_url.rstrip("/")
            self._default_fees[venue] = Decimal(
                str(venue_cfg.get("default_fee_fraction", DEFAULT_POOL_FEE_FRACTION))
            )
            self._network_fees[venue] = Decimal(str(venue_cfg.get("network_fee", "0")))

        self._logger = setup_module_logger(
            "liquidity", "liquidity.log", module_folder="Liquidity_Logs"
        )

    def network_fee(self, venue: AmmVenue) -> Decimal:
        return self._network_fees.get(venue, ZERO)

    def _venue_url(self, venue: AmmVenue) -> str:
        try:
            return self._base_urls[venue]
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Unsupported AMM venue: {venue!r}") from exc

    # ------------------------------------------------------------------
    # Token listing
    # ------------------------------------------------------------------

    async def _fetch_tokens(self) -> list[Token]:
        if not self._enabled:
            return []
        results = await asyncio.gather(*(self._fetch_venue_tokens(v) for v in AmmVenue))
        # Venue order is stable (ICDEX first), so de-duplication keeps ICDEX entries
        return [token for venue_tokens in results for token in venue_tokens]

    async def _fetch_venue_tokens(self, venue: AmmVenue) -> list[Token]:
        url = f"{self._venue_url(venue)}/tokens"
        tokens: list[Token] = []
        for page in range(1, self._max_pages + 1):
            data = await self._get_json(url, {"page": str(page)})
            items = extract_items(data, ("tokens", "data", "items"))
            if not items:
                break
            tokens.extend(
                token
                for token in (map_venue_token(i, venue) for i in items if isinstance(i, dict))
                if token is not None
            )
            if not (isinstance(data, dict) and data.get("hasMore", False)):
                break
        self._logger.debug("%s: %d tokens", venue.value, len(tokens))
        return tokens

    async def price(self, symbol: str) -> Decimal:
        """
        USD price from the venue token listing, falling back to the spot
        rate of the deepest pool against the stable symbol.
        """
        symbol = symbol.strip().upper()
        if not symbol:
            return ZERO
        for token in await self.list_tokens():
            if token.symbol == symbol and token.price_usd > 0:
                return token.price_usd
        if symbol == self._stable_symbol:
            return ZERO
        return await self.spot_price(symbol, self._stable_symbol)

    async def spot_price(self, base: str, quote: str) -> Decimal:
        """Reserve ratio ``quote / base`` of the deepest pool; ``0`` without pools."""
        base, quote = base.strip().upper(), quote.strip().upper()
        pools = await self.find_pools(base, quote)
        if not pools:
            return ZERO
        deepest = max(pools, key=lambda p: p.reserve_a + p.reserve_b)
        reserve_base, reserve_quote = deepest.reserves_for(base, quote)
        return reserve_quote / reserve_base

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    async def find_pools(self, token_a: str, token_b: str) -> list[LiquidityPool]:
        """
        Query every venue concurrently for pools holding both tokens.

        Pools with a non-positive reserve are dropped here. A venue that is
        unreachable contributes no pools.
        """
        if not self._enabled:
            return []
        a, b = token_a.strip().upper(), token_b.strip().upper()
        results = await asyncio.gather(*(self.find_venue_pools(v, a, b) for v in AmmVenue))
        return [pool for venue_pools in results for pool in venue_pools]

    async def find_venue_pools(
        self, venue: AmmVenue, token_a: str, token_b: str
    ) -> list[LiquidityPool]:
        try:
            return await self._fetch_venue_pools(venue, token_a, token_b)
        except ProviderUnavailableError as exc:
            self._logger.warning("%s pool lookup failed: %s", venue.value, exc)
            return []

    async def _fetch_venue_pools(
        self, venue: AmmVenue, token_a: str, token_b: str
    ) -> list[LiquidityPool]:
        url = f"{self._venue_url(venue)}/pools/{token_a.upper()}/{token_b.upper()}"
        data = await self._get_json(url)
        if data is None:
            raise ProviderUnavailableError(f"{venue.value} pools endpoint unavailable")

        pools: list[LiquidityPool] = []
        for item in extract_items(data, ("pools", "data")):
            if not isinstance(item, dict):
                continue
            pool = map_pool(item, venue, self._default_fees[venue])
            if pool is None or not (pool.holds(token_a) and pool.holds(token_b)):
                continue
            if not pool.is_valid:
                self._logger.debug("Dropping empty pool %s", pool.id)
                continue
            pools.append(pool)
        return pools

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, quote: SwapQuote, wallet: str) -> dict[str, Any]:
        """
        Execute a pool quote against current reserves.

        Re-reads the quoted pool and recomputes the output; the trade is
        rejected with ``StaleQuoteError`` if the fresh output has fallen
        below the quote's ``minimum_received``.

        Returns:
            Venue receipt dict with ``txId``, ``status``, ``toAmount``, ``poolId``.
        """
        venue = AmmVenue(quote.provider.value)
        pools = await self._fetch_venue_pools(venue, quote.from_token, quote.to_token)
        if not pools:
            raise NoLiquidityError(
                f"{venue.value} has no pool for {quote.from_token}/{quote.to_token}"
            )

        pool = next((p for p in pools if p.id == quote.pool_id), None)
        if pool is None:
            raise StaleQuoteError(f"Pool {quote.pool_id} no longer listed on {venue.value}")

        result = calculate_swap(
            pool, quote.from_token, quote.to_token, quote.from_amount, quote.slippage_pct
        )
        if result.expected_out < quote.minimum_received:
            raise StaleQuoteError(
                f"Output {result.expected_out} below minimum {quote.minimum_received}; re-quote"
            )
        if result.expected_out <= 0:
            raise ExecutionFailedError(f"{venue.value} swap would return nothing")

        tx_id = f"{venue.value}_{int(time.time() * 1000)}"
        self._logger.info(
            "%s swap %s %s -> %s %s for %s (pool=%s tx=%s)",
            venue.value,
            quote.from_amount,
            quote.from_token,
            result.expected_out,
            quote.to_token,
            wallet,
            pool.id,
            tx_id,
        )
        return {
            "txId": tx_id,
            "status": "completed",
            "toAmount": result.expected_out,
            "poolId": pool.id,
            "gasFee": self.network_fee(venue),
        }
