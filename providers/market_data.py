"""
Market data adapter: token listings and USD prices.

Data Sources (ordered by priority):
    - CoinGecko /coins/markets (primary): paginated token list with prices
    - CoinCap /assets: token list when CoinGecko is down or empty
    - Binance /api/v3/ticker/price: single-symbol price fallback
    - CoinGecko /search: free-text lookup when the local list has no match

All requests share a per-minute budget. Once it is spent, calls degrade to
an empty list or a zero price until the window rolls over.

Usage:
    market = MarketDataProvider(cache)
    tokens = await market.list_tokens()
    eth_usd = await market.price("ETH")
"""

from __future__ import annotations

import os
import time
from decimal import Decimal
from typing import Any, cast
from uuid import uuid4

import aiohttp

from config.loader import get_config
from core.cache import TTLCache
from engine_logging.logger_manager import log_data_entry, setup_module_logger
from providers.base import ProviderAdapter, extract_items, optional_decimal, to_decimal
from shared.constants import (
    BINANCE_SPOT_BASE_URL,
    COINCAP_BASE_URL,
    COINGECKO_BASE_URL,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_REQUESTS_PER_MINUTE,
    DEFAULT_PAGE_SIZE,
    ZERO,
)
from shared.types import Token

# ---------------------------------------------------------------------------
# Response mapping (fail closed: malformed records are skipped)
# ---------------------------------------------------------------------------


def map_coingecko_market(item: dict[str, Any]) -> Token | None:
    try:
        symbol = str(item["symbol"]).strip()
        if not symbol:
            return None
        return Token(
            id=str(item["id"]),
            symbol=symbol,
            name=str(item.get("name") or symbol),
            price_usd=to_decimal(item.get("current_price")),
            change_24h_pct=to_decimal(item.get("price_change_percentage_24h")),
            market_cap_usd=optional_decimal(item.get("market_cap")),
            volume_24h_usd=optional_decimal(item.get("total_volume")),
            image_url=item.get("image") or None,
            source="coingecko",
        )
    except (KeyError, TypeError, ValueError, AttributeError):
        return None


def map_coincap_asset(item: dict[str, Any]) -> Token | None:
    try:
        symbol = str(item["symbol"]).strip()
        if not symbol:
            return None
        return Token(
            id=str(item["id"]),
            symbol=symbol,
            name=str(item.get("name") or symbol),
            price_usd=to_decimal(item.get("priceUsd")),
            change_24h_pct=to_decimal(item.get("changePercent24Hr")),
            market_cap_usd=optional_decimal(item.get("marketCapUsd")),
            volume_24h_usd=optional_decimal(item.get("volumeUsd24Hr")),
            source="coincap",
        )
    except (KeyError, TypeError, ValueError, AttributeError):
        return None


def map_coingecko_search_hit(item: dict[str, Any]) -> Token | None:
    """Search hits carry no price; they resolve ids, not quotes."""
    try:
        symbol = str(item["symbol"]).strip()
        if not symbol:
            return None
        return Token(
            id=str(item["id"]),
            symbol=symbol,
            name=str(item.get("name") or symbol),
            price_usd=ZERO,
            change_24h_pct=ZERO,
            image_url=item.get("large") or item.get("thumb") or None,
            source="coingecko",
        )
    except (KeyError, TypeError, AttributeError):
        return None


class MarketDataProvider(ProviderAdapter):
    """Async market data adapter with CoinGecko -> CoinCap -> Binance fallback."""

    name = "market_data"

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

        market_cfg = cfg.get_provider_config("market_data")
        secondary = market_cfg.get("secondary", {})
        self._enabled: bool = market_cfg.get("enabled", True)
        self._base_url: str = market_cfg.get("base_url", COINGECKO_BASE_URL).rstrip("/")
        self._vs_currency: str = market_cfg.get("vs_currency", "usd")
        self._per_page = int(market_cfg.get("per_page", DEFAULT_PAGE_SIZE))
        self._max_pages = int(market_cfg.get("max_pages", DEFAULT_MAX_PAGES))
        self._max_rpm = int(
            market_cfg.get("max_requests_per_minute", DEFAULT_MAX_REQUESTS_PER_MINUTE)
        )
        self._coincap_url: str = secondary.get("coincap_base_url", COINCAP_BASE_URL).rstrip("/")
        self._coincap_limit = int(secondary.get("coincap_limit", 100))
        self._binance_url: str = secondary.get(
            "binance_base_url", BINANCE_SPOT_BASE_URL
        ).rstrip("/")
        self._binance_quote_asset: str = secondary.get("binance_quote_asset", "USDT")

        # Optional; the public CoinGecko tier works without a key
        api_key_env = market_cfg.get("api_key_env", "")
        self._api_key = os.environ.get(api_key_env, "") if api_key_env else ""

        # Request tracking for rate limiting
        self._requests_this_minute: int = 0
        self._minute_start: float = time.monotonic()

        self._logger = setup_module_logger(
            "market_data", "market_data.log", module_folder="Market_Data_Logs"
        )

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        if self._api_key:
            headers["x-cg-pro-api-key"] = self._api_key
        return headers

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def _check_rate_limit(self) -> bool:
        now = time.monotonic()
        if now - self._minute_start > 60:
            self._requests_this_minute = 0
            self._minute_start = now

        if self._requests_this_minute >= self._max_rpm:
            self._logger.warning("Market data rate limit reached (%d/min)", self._max_rpm)
            return False
        self._requests_this_minute += 1
        return True

    async def _limited_get(self, url: str, params: dict[str, str] | None = None) -> Any:
        if not self._check_rate_limit():
            return None
        return await self._get_json(url, params)

    # ------------------------------------------------------------------
    # Token listing
    # ------------------------------------------------------------------

    async def _fetch_tokens(self) -> list[Token]:
        if not self._enabled:
            return []
        tokens = await self._fetch_coingecko_markets()
        if tokens:
            return tokens
        self._logger.info("CoinGecko returned no tokens, falling back to CoinCap")
        return await self._fetch_coincap_assets()

    async def _fetch_coingecko_markets(self) -> list[Token]:
        """Fetch up to ``max_pages`` pages ordered by market cap."""
        url = f"{self._base_url}/coins/markets"
        tokens: list[Token] = []
        for page in range(1, self._max_pages + 1):
            params = {
                "vs_currency": self._vs_currency,
                "order": "market_cap_desc",
                "per_page": str(self._per_page),
                "page": str(page),
                "sparkline": "false",
            }
            data = await self._limited_get(url, params)
            if not isinstance(data, list):
                if tokens:
                    self._logger.warning(
                        "CoinGecko page %d unavailable, keeping %d tokens", page, len(tokens)
                    )
                break

            skipped = 0
            for item in data:
                token = map_coingecko_market(item) if isinstance(item, dict) else None
                if token is None:
                    skipped += 1
                    continue
                tokens.append(token)
            if skipped:
                self._logger.debug(
                    "Skipped %d malformed CoinGecko records on page %d", skipped, page
                )

            if len(data) < self._per_page:
                break

        if tokens:
            log_data_entry(
                trace_id=uuid4().hex[:12],
                source_module="market_data",
                what=f"CoinGecko market listing ({len(tokens)} tokens)",
                why="Primary token list and USD prices",
                data_type="token_list",
                data=[{"symbol": t.symbol, "price_usd": str(t.price_usd)} for t in tokens[:20]],
            )
        return tokens

    async def _fetch_coincap_assets(self) -> list[Token]:
        data = await self._limited_get(
            f"{self._coincap_url}/assets", {"limit": str(self._coincap_limit)}
        )
        items = extract_items(data, ("data",))
        tokens = [
            token
            for token in (map_coincap_asset(i) for i in items if isinstance(i, dict))
            if token is not None
        ]
        if not tokens:
            self._logger.warning("CoinCap fallback returned no tokens")
        return tokens

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def price(self, symbol: str) -> Decimal:
        """
        USD price from the token list, else the Binance ticker.

        Returns:
            Price as Decimal. Returns 0 when the symbol is unknown everywhere.
        """
        symbol = symbol.strip().upper()
        if not symbol:
            return ZERO

        for token in await self.list_tokens():
            if token.symbol == symbol and token.price_usd > 0:
                return token.price_usd

        return await self._binance_price(symbol)

    async def _binance_price(self, symbol: str) -> Decimal:
        cache_key = f"price:binance:{symbol}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cast(Decimal, cached)

        if symbol == self._binance_quote_asset:
            return ZERO

        data = await self._limited_get(
            f"{self._binance_url}/api/v3/ticker/price",
            {"symbol": f"{symbol}{self._binance_quote_asset}"},
        )
        if not isinstance(data, dict) or "price" not in data:
            return ZERO

        try:
            price = to_decimal(data["price"])
        except ValueError:
            self._logger.warning("Malformed Binance price for %s: %r", symbol, data["price"])
            return ZERO
        if price <= 0:
            return ZERO

        self._cache.set(cache_key, price)
        return price

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_tokens(self, query: str) -> list[Token]:
        """Match the local list first; fall back to CoinGecko /search."""
        matches = await super().search_tokens(query)
        if matches or not query.strip():
            return matches

        data = await self._limited_get(f"{self._base_url}/search", {"query": query.strip()})
        hits = extract_items(data, ("coins",))
        return self.deduplicate(
            token
            for token in (map_coingecko_search_hit(h) for h in hits if isinstance(h, dict))
            if token is not None
        )
