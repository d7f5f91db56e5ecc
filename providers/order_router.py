"""
External order-router adapter (1inch v6 swap API).

Fetches the router's token list, executable quotes, and unsigned swap
transactions. When the router cannot be reached the adapter answers with a
DEGRADED quote built from the last rate it saw for the pair, or from the
configured ``default_rates`` table. Degraded quotes are informational only:
the aggregator never prefers them and the executor refuses them.

Usage:
    router = OrderRouterProvider(cache)
    quote = await router.quote("ETH", "USDC", Decimal("1"), Decimal("0.5"))
    tx = await router.build_swap(quote, wallet)
"""

from __future__ import annotations

import asyncio
import os
import time
from decimal import ROUND_DOWN, Decimal
from typing import Any, cast

import aiohttp
from web3 import Web3

from config.loader import get_config
from core.cache import TTLCache
from engine_logging.logger_manager import setup_module_logger
from providers.base import ProviderAdapter, to_decimal
from shared.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_ROUTER_GAS_ESTIMATE,
    DEFAULT_ROUTER_RATE_LIMIT_RPS,
    DEFAULT_STABLE_SYMBOL,
    DEFAULT_TIME_LABEL,
    DEFAULT_TOKEN_DECIMALS,
    ORDER_ROUTER_BASE_URL,
    ZERO,
)
from shared.errors import InvalidRequestError, ProviderUnavailableError
from shared.types import FeeBreakdown, QuoteProvider, SwapQuote, Token

_ONE = Decimal("1")


def pair_key(from_symbol: str, to_symbol: str) -> str:
    return f"{from_symbol.upper()}/{to_symbol.upper()}"


def map_router_token(item: dict[str, Any]) -> Token | None:
    try:
        symbol = str(item["symbol"]).strip()
        address = str(item["address"])
        if not symbol or not address:
            return None
        return Token(
            id=address,
            symbol=symbol,
            name=str(item.get("name") or symbol),
            price_usd=ZERO,
            change_24h_pct=ZERO,
            image_url=item.get("logoURI") or None,
            address=address,
            decimals=int(item.get("decimals", DEFAULT_TOKEN_DECIMALS)),
            source="order_router",
        )
    except (KeyError, TypeError, ValueError, AttributeError):
        return None


class OrderRouterProvider(ProviderAdapter):
    """
    Async client for a 1inch-style aggregation router.

    Requests are spaced by ``1 / rate_limit_rps`` seconds. The API key, if
    configured, is sent as a bearer token.
    """

    name = "order_router"

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

        router_cfg = cfg.get_provider_config("order_router")
        execution_cfg = cfg.get_execution_config()

        self._enabled: bool = router_cfg.get("enabled", True)
        self._router_name: str = router_cfg.get("name", QuoteProvider.ORDER_ROUTER.value)
        self._base_url: str = router_cfg.get("base_url", ORDER_ROUTER_BASE_URL).rstrip("/")
        self._stable_symbol: str = router_cfg.get("stable_symbol", DEFAULT_STABLE_SYMBOL).upper()
        self._default_gas = int(router_cfg.get("default_gas_estimate", DEFAULT_ROUTER_GAS_ESTIMATE))

        # Per-provider rate limiting
        rps = router_cfg.get("rate_limit_rps", DEFAULT_ROUTER_RATE_LIMIT_RPS)
        self._min_interval: float = 1.0 / rps if rps > 0 else 1.0
        self._last_request: float = 0.0

        # API key from environment
        api_key_env = router_cfg.get("api_key_env", "")
        self._api_key = os.environ.get(api_key_env, "") if api_key_env else ""

        # Rates for DEGRADED quotes: last good router rate, then the static table
        self._default_rates: dict[str, Decimal] = {
            pair.upper(): Decimal(str(rate))
            for pair, rate in router_cfg.get("default_rates", {}).items()
        }
        self._last_good_rates: dict[str, Decimal] = {}

        fees = execution_cfg.get("fees", {}).get("order_router", {})
        self._fees = FeeBreakdown(
            network=Decimal(str(fees.get("network", "0"))),
            protocol=Decimal(str(fees.get("protocol", "0"))),
        )
        labels = execution_cfg.get("estimated_time_labels", {})
        self._time_label: str = labels.get(QuoteProvider.ORDER_ROUTER.value, DEFAULT_TIME_LABEL)
        self._degraded_label: str = labels.get(QuoteProvider.DEGRADED.value, DEFAULT_TIME_LABEL)

        self._logger = setup_module_logger(
            "order_router", "order_router.log", module_folder="Order_Router_Logs"
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _enforce_rate_limit(self) -> None:
        """Reserve the next request slot, then sleep until it arrives."""
        now = time.monotonic()
        slot = now
        if self._last_request > 0:
            slot = max(now, self._last_request + self._min_interval)
        self._last_request = slot
        if slot > now:
            await asyncio.sleep(slot - now)

    async def _router_get(self, path: str, params: dict[str, str] | None = None) -> Any:
        await self._enforce_rate_limit()
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else None
        return await self._get_json(f"{self._base_url}{path}", params, headers)

    # ------------------------------------------------------------------
    # Token listing
    # ------------------------------------------------------------------

    async def _fetch_tokens(self) -> list[Token]:
        if not self._enabled:
            return []
        data = await self._router_get("/tokens")
        if not isinstance(data, dict):
            return []
        raw = data.get("tokens", data)
        items = raw.values() if isinstance(raw, dict) else raw if isinstance(raw, list) else []
        return [
            token
            for token in (map_router_token(i) for i in items if isinstance(i, dict))
            if token is not None
        ]

    async def _resolve(self, symbol: str) -> Token:
        symbol = symbol.upper()
        for token in await self.list_tokens():
            if token.symbol == symbol:
                return token
        raise ProviderUnavailableError(f"{self._router_name} does not list {symbol}")

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def quote(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal,
        slippage_pct: Decimal,
    ) -> SwapQuote | None:
        """
        Executable router quote, or a DEGRADED quote when the router fails.

        Returns None only when the router fails and no rate is known for
        the pair.
        """
        pair = pair_key(from_symbol, to_symbol)
        try:
            quote = await self._fetch_quote(from_symbol, to_symbol, amount, slippage_pct)
        except ProviderUnavailableError as exc:
            self._logger.warning("%s quote failed for %s: %s", self._router_name, pair, exc)
            return self._degraded_quote(from_symbol, to_symbol, amount, slippage_pct)

        self._last_good_rates[pair] = quote.rate
        self._logger.info(
            "%s quote %s %s -> %s (rate=%s gas=%d)",
            self._router_name,
            amount,
            pair,
            quote.to_amount,
            quote.rate,
            quote.gas_estimate,
        )
        return quote

    async def _fetch_quote(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal,
        slippage_pct: Decimal,
    ) -> SwapQuote:
        if not self._enabled:
            raise ProviderUnavailableError(f"{self._router_name} disabled")

        src = await self._resolve(from_symbol)
        dst = await self._resolve(to_symbol)
        amount_base = self._to_base_units(amount, src)

        data = await self._router_get(
            "/quote",
            {
                "src": cast(str, src.address),
                "dst": cast(str, dst.address),
                "amount": str(amount_base),
                "includeGas": "true",
            },
        )
        if not isinstance(data, dict):
            raise ProviderUnavailableError(f"{self._router_name} /quote unavailable")

        try:
            dst_amount = to_decimal(data.get("dstAmount", data.get("toAmount")))
            gas = int(data.get("gas", data.get("estimatedGas")) or self._default_gas)
            price_impact = to_decimal(data.get("priceImpact"))
        except (TypeError, ValueError) as exc:
            raise ProviderUnavailableError(f"Malformed {self._router_name} quote: {exc}") from exc

        to_amount = self._from_base_units(dst_amount, dst)
        if to_amount <= 0:
            raise ProviderUnavailableError(f"{self._router_name} returned no output amount")

        return SwapQuote.build(
            from_token=src.symbol,
            to_token=dst.symbol,
            from_amount=amount,
            to_amount=to_amount,
            slippage_pct=slippage_pct,
            provider=QuoteProvider.ORDER_ROUTER,
            estimated_time_label=self._time_label,
            price_impact_pct=price_impact,
            fees=self._fees,
            gas_estimate=gas,
        )

    def _degraded_quote(
        self,
        from_symbol: str,
        to_symbol: str,
        amount: Decimal,
        slippage_pct: Decimal,
    ) -> SwapQuote | None:
        pair = pair_key(from_symbol, to_symbol)
        rate = self._last_good_rates.get(pair) or self._default_rates.get(pair)
        if rate is None or rate <= 0:
            return None
        self._logger.warning("Serving DEGRADED %s quote at rate %s", pair, rate)
        return SwapQuote.build(
            from_token=from_symbol,
            to_token=to_symbol,
            from_amount=amount,
            to_amount=amount * rate,
            slippage_pct=slippage_pct,
            provider=QuoteProvider.DEGRADED,
            estimated_time_label=self._degraded_label,
            fees=self._fees,
            gas_estimate=self._default_gas,
        )

    async def price(self, symbol: str) -> Decimal:
        """USD price as the router rate for one unit into the stable symbol."""
        symbol = symbol.strip().upper()
        if not symbol:
            return ZERO
        if symbol == self._stable_symbol:
            return _ONE

        cache_key = f"price:{self.name}:{symbol}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cast(Decimal, cached)

        try:
            quote = await self._fetch_quote(symbol, self._stable_symbol, _ONE, ZERO)
        except ProviderUnavailableError as exc:
            self._logger.debug("No router price for %s: %s", symbol, exc)
            return ZERO

        self._cache.set(cache_key, quote.rate)
        return quote.rate

    # ------------------------------------------------------------------
    # Swap transactions
    # ------------------------------------------------------------------

    async def build_swap(self, quote: SwapQuote, wallet: str) -> dict[str, Any]:
        """
        Fetch an unsigned swap transaction for ``quote`` from ``wallet``.

        Raises ``InvalidRequestError`` for a malformed wallet address and
        ``ProviderUnavailableError`` when the router cannot build the call.
        """
        if not Web3.is_address(wallet):
            raise InvalidRequestError(f"Not an EVM address: {wallet!r}")
        sender = Web3.to_checksum_address(wallet)

        src = await self._resolve(quote.from_token)
        dst = await self._resolve(quote.to_token)
        data = await self._router_get(
            "/swap",
            {
                "src": cast(str, src.address),
                "dst": cast(str, dst.address),
                "amount": str(self._to_base_units(quote.from_amount, src)),
                "from": sender,
                "slippage": str(quote.slippage_pct),
                "disableEstimate": "true",
            },
        )
        if not isinstance(data, dict) or not isinstance(data.get("tx"), dict):
            raise ProviderUnavailableError(f"{self._router_name} /swap unavailable")

        tx = data["tx"]
        try:
            expected = self._from_base_units(to_decimal(data.get("dstAmount")), dst)
            payload = {
                "from": sender,
                "to": Web3.to_checksum_address(tx["to"]),
                "data": str(tx.get("data", "0x")),
                "value": int(tx.get("value", 0)),
                "gas": int(tx.get("gas") or quote.gas_estimate or self._default_gas),
                "expectedToAmount": str(expected if expected > 0 else quote.to_amount),
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError(f"Malformed {self._router_name} swap: {exc}") from exc

        self._logger.info(
            "Built %s swap tx for %s: %s %s -> %s (router=%s)",
            self._router_name,
            sender,
            quote.from_amount,
            quote.from_token,
            quote.to_token,
            payload["to"],
        )
        return payload

    # ------------------------------------------------------------------
    # Unit conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_base_units(amount: Decimal, token: Token) -> int:
        decimals = token.decimals if token.decimals is not None else DEFAULT_TOKEN_DECIMALS
        base = int((amount * Decimal(10) ** decimals).to_integral_value(rounding=ROUND_DOWN))
        if base <= 0:
            raise ProviderUnavailableError(f"Amount {amount} below {token.symbol} precision")
        return base

    @staticmethod
    def _from_base_units(amount: Decimal, token: Token) -> Decimal:
        decimals = token.decimals if token.decimals is not None else DEFAULT_TOKEN_DECIMALS
        return amount / Decimal(10) ** decimals
