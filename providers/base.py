"""
Common plumbing for upstream provider adapters.

Every adapter shares one ``TTLCache`` and (optionally) one aiohttp session.
Network failures never raise out of an adapter's public methods: they are
logged and surfaced as an empty list or a zero price so the caller can fall
back to the next source.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, cast

import aiohttp

from core.cache import TTLCache
from shared.constants import DEFAULT_HTTP_TIMEOUT_SECONDS, USER_AGENT, ZERO
from shared.types import Token

# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce an upstream number to Decimal; ``None`` and blanks map to ``default``."""
    if value is None or value == "":
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value)


def extract_items(data: Any, keys: Sequence[str]) -> list[Any]:
    """Pull the record list out of a payload that is a list or wraps one."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            items = data.get(key)
            if isinstance(items, list):
                return items
            if isinstance(items, dict):
                return list(items.values())
    return []


# ---------------------------------------------------------------------------
# Adapter base
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """
    Base class for the market-data, liquidity and order-router adapters.

    Subclasses implement ``_fetch_tokens`` and ``price``; ``list_tokens``
    wraps the fetch with caching and symbol de-duplication.
    """

    name: str = "provider"

    _logger: logging.Logger

    def __init__(
        self,
        cache: TTLCache,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._cache = cache
        self._session = session
        self._owns_session = session is None
        self._timeout_seconds = float(timeout_seconds)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": USER_AGENT}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
                headers=self._default_headers(),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Fetch JSON from URL; returns None on any transport or status failure."""
        session = await self._get_session()
        try:
            async with session.get(url, params=params, headers=headers) as resp:
                if resp.status == 429:
                    self._logger.warning("Rate limited by %s", url)
                    return None
                if resp.status != 200:
                    self._logger.warning(
                        "HTTP %d from %s: %s", resp.status, url, (await resp.text())[:200]
                    )
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self._logger.warning("Request failed for %s: %s", url, e)
            return None

    # ------------------------------------------------------------------
    # Token listing
    # ------------------------------------------------------------------

    @abstractmethod
    async def _fetch_tokens(self) -> list[Token]:
        """Fetch and normalize the provider's token list (uncached)."""

    @abstractmethod
    async def price(self, symbol: str) -> Decimal:
        """USD price for ``symbol``; ``0`` when unknown or unreachable."""

    async def list_tokens(self) -> list[Token]:
        """
        Return the provider's tokens, de-duplicated by symbol.

        Results are cached for the cache TTL. An empty result (provider
        down) is not cached so the next call retries.
        """
        cache_key = f"tokens:{self.name}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._logger.debug("Cache hit: %s", cache_key)
            return list(cast(tuple[Token, ...], cached))

        tokens = self.deduplicate(await self._fetch_tokens())
        if tokens:
            self._cache.set(cache_key, tuple(tokens))
            self._logger.info("%s: %d tokens listed", self.name, len(tokens))
        else:
            self._logger.warning("%s: no tokens available", self.name)
        return tokens

    async def search_tokens(self, query: str) -> list[Token]:
        """Case-insensitive substring match on symbol or name."""
        needle = query.strip().lower()
        if not needle:
            return []
        return [
            token
            for token in await self.list_tokens()
            if needle in token.symbol.lower() or needle in token.name.lower()
        ]

    @staticmethod
    def deduplicate(tokens: Iterable[Token]) -> list[Token]:
        """Keep the first token seen per symbol, preserving order."""
        seen: set[str] = set()
        unique: list[Token] = []
        for token in tokens:
            if not token.symbol or token.symbol in seen:
                continue
            seen.add(token.symbol)
            unique.append(token)
        return unique
