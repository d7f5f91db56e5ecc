"""
Unit tests for providers/market_data.py.

All HTTP traffic is mocked with aioresponses. Tests verify CoinGecko
pagination, the CoinCap and Binance fallbacks, caching of token lists,
search fallback, the per-minute request budget, and record mapping.
"""

from __future__ import annotations

import asyncio
import re
from decimal import Decimal

import pytest
from aioresponses import aioresponses

from providers.market_data import (
    MarketDataProvider,
    map_coincap_asset,
    map_coingecko_market,
)
from tests.conftest import _d

# aioresponses needs regex patterns to match URLs with query params
RE_CG_MARKETS = re.compile(r"https://api\.coingecko\.com/api/v3/coins/markets")
RE_CG_SEARCH = re.compile(r"https://api\.coingecko\.com/api/v3/search")
RE_COINCAP_ASSETS = re.compile(r"https://api\.coincap\.io/v2/assets")
RE_BINANCE_PRICE = re.compile(r"https://api\.binance\.com/api/v3/ticker/price")


def _cg_market(symbol: str, price, name: str | None = None) -> dict:
    return {
        "id": (name or symbol).lower(),
        "symbol": symbol.lower(),
        "name": name or symbol.title(),
        "current_price": price,
        "price_change_percentage_24h": 1.25,
        "market_cap": 1000000,
        "total_volume": 50000,
        "image": f"https://img.example/{symbol}.png",
    }


def _request_count(mocked) -> int:
    return sum(len(calls) for calls in mocked.requests.values())


@pytest.fixture
async def market(engine_env, cache):
    provider = MarketDataProvider(cache)
    yield provider
    await provider.close()


# ---------------------------------------------------------------------------
# Token listing
# ---------------------------------------------------------------------------


class TestListTokens:
    async def test_paginates_until_short_page(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000), _cg_market("BTC", 60000)])
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ICP", "12.5")])

            tokens = await market.list_tokens()

        assert [t.symbol for t in tokens] == ["ETH", "BTC", "ICP"]
        assert tokens[2].price_usd == _d("12.5")
        assert all(t.source == "coingecko" for t in tokens)

    async def test_stops_at_max_pages(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 1), _cg_market("BTC", 1)])
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ICP", 1), _cg_market("SOL", 1)])

            tokens = await market.list_tokens()
            requests = _request_count(mocked)

        assert len(tokens) == 4
        assert requests == 2

    async def test_deduplicates_by_symbol_first_wins(self, market):
        with aioresponses() as mocked:
            mocked.get(
                RE_CG_MARKETS,
                payload=[_cg_market("USDC", 1, "USD Coin"), _cg_market("usdc", 2, "Bridged USDC")],
            )
            mocked.get(RE_CG_MARKETS, payload=[])

            tokens = await market.list_tokens()

        assert len(tokens) == 1
        assert tokens[0].name == "USD Coin"

    async def test_second_call_served_from_cache(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])

            first = await market.list_tokens()
            second = await market.list_tokens()
            requests = _request_count(mocked)

        assert first == second
        assert requests == 1

    async def test_keeps_earlier_pages_when_later_page_fails(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 1), _cg_market("BTC", 1)])
            mocked.get(RE_CG_MARKETS, status=500)

            tokens = await market.list_tokens()

        assert [t.symbol for t in tokens] == ["ETH", "BTC"]

    async def test_falls_back_to_coincap(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, status=503)
            mocked.get(
                RE_COINCAP_ASSETS,
                payload={
                    "data": [
                        {
                            "id": "ethereum",
                            "symbol": "ETH",
                            "name": "Ethereum",
                            "priceUsd": "1999.5",
                            "changePercent24Hr": "-0.4",
                        }
                    ]
                },
            )

            tokens = await market.list_tokens()

        assert len(tokens) == 1
        assert tokens[0].price_usd == _d("1999.5")
        assert tokens[0].source == "coincap"

    async def test_timeouts_list_nothing(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, exception=asyncio.TimeoutError(), repeat=True)
            mocked.get(RE_COINCAP_ASSETS, exception=asyncio.TimeoutError(), repeat=True)

            assert await market.list_tokens() == []

    async def test_empty_result_is_not_cached(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, status=500)
            mocked.get(RE_COINCAP_ASSETS, status=500)
            assert await market.list_tokens() == []

            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])
            tokens = await market.list_tokens()

        assert [t.symbol for t in tokens] == ["ETH"]

    async def test_disabled_provider_lists_nothing(self, engine_env, cache):
        engine_env.providers["market_data"]["enabled"] = False
        provider = MarketDataProvider(cache)
        with aioresponses() as mocked:
            assert await provider.list_tokens() == []
            assert _request_count(mocked) == 0
        await provider.close()


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


class TestPrice:
    async def test_price_from_token_list(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", "2000.10")])

            price = await market.price("eth")

        assert price == _d("2000.10")

    async def test_binance_fallback_for_unlisted_symbol(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])
            mocked.get(RE_BINANCE_PRICE, payload={"symbol": "ICPUSDT", "price": "12.34000000"})

            price = await market.price("ICP")
            # Cached: no second Binance request registered
            again = await market.price("ICP")

        assert price == Decimal("12.34000000")
        assert again == price

    async def test_unknown_symbol_returns_zero(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])
            mocked.get(RE_BINANCE_PRICE, status=400, body='{"code":-1121,"msg":"Invalid symbol."}')

            price = await market.price("UNKNOWN_SYMBOL")

        assert price == 0

    async def test_malformed_binance_price_returns_zero(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])
            mocked.get(RE_BINANCE_PRICE, payload={"price": "not-a-number"})

            assert await market.price("ICP") == 0

    async def test_empty_symbol_returns_zero(self, market):
        assert await market.price("  ") == 0


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    async def test_local_match_skips_remote_search(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000, "Ethereum")])

            hits = await market.search_tokens("ether")
            requests = _request_count(mocked)

        assert [t.symbol for t in hits] == ["ETH"]
        assert requests == 1

    async def test_remote_search_fallback(self, market):
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])
            mocked.get(
                RE_CG_SEARCH,
                payload={
                    "coins": [
                        {"id": "internet-computer", "symbol": "ICP", "name": "Internet Computer"},
                        {"id": "icp-wrapped", "symbol": "icp", "name": "Wrapped ICP"},
                    ]
                },
            )

            hits = await market.search_tokens("internet")

        assert len(hits) == 1
        assert hits[0].id == "internet-computer"
        assert hits[0].price_usd == 0

    async def test_blank_query_returns_nothing(self, market):
        assert await market.search_tokens("   ") == []


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimit:
    async def test_budget_exhaustion_degrades_to_zero(self, engine_env, cache):
        engine_env.providers["market_data"]["max_requests_per_minute"] = 1
        provider = MarketDataProvider(cache)
        with aioresponses() as mocked:
            mocked.get(RE_CG_MARKETS, payload=[_cg_market("ETH", 2000)])
            mocked.get(RE_BINANCE_PRICE, payload={"price": "12.0"})

            assert len(await provider.list_tokens()) == 1
            assert await provider.price("ICP") == 0
            assert _request_count(mocked) == 1
        await provider.close()


# ---------------------------------------------------------------------------
# Record mapping
# ---------------------------------------------------------------------------


class TestMapping:
    def test_coingecko_record_missing_id_is_skipped(self):
        assert map_coingecko_market({"symbol": "eth"}) is None

    def test_coingecko_blank_symbol_is_skipped(self):
        assert map_coingecko_market({"id": "x", "symbol": "  "}) is None

    def test_coingecko_null_price_maps_to_zero(self):
        token = map_coingecko_market({"id": "x", "symbol": "new", "current_price": None})
        assert token is not None
        assert token.price_usd == 0
        assert token.market_cap_usd is None

    def test_coincap_bad_number_is_skipped(self):
        assert map_coincap_asset({"id": "x", "symbol": "X", "priceUsd": "abc"}) is None
