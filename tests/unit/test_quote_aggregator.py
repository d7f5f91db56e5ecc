"""
Unit tests for core/quote_aggregator.py.

Adapters are replaced with AsyncMocks; the cache and registry are real.
Tests verify request validation, the router -> pools -> market fallback
order, caching rules per provider, slippage re-derivation on cache hits,
deepest-pool selection, provider preferences, the DEGRADED last resort,
and independence of concurrent requests.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.quote_aggregator import QuoteAggregator
from core.token_registry import TokenRegistry
from shared.errors import InvalidRequestError, NoLiquidityError
from shared.types import AmmVenue, QuotePreference, QuoteProvider
from tests.conftest import _d, make_pool, make_quote, make_token

TOLERANCE = _d("0.0001")


def _prices(table: dict[str, str]):
    async def price(symbol: str):
        return _d(table.get(symbol, 0))

    return price


@pytest.fixture
def adapters():
    router = MagicMock()
    router.quote = AsyncMock(return_value=None)

    liquidity = MagicMock()
    liquidity.find_pools = AsyncMock(return_value=[])
    liquidity.network_fee.return_value = _d("0.0001")

    market = MagicMock()
    market.price = AsyncMock(return_value=_d(0))

    return SimpleNamespace(router=router, liquidity=liquidity, market=market)


@pytest.fixture
def registry(engine_env):
    return TokenRegistry()


def _make_aggregator(cache, adapters, registry):
    return QuoteAggregator(cache, adapters.router, adapters.liquidity, adapters.market, registry)


@pytest.fixture
def aggregator(engine_env, cache, adapters, registry):
    return _make_aggregator(cache, adapters, registry)


# ---------------------------------------------------------------------------
# A. Request validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        "from_symbol, to_symbol, amount, slippage",
        [
            ("ETH", "ETH", "1", "1"),
            ("eth", "ETH", "1", "1"),
            ("", "USDC", "1", "1"),
            ("ETH", "   ", "1", "1"),
            (None, "USDC", "1", "1"),
            ("ETH", "USDC", "0", "1"),
            ("ETH", "USDC", "-5", "1"),
            ("ETH", "USDC", "abc", "1"),
            ("ETH", "USDC", "NaN", "1"),
            ("ETH", "USDC", "Infinity", "1"),
            ("ETH", "USDC", "1", "100"),
            ("ETH", "USDC", "1", "-0.1"),
        ],
    )
    async def test_invalid_requests_rejected(
        self, aggregator, adapters, from_symbol, to_symbol, amount, slippage
    ):
        with pytest.raises(InvalidRequestError):
            await aggregator.get_quote(from_symbol, to_symbol, amount, slippage)

        adapters.router.quote.assert_not_awaited()
        adapters.liquidity.find_pools.assert_not_awaited()

    async def test_invalid_request_is_value_error(self, aggregator):
        with pytest.raises(ValueError):
            await aggregator.get_quote("ETH", "USDC", 0)

    async def test_symbols_normalized(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote()
        await aggregator.get_quote(" eth ", "usdc", "1")
        args = adapters.router.quote.await_args.args
        assert args[:2] == ("ETH", "USDC")


# ---------------------------------------------------------------------------
# B. Fallback chain
# ---------------------------------------------------------------------------


class TestFallbackChain:
    async def test_router_quote_wins(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote(to_amount=2000)
        adapters.liquidity.find_pools.return_value = [make_pool("ETH", "USDC", 100, 200000)]

        quote = await aggregator.get_quote("ETH", "USDC", 1, 1)

        assert quote.provider is QuoteProvider.ORDER_ROUTER
        adapters.liquidity.find_pools.assert_not_awaited()

    async def test_pool_quote_when_router_has_nothing(self, aggregator, adapters):
        adapters.liquidity.find_pools.return_value = [make_pool()]

        quote = await aggregator.get_quote("ICP", "USDC", 1000, 1)

        assert quote.provider is QuoteProvider.ICDEX
        assert quote.pool_id == "icdex_ICP_USDC"
        assert abs(quote.to_amount - _d("995.0159")) < TOLERANCE
        assert abs(quote.minimum_received - _d("985.0658")) < TOLERANCE
        assert quote.price_impact_pct == _d("0.2")
        assert quote.fees.protocol == _d(3)
        assert quote.fees.network == _d("0.0001")
        assert quote.estimated_time_label == "2-10s"

    async def test_degraded_router_quote_falls_through_to_pools(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote(
            provider=QuoteProvider.DEGRADED, from_token="ICP", to_token="USDC"
        )
        adapters.liquidity.find_pools.return_value = [make_pool(venue=AmmVenue.SONIC)]

        quote = await aggregator.get_quote("ICP", "USDC", 10, 1)

        assert quote.provider is QuoteProvider.SONIC

    async def test_zero_rate_router_quote_ignored(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote(to_amount=0)
        adapters.liquidity.find_pools.return_value = [make_pool("ETH", "USDC", 100, 200000)]

        quote = await aggregator.get_quote("ETH", "USDC", 1, 1)

        assert quote.provider is QuoteProvider.ICDEX

    async def test_market_estimate_when_no_pools(self, aggregator, adapters):
        adapters.market.price.side_effect = _prices({"ETH": "2000", "USDC": "1"})

        quote = await aggregator.get_quote("ETH", "USDC", 2, 1)

        assert quote.provider is QuoteProvider.ESTIMATED
        assert quote.to_amount == _d(4000)
        assert quote.pool_id is None

    async def test_empty_pools_filtered_before_selection(self, aggregator, adapters):
        adapters.liquidity.find_pools.return_value = [make_pool(reserve_b=0)]
        adapters.market.price.side_effect = _prices({"ICP": "12", "USDC": "1"})

        quote = await aggregator.get_quote("ICP", "USDC", 1, 1)

        assert quote.provider is QuoteProvider.ESTIMATED

    async def test_no_source_raises_no_liquidity(self, aggregator):
        with pytest.raises(NoLiquidityError):
            await aggregator.get_quote("FOO", "BAR", 1, 1)

    async def test_one_unknown_price_raises_no_liquidity(self, aggregator, adapters):
        adapters.market.price.side_effect = _prices({"ETH": "2000"})
        with pytest.raises(NoLiquidityError):
            await aggregator.get_quote("ETH", "UNKNOWN_SYMBOL", 1, 1)

    async def test_degraded_returned_by_default(self, aggregator, adapters, cache):
        adapters.router.quote.return_value = make_quote(provider=QuoteProvider.DEGRADED)

        quote = await aggregator.get_quote("ETH", "USDC", 1, 1)
        await aggregator.get_quote("ETH", "USDC", 1, 1)

        assert quote.provider is QuoteProvider.DEGRADED
        assert not quote.provider.is_executable
        # Never cached: the router is asked again
        assert adapters.router.quote.await_count == 2
        key = aggregator._get_cache_key("ETH", "USDC", _d(1), QuotePreference.AUTO)
        assert cache.get(key) is None

    async def test_degraded_withheld_when_disabled(self, engine_env, cache, adapters, registry):
        engine_env.execution["allow_degraded_quotes"] = False
        aggregator = _make_aggregator(cache, adapters, registry)
        adapters.router.quote.return_value = make_quote(provider=QuoteProvider.DEGRADED)

        with pytest.raises(NoLiquidityError):
            await aggregator.get_quote("ETH", "USDC", 1, 1)

    async def test_sources_consulted_sequentially_in_order(self, aggregator, adapters):
        calls: list[str] = []

        async def router_quote(*args):
            calls.append("router")
            return None

        async def find_pools(*args):
            calls.append("pools")
            return []

        async def price(symbol):
            calls.append(f"price:{symbol}")
            return _d(1)

        adapters.router.quote.side_effect = router_quote
        adapters.liquidity.find_pools.side_effect = find_pools
        adapters.market.price.side_effect = price

        await aggregator.get_quote("AAA", "BBB", 1, 1)

        assert calls[:2] == ["router", "pools"]
        assert sorted(calls[2:]) == ["price:AAA", "price:BBB"]


# ---------------------------------------------------------------------------
# C. Caching
# ---------------------------------------------------------------------------


class TestCaching:
    async def test_router_quote_cached(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote()

        first = await aggregator.get_quote("ETH", "USDC", 1, 1)
        second = await aggregator.get_quote("ETH", "USDC", "1.0", 1)

        assert first == second
        assert adapters.router.quote.await_count == 1

    async def test_pool_quote_cached(self, aggregator, adapters):
        adapters.liquidity.find_pools.return_value = [make_pool()]

        await aggregator.get_quote("ICP", "USDC", 10, 1)
        await aggregator.get_quote("ICP", "USDC", 10, 1)

        assert adapters.liquidity.find_pools.await_count == 1

    async def test_cache_hit_rederives_minimum_for_new_slippage(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote(to_amount=2000, slippage=1)

        tight = await aggregator.get_quote("ETH", "USDC", 1, 1)
        loose = await aggregator.get_quote("ETH", "USDC", 1, 5)

        assert tight.minimum_received == _d(1980)
        assert loose.minimum_received == _d(1900)
        assert loose.slippage_pct == _d(5)
        assert loose.to_amount == tight.to_amount
        assert adapters.router.quote.await_count == 1

    async def test_estimated_quote_not_cached(self, aggregator, adapters):
        adapters.market.price.side_effect = _prices({"ETH": "2000", "USDC": "1"})

        await aggregator.get_quote("ETH", "USDC", 1, 1)
        await aggregator.get_quote("ETH", "USDC", 1, 1)

        assert adapters.router.quote.await_count == 2
        assert adapters.market.price.await_count == 4

    async def test_different_amounts_cached_separately(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote()

        await aggregator.get_quote("ETH", "USDC", 1, 1)
        await aggregator.get_quote("ETH", "USDC", 2, 1)

        assert adapters.router.quote.await_count == 2


# ---------------------------------------------------------------------------
# D. Pool selection
# ---------------------------------------------------------------------------


class TestPoolSelection:
    async def test_deepest_pool_by_raw_reserves(self, aggregator, adapters):
        adapters.liquidity.find_pools.return_value = [
            make_pool(reserve_a=1000, reserve_b=1000, pool_id="shallow"),
            make_pool(reserve_a=90000, reserve_b=90000, venue=AmmVenue.SONIC, pool_id="deep"),
        ]

        quote = await aggregator.get_quote("ICP", "USDC", 10, 1)

        assert quote.pool_id == "deep"
        assert quote.provider is QuoteProvider.SONIC

    async def test_deepest_pool_by_usd_value_when_prices_known(
        self, aggregator, adapters, registry
    ):
        registry.rebuild([[make_token("ICP", 12), make_token("USDC", 1)]])
        adapters.liquidity.find_pools.return_value = [
            # Raw 101000, USD 112000
            make_pool(reserve_a=1000, reserve_b=100000, pool_id="usdc_heavy"),
            # Raw 18000, USD 117000
            make_pool(reserve_a=9000, reserve_b=9000, venue=AmmVenue.SONIC, pool_id="icp_heavy"),
        ]

        quote = await aggregator.get_quote("ICP", "USDC", 10, 1)

        assert quote.pool_id == "icp_heavy"


# ---------------------------------------------------------------------------
# E. Preferences
# ---------------------------------------------------------------------------


class TestPreferences:
    async def test_amm_preference_skips_router(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote(from_token="ICP")
        adapters.liquidity.find_pools.return_value = [make_pool()]

        quote = await aggregator.get_quote("ICP", "USDC", 10, 1, QuotePreference.AMM)

        assert quote.provider is QuoteProvider.ICDEX
        adapters.router.quote.assert_not_awaited()

    async def test_router_preference_skips_pools(self, aggregator, adapters):
        adapters.liquidity.find_pools.return_value = [make_pool()]
        adapters.market.price.side_effect = _prices({"ICP": "12", "USDC": "1"})

        quote = await aggregator.get_quote("ICP", "USDC", 10, 1, QuotePreference.ORDER_ROUTER)

        assert quote.provider is QuoteProvider.ESTIMATED
        adapters.liquidity.find_pools.assert_not_awaited()

    async def test_preferences_do_not_share_cache_entries(self, aggregator, adapters):
        adapters.router.quote.return_value = make_quote(from_token="ICP")
        adapters.liquidity.find_pools.return_value = [make_pool()]

        auto = await aggregator.get_quote("ICP", "USDC", 10, 1)
        amm = await aggregator.get_quote("ICP", "USDC", 10, 1, QuotePreference.AMM)

        assert auto.provider is QuoteProvider.ORDER_ROUTER
        assert amm.provider is QuoteProvider.ICDEX


# ---------------------------------------------------------------------------
# F. Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    async def test_concurrent_reciprocal_quotes_are_independent(self, aggregator, adapters):
        adapters.liquidity.find_pools.return_value = [make_pool(reserve_a=1000, reserve_b=12000)]

        forward, backward = await asyncio.gather(
            aggregator.get_quote("ICP", "USDC", 10, 1),
            aggregator.get_quote("USDC", "ICP", 10, 1),
        )

        assert (forward.from_token, forward.to_token) == ("ICP", "USDC")
        assert (backward.from_token, backward.to_token) == ("USDC", "ICP")
        assert forward.to_amount > _d(100)
        assert backward.to_amount < _d(1)
