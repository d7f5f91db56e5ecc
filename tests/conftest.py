"""
Shared pytest configuration and fixtures for the swap quote engine tests.

Provides standard mock configs, a patched config/logger environment for
every engine module, and token/pool/quote factories.
"""

from __future__ import annotations

import copy
from contextlib import ExitStack
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from core.cache import TTLCache
from shared.types import AmmVenue, LiquidityPool, QuoteProvider, SwapQuote, Token

# ---------------------------------------------------------------------------
# Decimal helper
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    """Shorthand Decimal factory."""
    return Decimal(str(v))


# ---------------------------------------------------------------------------
# Endpoints and identities used across tests
# ---------------------------------------------------------------------------

COINGECKO_URL = "https://api.coingecko.com/api/v3"
COINCAP_URL = "https://api.coincap.io/v2"
BINANCE_URL = "https://api.binance.com"
ICDEX_URL = "https://api.icdex.io"
SONIC_URL = "https://api.sonic.ooo"
ROUTER_URL = "https://api.1inch.dev/swap/v6.0/1"

SAMPLE_WALLET = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
SAMPLE_ROUTER_ADDRESS = "0x111111125421cA6dc452d289314280a0f8842A65"
ETH_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

# ---------------------------------------------------------------------------
# Standard mock configs (can be overridden per test via the fixture)
# ---------------------------------------------------------------------------

STANDARD_PROVIDERS_CONFIG = {
    "market_data": {
        "enabled": True,
        "base_url": COINGECKO_URL,
        "api_key_env": "",
        "vs_currency": "usd",
        "per_page": 2,
        "max_pages": 2,
        "max_requests_per_minute": 100,
        "secondary": {
            "coincap_base_url": COINCAP_URL,
            "coincap_limit": 100,
            "binance_base_url": BINANCE_URL,
            "binance_quote_asset": "USDT",
        },
    },
    "liquidity": {
        "enabled": True,
        "max_pages": 3,
        "stable_symbol": "USDC",
        "venues": {
            "icdex": {
                "base_url": ICDEX_URL,
                "default_fee_fraction": "0.003",
                "network_fee": "0.0001",
            },
            "sonic": {
                "base_url": SONIC_URL,
                "default_fee_fraction": "0.003",
                "network_fee": "0.0001",
            },
        },
    },
    "order_router": {
        "enabled": True,
        "name": "1inch",
        "base_url": ROUTER_URL,
        "api_key_env": "",
        "rate_limit_rps": 1000,
        "stable_symbol": "USDC",
        "default_gas_estimate": 150000,
        "default_rates": {"ETH/USDC": "2000", "USDC/ETH": "0.0005"},
    },
}

STANDARD_TIMING_CONFIG = {
    "cache": {"ttl_seconds": 30, "max_entries": 1000},
    "http": {"request_timeout_seconds": 5},
    "execution": {"confirmation_timeout_seconds": 5, "confirmation_poll_seconds": 0},
}

STANDARD_EXECUTION_CONFIG = {
    "dry_run": True,
    "quote_ttl_seconds": 30,
    "default_slippage_pct": "1.0",
    "allow_degraded_quotes": True,
    "fees": {"order_router": {"network": "0.001", "protocol": "0.003"}},
    "estimated_time_labels": {
        "1inch": "30s-5min",
        "icdex": "2-10s",
        "sonic": "2-10s",
        "estimated": "unknown",
        "degraded": "unknown",
    },
}

# Modules that read config / create loggers at construction time
_CONFIG_CONSUMERS = (
    "providers.market_data",
    "providers.liquidity",
    "providers.order_router",
    "core.quote_aggregator",
    "core.swap_service",
    "execution.swap_executor",
)
_LOGGER_CONSUMERS = (
    "providers.market_data",
    "providers.liquidity",
    "providers.order_router",
    "core.token_registry",
    "core.quote_aggregator",
    "core.swap_service",
    "execution.swap_executor",
)


# ---------------------------------------------------------------------------
# Config loader fixture (patched singleton)
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.providers["order_router"]["rate_limit_rps"] = 2
    """
    loader = MagicMock()
    loader.providers = copy.deepcopy(STANDARD_PROVIDERS_CONFIG)
    loader.timing = copy.deepcopy(STANDARD_TIMING_CONFIG)
    loader.execution = copy.deepcopy(STANDARD_EXECUTION_CONFIG)
    loader.get_providers_config.side_effect = lambda: loader.providers
    loader.get_provider_config.side_effect = lambda name: loader.providers.get(name, {})
    loader.get_timing_config.side_effect = lambda: loader.timing
    loader.get_execution_config.side_effect = lambda: loader.execution
    loader.get_app_config.return_value = {"logging": {"module_folders": {}}}
    return loader


@pytest.fixture
def engine_env(mock_config_loader):
    """Patch get_config and setup_module_logger in every engine module."""
    with ExitStack() as stack:
        for module in _CONFIG_CONSUMERS:
            stack.enter_context(patch(f"{module}.get_config", return_value=mock_config_loader))
        for module in _LOGGER_CONSUMERS:
            stack.enter_context(patch(f"{module}.setup_module_logger", return_value=MagicMock()))
        yield mock_config_loader


@pytest.fixture(autouse=True)
def _silence_deep_dive_logger():
    """Keep deep-dive JSON traces out of logs/ during tests."""
    with patch("engine_logging.logger_manager.get_deep_dive_logger", return_value=MagicMock()):
        yield


@pytest.fixture
def cache():
    return TTLCache(ttl_seconds=30)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_token(symbol: str, price: str | int = 0, **kwargs) -> Token:
    return Token(
        id=kwargs.pop("id", symbol.lower()),
        symbol=symbol,
        name=kwargs.pop("name", symbol.title()),
        price_usd=_d(price),
        change_24h_pct=_d(kwargs.pop("change", 0)),
        **kwargs,
    )


def make_pool(
    token_a: str = "ICP",
    token_b: str = "USDC",
    reserve_a: str | int = 500000,
    reserve_b: str | int = 500000,
    fee: str = "0.003",
    venue: AmmVenue = AmmVenue.ICDEX,
    pool_id: str | None = None,
) -> LiquidityPool:
    return LiquidityPool(
        id=pool_id or f"{venue.value}_{token_a}_{token_b}",
        venue=venue,
        token_a=token_a,
        token_b=token_b,
        reserve_a=_d(reserve_a),
        reserve_b=_d(reserve_b),
        fee_fraction=_d(fee),
    )


def make_quote(
    provider: QuoteProvider = QuoteProvider.ORDER_ROUTER,
    from_token: str = "ETH",
    to_token: str = "USDC",
    from_amount: str | int = 1,
    to_amount: str | int = 2000,
    slippage: str | int = 1,
    timestamp: float | None = None,
    pool_id: str | None = None,
) -> SwapQuote:
    return SwapQuote.build(
        from_token=from_token,
        to_token=to_token,
        from_amount=_d(from_amount),
        to_amount=_d(to_amount),
        slippage_pct=_d(slippage),
        provider=provider,
        estimated_time_label="test",
        timestamp=timestamp,
        pool_id=pool_id,
    )
