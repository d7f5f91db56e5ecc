"""
Shared constants for the swap quote engine.

Numeric constants and default values used across all modules when a
config key is missing.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

ZERO = Decimal("0")
HUNDRED = Decimal("100")
QUOTE_AMOUNT_PRECISION = Decimal("0.00000001")  # Cache-key rounding for amounts

# ---------------------------------------------------------------------------
# Provider Endpoints (defaults; overridden by config/providers.json)
# ---------------------------------------------------------------------------

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
COINCAP_BASE_URL = "https://api.coincap.io/v2"
BINANCE_SPOT_BASE_URL = "https://api.binance.com"
ICDEX_BASE_URL = "https://api.icdex.io"
SONIC_BASE_URL = "https://api.sonic.ooo"
ORDER_ROUTER_BASE_URL = "https://api.1inch.dev/swap/v6.0/1"

# Native-asset placeholder used by 1inch-style routers
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
ZERO_ADDRESS = "0x" + "00" * 20

# ---------------------------------------------------------------------------
# Default Timing Values
# ---------------------------------------------------------------------------

DEFAULT_CACHE_TTL_SECONDS = 30
DEFAULT_HTTP_TIMEOUT_SECONDS = 10
DEFAULT_QUOTE_TTL_SECONDS = 30
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 60
DEFAULT_CONFIRMATION_POLL_SECONDS = 1

# ---------------------------------------------------------------------------
# Default Provider Values
# ---------------------------------------------------------------------------

DEFAULT_MAX_PAGES = 2
DEFAULT_PAGE_SIZE = 250
DEFAULT_MAX_REQUESTS_PER_MINUTE = 30
DEFAULT_ROUTER_RATE_LIMIT_RPS = 1
DEFAULT_POOL_FEE_FRACTION = Decimal("0.003")
DEFAULT_ROUTER_GAS_ESTIMATE = 150_000
DEFAULT_STABLE_SYMBOL = "USDC"
DEFAULT_TOKEN_DECIMALS = 18

# ---------------------------------------------------------------------------
# Default Quote Values
# ---------------------------------------------------------------------------

DEFAULT_DRY_RUN = True
DEFAULT_SLIPPAGE_PCT = Decimal("1.0")
MAX_SLIPPAGE_PCT = Decimal("100")
DEFAULT_TIME_LABEL = "unknown"
USER_AGENT = "swap-quote-engine/1.0"
