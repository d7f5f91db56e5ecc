"""
Shared data types for the swap quote engine.

Centralized dataclasses and enums used across all modules. Model objects
are frozen: callers receive immutable values they cannot corrupt.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any

_HUNDRED = Decimal("100")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QuoteProvider(Enum):
    ORDER_ROUTER = "1inch"  # External aggregator router (freshest executable price)
    ICDEX = "icdex"  # AMM venue
    SONIC = "sonic"  # AMM venue
    ESTIMATED = "estimated"  # Ratio of two market prices, never cached
    DEGRADED = "degraded"  # Synthetic rate-table quote, never executable

    @property
    def is_amm_venue(self) -> bool:
        return self in (QuoteProvider.ICDEX, QuoteProvider.SONIC)

    @property
    def is_executable(self) -> bool:
        return self is QuoteProvider.ORDER_ROUTER or self.is_amm_venue


class AmmVenue(Enum):
    ICDEX = "icdex"
    SONIC = "sonic"

    @property
    def provider(self) -> QuoteProvider:
        return QuoteProvider(self.value)


class QuotePreference(Enum):
    AUTO = "auto"  # router -> pools -> market estimate
    ORDER_ROUTER = "order_router"  # router -> market estimate
    AMM = "amm"  # pools -> market estimate


class ExecutionState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionState.COMPLETED, ExecutionState.FAILED)


class ErrorKind(Enum):
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NO_LIQUIDITY = "no_liquidity"
    INVALID_REQUEST = "invalid_request"
    STALE_QUOTE = "stale_quote"
    DEGENERATE_POOL = "degenerate_pool"
    EXECUTION_FAILED = "execution_failed"


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    id: str
    symbol: str  # Uppercased; identity across providers
    name: str
    price_usd: Decimal
    change_24h_pct: Decimal
    market_cap_usd: Decimal | None = None
    volume_24h_usd: Decimal | None = None
    image_url: str | None = None
    address: str | None = None  # Contract address / canister id, venue specific
    decimals: int | None = None
    source: str | None = None  # Adapter that produced this entry

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", self.symbol.upper())


@dataclass(frozen=True)
class LiquidityPool:
    id: str
    venue: AmmVenue
    token_a: str
    token_b: str
    reserve_a: Decimal
    reserve_b: Decimal
    fee_fraction: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "token_a", self.token_a.upper())
        object.__setattr__(self, "token_b", self.token_b.upper())

    @property
    def is_valid(self) -> bool:
        return self.reserve_a > 0 and self.reserve_b > 0

    def holds(self, symbol: str) -> bool:
        return symbol.upper() in (self.token_a, self.token_b)

    def reserves_for(self, from_symbol: str, to_symbol: str) -> tuple[Decimal, Decimal]:
        """Return ``(reserve_in, reserve_out)`` for a trade direction."""
        pair = (from_symbol.upper(), to_symbol.upper())
        if pair == (self.token_a, self.token_b):
            return self.reserve_a, self.reserve_b
        if pair == (self.token_b, self.token_a):
            return self.reserve_b, self.reserve_a
        raise KeyError(f"Pool {self.id} does not hold {pair[0]}/{pair[1]}")


# ---------------------------------------------------------------------------
# Quote Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeBreakdown:
    network: Decimal = Decimal("0")
    protocol: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.network + self.protocol


@dataclass(frozen=True)
class SwapQuote:
    from_token: str
    to_token: str
    from_amount: Decimal
    to_amount: Decimal
    rate: Decimal
    price_impact_pct: Decimal
    fees: FeeBreakdown
    slippage_pct: Decimal
    minimum_received: Decimal
    provider: QuoteProvider
    estimated_time_label: str
    timestamp: float  # Epoch seconds
    gas_estimate: int = 0
    pool_id: str | None = None

    @classmethod
    def build(
        cls,
        *,
        from_token: str,
        to_token: str,
        from_amount: Decimal,
        to_amount: Decimal,
        slippage_pct: Decimal,
        provider: QuoteProvider,
        estimated_time_label: str,
        price_impact_pct: Decimal = Decimal("0"),
        fees: FeeBreakdown | None = None,
        gas_estimate: int = 0,
        pool_id: str | None = None,
        timestamp: float | None = None,
    ) -> SwapQuote:
        """Construct a quote deriving ``rate`` and ``minimum_received``."""
        rate = to_amount / from_amount if from_amount > 0 else Decimal("0")
        return cls(
            from_token=from_token.upper(),
            to_token=to_token.upper(),
            from_amount=from_amount,
            to_amount=to_amount,
            rate=rate,
            price_impact_pct=price_impact_pct,
            fees=fees or FeeBreakdown(),
            slippage_pct=slippage_pct,
            minimum_received=apply_slippage(to_amount, slippage_pct),
            provider=provider,
            estimated_time_label=estimated_time_label,
            timestamp=time.time() if timestamp is None else timestamp,
            gas_estimate=gas_estimate,
            pool_id=pool_id,
        )

    def with_slippage(self, slippage_pct: Decimal) -> SwapQuote:
        """Copy of this quote re-derived for another slippage tolerance."""
        if slippage_pct == self.slippage_pct:
            return self
        return replace(
            self,
            slippage_pct=slippage_pct,
            minimum_received=apply_slippage(self.to_amount, slippage_pct),
        )

    def age_seconds(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromToken": self.from_token,
            "toToken": self.to_token,
            "fromAmount": str(self.from_amount),
            "toAmount": str(self.to_amount),
            "rate": str(self.rate),
            "priceImpactPct": str(self.price_impact_pct),
            "fees": {"network": str(self.fees.network), "protocol": str(self.fees.protocol)},
            "slippagePct": str(self.slippage_pct),
            "minimumReceived": str(self.minimum_received),
            "provider": self.provider.value,
            "estimatedTime": self.estimated_time_label,
            "gasEstimate": self.gas_estimate,
            "poolId": self.pool_id,
            "timestamp": self.timestamp,
        }


def apply_slippage(to_amount: Decimal, slippage_pct: Decimal) -> Decimal:
    return to_amount * (1 - slippage_pct / _HUNDRED)


@dataclass(frozen=True)
class QuoteResult:
    quote: SwapQuote | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.quote is not None


# ---------------------------------------------------------------------------
# Cache Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float  # Clock reading at set() time (seconds)

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.stored_at < ttl_seconds


# ---------------------------------------------------------------------------
# Swap / Execution Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwapReceipt:
    success: bool
    state: ExecutionState
    provider: QuoteProvider | None = None
    tx_id: str | None = None
    to_amount: Decimal | None = None  # Realized amount, may differ from the quote
    error: str | None = None
    error_kind: ErrorKind | None = None
    transaction_data: dict[str, Any] | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SwapRecord:
    id: str
    wallet: str
    from_token: str
    to_token: str
    from_amount: Decimal
    to_amount: Decimal | None
    provider: QuoteProvider
    status: ExecutionState
    tx_id: str | None
    error: str | None
    timestamp: float
