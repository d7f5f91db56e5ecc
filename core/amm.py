"""
Constant-product AMM math.

Pure functions, no I/O. Used only when an actual pool with known reserves
is available; market-price estimates never pass through here.

    amount_in_with_fee = amount_in * (1 - fee)
    expected_out       = amount_in_with_fee * reserve_out / (reserve_in + amount_in_with_fee)
    price_impact_pct   = amount_in / reserve_in * 100
    minimum_received   = expected_out * (1 - slippage_pct / 100)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from shared.constants import HUNDRED, MAX_SLIPPAGE_PCT, ZERO
from shared.errors import DegeneratePoolError, InvalidRequestError
from shared.types import LiquidityPool, apply_slippage


@dataclass(frozen=True)
class AmmResult:
    amount_in_with_fee: Decimal
    expected_out: Decimal
    price_impact_pct: Decimal
    minimum_received: Decimal
    fee_amount: Decimal  # Protocol fee, denominated in the input token
    rate: Decimal


def constant_product_out(
    amount_in: Decimal,
    reserve_in: Decimal,
    reserve_out: Decimal,
    fee_fraction: Decimal,
) -> Decimal:
    """Output amount for ``amount_in`` against fixed reserves."""
    if reserve_in <= 0 or reserve_out <= 0:
        raise DegeneratePoolError(
            f"Degenerate reserves (in={reserve_in}, out={reserve_out})"
        )
    if amount_in < 0:
        raise InvalidRequestError(f"amount_in must be non-negative, got {amount_in}")
    if not ZERO <= fee_fraction < 1:
        raise InvalidRequestError(f"fee_fraction must be in [0, 1), got {fee_fraction}")

    amount_in_with_fee = amount_in * (1 - fee_fraction)
    return (amount_in_with_fee * reserve_out) / (reserve_in + amount_in_with_fee)


def calculate_swap(
    pool: LiquidityPool,
    from_symbol: str,
    to_symbol: str,
    amount_in: Decimal,
    slippage_pct: Decimal,
) -> AmmResult:
    """
    Quote a trade of ``amount_in`` ``from_symbol`` against ``pool``.

    Raises ``DegeneratePoolError`` for a zero reserve on either side and
    ``InvalidRequestError`` for negative inputs or a pair the pool does
    not hold.
    """
    try:
        reserve_in, reserve_out = pool.reserves_for(from_symbol, to_symbol)
    except KeyError as exc:
        raise InvalidRequestError(str(exc)) from exc

    if not ZERO <= slippage_pct < MAX_SLIPPAGE_PCT:
        raise InvalidRequestError(f"slippage_pct must be in [0, 100), got {slippage_pct}")

    expected_out = constant_product_out(amount_in, reserve_in, reserve_out, pool.fee_fraction)
    amount_in_with_fee = amount_in * (1 - pool.fee_fraction)

    return AmmResult(
        amount_in_with_fee=amount_in_with_fee,
        expected_out=expected_out,
        price_impact_pct=amount_in / reserve_in * HUNDRED,
        minimum_received=apply_slippage(expected_out, slippage_pct),
        fee_amount=amount_in - amount_in_with_fee,
        rate=expected_out / amount_in if amount_in > 0 else ZERO,
    )
