"""
Error taxonomy for the swap quote engine.

Only ``ProviderUnavailableError`` is recovered automatically (by falling
back to the next provider or a sentinel value). Every other kind reaches
the caller of ``SwapService`` as a typed result.
"""

from __future__ import annotations

from shared.types import ErrorKind


class SwapEngineError(Exception):
    """Base error for all engine failures."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST


class ProviderUnavailableError(SwapEngineError):
    """Raised when a provider cannot be reached or answers with garbage."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class NoLiquidityError(SwapEngineError):
    """Raised when no pool and no price data exist for a pair."""

    kind = ErrorKind.NO_LIQUIDITY


class InvalidRequestError(SwapEngineError, ValueError):
    """Raised for non-positive amounts, identical tokens, bad slippage."""

    kind = ErrorKind.INVALID_REQUEST


class StaleQuoteError(SwapEngineError):
    """Raised when execution is attempted against an expired quote."""

    kind = ErrorKind.STALE_QUOTE


class DegeneratePoolError(SwapEngineError, ZeroDivisionError):
    """Raised when a pool with a zero reserve reaches the AMM calculator."""

    kind = ErrorKind.DEGENERATE_POOL


class ExecutionFailedError(SwapEngineError):
    """Raised when a submitted swap reverts or its venue reports failure."""

    kind = ErrorKind.EXECUTION_FAILED
