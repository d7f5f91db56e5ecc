"""
Swap execution for quotes produced by the aggregator.

State machine per execution:
    IDLE -> VALIDATING -> SUBMITTING -> CONFIRMING -> COMPLETED | FAILED

Router quotes are turned into an unsigned transaction by the order router
and handed to a ``TransactionRelay`` (signing and broadcasting live outside
this package). Pool quotes are executed through the liquidity adapter,
which re-reads the pool so the realized amount may differ from the quote.

Usage:
    executor = SwapExecutor(order_router, liquidity, relay=DryRunRelay())
    receipt = await executor.execute(quote, wallet)
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, Protocol
from uuid import uuid4

from config.loader import get_config
from engine_logging.logger_manager import setup_module_logger
from providers.base import to_decimal
from providers.liquidity import LiquidityProvider
from providers.order_router import OrderRouterProvider
from shared.constants import (
    DEFAULT_CONFIRMATION_POLL_SECONDS,
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_QUOTE_TTL_SECONDS,
)
from shared.errors import (
    ExecutionFailedError,
    InvalidRequestError,
    ProviderUnavailableError,
    StaleQuoteError,
    SwapEngineError,
)
from shared.types import (
    ErrorKind,
    ExecutionState,
    QuoteProvider,
    SwapQuote,
    SwapReceipt,
    SwapRecord,
)

# ---------------------------------------------------------------------------
# Transaction relay
# ---------------------------------------------------------------------------


class TransactionRelay(Protocol):
    """Signs and broadcasts router transactions on behalf of a wallet."""

    async def submit(self, payload: dict[str, Any], wallet: str) -> str:
        """Broadcast ``payload``; return the transaction id."""
        ...

    async def get_receipt(self, tx_id: str) -> dict[str, Any] | None:
        """Receipt with ``status`` (1 ok, 0 reverted), or None while pending."""
        ...


class DryRunRelay:
    """Relay that logs payloads and confirms them immediately. Nothing is signed."""

    def __init__(self) -> None:
        self._submitted: dict[str, dict[str, Any]] = {}
        self._logger = setup_module_logger(
            "swap_executor", "swap_executor.log", module_folder="Swap_Executor_Logs"
        )

    async def submit(self, payload: dict[str, Any], wallet: str) -> str:
        body = json.dumps(
            {"wallet": wallet, "payload": payload, "nonce": uuid4().hex},
            sort_keys=True,
            default=str,
        )
        digest = hashlib.sha256(body.encode()).hexdigest()
        tx_id = f"dryrun_0x{digest[:40]}"
        self._submitted[tx_id] = payload
        self._logger.info("[DRY RUN] Would submit tx from %s: %s", wallet, payload)
        return tx_id

    async def get_receipt(self, tx_id: str) -> dict[str, Any] | None:
        payload = self._submitted.get(tx_id)
        if payload is None:
            return None
        return {
            "status": 1,
            "transactionHash": tx_id,
            "toAmount": payload.get("expectedToAmount"),
        }


# ---------------------------------------------------------------------------
# Execution tracking
# ---------------------------------------------------------------------------


class SwapExecution:
    """Mutable progress of one swap through the execution state machine."""

    def __init__(self, quote: SwapQuote, wallet: str) -> None:
        self.quote = quote
        self.wallet = wallet
        self.state = ExecutionState.IDLE
        self.transitions: list[ExecutionState] = [ExecutionState.IDLE]
        self.tx_id: str | None = None
        self.to_amount: Decimal | None = None
        self.transaction_data: dict[str, Any] | None = None
        self.error: str | None = None
        self.error_kind: ErrorKind | None = None

    def advance(self, state: ExecutionState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Execution already {self.state.value}")
        self.state = state
        self.transitions.append(state)

    def fail(self, exc: SwapEngineError) -> None:
        self.error = str(exc)
        self.error_kind = exc.kind
        self.advance(ExecutionState.FAILED)


class SwapHistory:
    """In-memory record of finished executions."""

    def __init__(self) -> None:
        self._records: list[SwapRecord] = []

    def add(self, record: SwapRecord) -> None:
        self._records.append(record)

    def for_wallet(self, wallet: str) -> list[SwapRecord]:
        """Records for ``wallet``, newest first."""
        wallet = wallet.lower()
        return [r for r in reversed(self._records) if r.wallet.lower() == wallet]

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class SwapExecutor:
    """
    Drives a quote through validation, submission and confirmation.

    ``execute`` never raises for engine failures: they end the execution
    in ``FAILED`` and come back on the receipt.
    """

    def __init__(
        self,
        order_router: OrderRouterProvider,
        liquidity: LiquidityProvider,
        relay: TransactionRelay | None = None,
        history: SwapHistory | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._order_router = order_router
        self._liquidity = liquidity
        self._relay = relay
        self.history = history if history is not None else SwapHistory()
        self._clock = clock

        cfg = get_config()
        execution_cfg = cfg.get_execution_config()
        timing_cfg = cfg.get_timing_config().get("execution", {})

        self._quote_ttl = float(execution_cfg.get("quote_ttl_seconds", DEFAULT_QUOTE_TTL_SECONDS))
        self._confirmation_timeout = float(
            timing_cfg.get("confirmation_timeout_seconds", DEFAULT_CONFIRMATION_TIMEOUT_SECONDS)
        )
        self._poll_interval = float(
            timing_cfg.get("confirmation_poll_seconds", DEFAULT_CONFIRMATION_POLL_SECONDS)
        )

        self._logger = setup_module_logger(
            "swap_executor", "swap_executor.log", module_folder="Swap_Executor_Logs"
        )

    async def execute(self, quote: SwapQuote, wallet: str) -> SwapReceipt:
        execution = SwapExecution(quote, wallet)
        try:
            execution.advance(ExecutionState.VALIDATING)
            self._validate(quote, wallet)

            execution.advance(ExecutionState.SUBMITTING)
            venue_result = await self._submit(execution)

            execution.advance(ExecutionState.CONFIRMING)
            await self._confirm(execution, venue_result)

            execution.advance(ExecutionState.COMPLETED)
            self._logger.info(
                "Swap completed: %s %s -> %s %s via %s (tx=%s)",
                quote.from_amount,
                quote.from_token,
                execution.to_amount,
                quote.to_token,
                quote.provider.value,
                execution.tx_id,
            )
        except SwapEngineError as exc:
            execution.fail(exc)
            self._logger.warning(
                "Swap failed (%s) %s -> %s via %s: %s",
                exc.kind.value,
                quote.from_token,
                quote.to_token,
                quote.provider.value,
                exc,
            )

        return self._finish(execution)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _validate(self, quote: SwapQuote, wallet: str) -> None:
        if not isinstance(wallet, str) or not wallet.strip():
            raise InvalidRequestError("Wallet identity is required")
        if not quote.provider.is_executable:
            raise InvalidRequestError(
                f"{quote.provider.value} quotes are informational and cannot be executed"
            )
        age = quote.age_seconds(self._clock())
        if age >= self._quote_ttl:
            raise StaleQuoteError(
                f"Quote is {age:.1f}s old (limit {self._quote_ttl:.0f}s); request a new quote"
            )

    async def _submit(self, execution: SwapExecution) -> dict[str, Any] | None:
        quote = execution.quote
        if quote.provider is QuoteProvider.ORDER_ROUTER:
            if self._relay is None:
                raise ProviderUnavailableError("No transaction relay configured")
            payload = await self._order_router.build_swap(quote, execution.wallet)
            execution.transaction_data = payload
            try:
                execution.tx_id = await self._relay.submit(payload, execution.wallet)
            except SwapEngineError:
                raise
            except Exception as exc:
                raise ProviderUnavailableError(f"Relay rejected transaction: {exc}") from exc
            self._logger.info("Submitted router swap tx=%s", execution.tx_id)
            return None

        venue_result = await self._liquidity.execute(quote, execution.wallet)
        execution.tx_id = str(venue_result.get("txId", ""))
        return venue_result

    async def _confirm(
        self, execution: SwapExecution, venue_result: dict[str, Any] | None
    ) -> None:
        quote = execution.quote
        if venue_result is not None:
            if venue_result.get("status") != "completed":
                raise ExecutionFailedError(
                    f"{quote.provider.value} reported status {venue_result.get('status')!r}"
                )
            execution.to_amount = _realized_amount(venue_result.get("toAmount"), quote)
            return

        if self._relay is None:
            raise ProviderUnavailableError("No transaction relay configured")
        receipt = await self._wait_for_receipt(self._relay, str(execution.tx_id))
        execution.to_amount = _realized_amount(receipt.get("toAmount"), quote)

    async def _wait_for_receipt(self, relay: TransactionRelay, tx_id: str) -> dict[str, Any]:
        """
        Poll the relay for a receipt until confirmed or timeout.

        Raises ``ExecutionFailedError`` if the transaction reverted or is
        not confirmed within ``confirmation_timeout_seconds``.
        """
        start = time.monotonic()

        while True:
            try:
                receipt = await relay.get_receipt(tx_id)
            except Exception as exc:
                self._logger.debug("Receipt lookup failed for %s: %s", tx_id, exc)
                receipt = None

            if receipt is not None:
                if receipt.get("status") == 1:
                    self._logger.info("TX confirmed: %s", tx_id)
                    return receipt
                raise ExecutionFailedError(f"Transaction reverted: {tx_id}")

            if time.monotonic() - start >= self._confirmation_timeout:
                raise ExecutionFailedError(
                    f"Transaction {tx_id} not confirmed after {self._confirmation_timeout:.0f}s"
                )

            await asyncio.sleep(self._poll_interval)

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def _finish(self, execution: SwapExecution) -> SwapReceipt:
        quote = execution.quote
        success = execution.state is ExecutionState.COMPLETED
        now = self._clock()
        self.history.add(
            SwapRecord(
                id=uuid4().hex,
                wallet=execution.wallet or "",
                from_token=quote.from_token,
                to_token=quote.to_token,
                from_amount=quote.from_amount,
                to_amount=execution.to_amount,
                provider=quote.provider,
                status=execution.state,
                tx_id=execution.tx_id,
                error=execution.error,
                timestamp=now,
            )
        )
        return SwapReceipt(
            success=success,
            state=execution.state,
            provider=quote.provider,
            tx_id=execution.tx_id,
            to_amount=execution.to_amount,
            error=execution.error,
            error_kind=execution.error_kind,
            transaction_data=execution.transaction_data,
            timestamp=now,
        )


def _realized_amount(value: Any, quote: SwapQuote) -> Decimal:
    try:
        amount = to_decimal(value, default=quote.to_amount)
    except ValueError:
        return quote.to_amount
    return amount if amount > 0 else quote.to_amount
