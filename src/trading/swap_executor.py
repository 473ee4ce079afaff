"""Swap execution — quote freshness gate, build/sign/submit, bounded confirmation, fee-bump retries.

Per attempt:
  BUILD_QUOTE_OR_REUSE → BUILD_TRANSACTION → SIGN → SUBMIT → AWAIT_CONFIRMATION
  → CONFIRMED | ON_CHAIN_FAILURE | TIMEOUT | SUBMIT_ERROR

Timeouts, expired blockhashes and transient RPC errors are retried with an
escalated fee and a transaction rebuilt from scratch. On-chain failures are
terminal and raised with decoded diagnostics.
"""

from __future__ import annotations

import asyncio
import dataclasses
import math
import time
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Any, Callable

import httpx
from loguru import logger

from config.settings import Settings
from src.models import (
    AUTO_FEE,
    AttemptOutcome,
    FeeHints,
    FeeSetting,
    Quote,
    SignedTransaction,
    SwapAttempt,
    SwapReceipt,
    TradeRequest,
)
from src.trading.errors import (
    ConfigError,
    ConfirmationTimeoutError,
    ErrorKind,
    OnChainFailureError,
    PriceDeviationError,
    QuoteUnavailableError,
    RetriesExhaustedError,
    SubmissionError,
    SwapCancelledError,
    TradeError,
    TransientNetworkError,
    ValidationError,
    classify_error,
    is_retryable,
    parse_transaction_error,
)
from src.trading.interfaces import ChainConnection, QuoteProvider

BPS_DENOMINATOR = 10_000
LOG_TAIL_LINES = 10


@dataclass(frozen=True)
class ExecutionPolicy:
    quote_max_age_sec: float = 10.0
    warn_deviation_pct: Decimal = Decimal("2")
    abort_deviation_pct: Decimal = Decimal("10")
    confirm_timeout_sec: float = 60.0
    max_retries: int = 2  # retries after the first attempt
    fee_bump_multiplier: Fraction = Fraction(3, 2)
    retry_delay_sec: float = 0.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0 (got {self.max_retries})")

    @classmethod
    def from_settings(
        cls, cfg: Settings, *, max_retries: int | None = None, retry_delay_sec: float = 0.0
    ) -> ExecutionPolicy:
        return cls(
            quote_max_age_sec=cfg.quote_max_age_sec,
            warn_deviation_pct=Decimal(str(cfg.quote_warn_deviation_pct)),
            abort_deviation_pct=Decimal(str(cfg.quote_abort_deviation_pct)),
            confirm_timeout_sec=cfg.confirm_timeout_sec,
            max_retries=cfg.swap_max_retries if max_retries is None else max_retries,
            fee_bump_multiplier=Fraction(str(cfg.fee_bump_multiplier)),
            retry_delay_sec=retry_delay_sec,
        )


def minimum_output_amount(expected_output: int, slippage_bps: int) -> int:
    """Slippage floor in base units. Integer math only, so it is reproducible."""
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValidationError(f"slippage_bps out of range: {slippage_bps}")
    return expected_output * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def next_fee(current: FeeSetting, hints: FeeHints, multiplier: Fraction = Fraction(3, 2)) -> int:
    """Fee for the next attempt after a retryable failure."""
    if current == AUTO_FEE or not isinstance(current, int) or current <= 0:
        return hints.network_estimate or hints.default_retry_fee
    return math.ceil(current * multiplier)


def price_deviation_pct(old_output: int, new_output: int) -> Decimal:
    """How much worse the new output is, in percent. Negative means it improved."""
    if old_output <= 0:
        return Decimal("0")
    return Decimal(old_output - new_output) * 100 / Decimal(old_output)


class SwapExecutor:
    """Executes one swap session against a quote provider and chain connection."""

    def __init__(
        self,
        quote_provider: QuoteProvider,
        connection: ChainConnection,
        *,
        policy: ExecutionPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = quote_provider
        self._connection = connection
        self._policy = policy or ExecutionPolicy()
        self._clock = clock

    async def execute(
        self,
        request: TradeRequest,
        quote: Quote,
        fee_hints: FeeHints,
        *,
        deadline: float | None = None,
    ) -> SwapReceipt:
        """Run the attempt loop until confirmed, terminal failure, or retries exhausted.

        ``deadline`` is a monotonic timestamp; once passed, no new attempt starts.
        """
        accepted = quote
        fee: FeeSetting = fee_hints.initial_fee
        attempts: list[SwapAttempt] = []
        last_error: TradeError | None = None
        total = self._policy.max_retries + 1

        for index in range(1, total + 1):
            if deadline is not None and self._clock() >= deadline:
                raise SwapCancelledError(
                    f"Swap cancelled before attempt {index}/{total}: deadline passed",
                    context=_context(request, accepted),
                    transaction_id=last_error.transaction_id if last_error else None,
                )

            record = SwapAttempt(attempt_index=index, fee=fee)
            attempts.append(record)
            try:
                # The first-seen quote anchors deviation so repeated refreshes cannot drift
                current = await self._quote_for_attempt(request, accepted, reference=quote)
                min_out = minimum_output_amount(current.output_amount, request.slippage_bps)
                current = dataclasses.replace(current, minimum_output_amount=min_out)
                accepted = current
                tx_id = await self._attempt(current, fee, record, _context(request, current))
            except TradeError as e:
                if e.kind == ErrorKind.ON_CHAIN:
                    record.outcome = AttemptOutcome.FAILED_ONCHAIN
                    raise
                if not e.retryable:
                    record.outcome = AttemptOutcome.NETWORK_ERROR
                    raise
                record.outcome = (
                    AttemptOutcome.TIMED_OUT if e.kind == ErrorKind.TIMEOUT else AttemptOutcome.NETWORK_ERROR
                )
                record.error = str(e)
                last_error = e
            else:
                record.outcome = AttemptOutcome.CONFIRMED
                logger.success(f"[SWAP] Confirmed on attempt {index}/{total}: {tx_id}")
                return SwapReceipt(transaction_id=tx_id, minimum_output=min_out, attempts=attempts)

            if index == total:
                break

            fee = next_fee(fee, fee_hints, self._policy.fee_bump_multiplier)
            logger.warning(f"[SWAP] Attempt {index} failed: {last_error}")
            logger.warning(f"[SWAP] Retrying with fee {fee} (attempt {index + 1}/{total})...")
            if self._policy.retry_delay_sec > 0:
                await asyncio.sleep(self._policy.retry_delay_sec)

        raise RetriesExhaustedError(
            f"Swap failed after {total} attempts: {last_error}",
            last_error=last_error,
            transaction_id=last_error.transaction_id,
            context=last_error.context,
        )

    async def refresh_if_stale(
        self,
        request: TradeRequest,
        quote: Quote,
        *,
        reference: Quote | None = None,
    ) -> Quote:
        """Re-quote when older than the freshness window; abort on adverse movement."""
        age = quote.age(self._clock())
        if age <= self._policy.quote_max_age_sec:
            return quote

        logger.info(f"[SWAP] Quote is {age:.1f}s old, refreshing...")
        fresh = await self._provider.get_quote(
            request.input_asset, request.output_asset, request.amount, request.slippage_bps
        )
        if fresh is None:
            raise QuoteUnavailableError(
                "Quote refresh returned no route", context=_context(request, quote)
            )

        baseline = reference or quote
        deviation = price_deviation_pct(baseline.output_amount, fresh.output_amount)
        if deviation > self._policy.abort_deviation_pct and not request.allow_price_deviation:
            raise PriceDeviationError(
                f"Price moved {deviation:.2f}% against the original quote "
                f"(limit {self._policy.abort_deviation_pct}%), refusing to trade",
                context={**_context(request, fresh), "previous_output": baseline.output_amount},
            )
        if deviation > self._policy.warn_deviation_pct:
            logger.warning(
                f"[SWAP] Expected output fell {deviation:.2f}% since the original quote "
                f"({baseline.output_amount} → {fresh.output_amount})"
            )
        return fresh

    async def _quote_for_attempt(self, request: TradeRequest, quote: Quote, *, reference: Quote) -> Quote:
        try:
            return await self.refresh_if_stale(request, quote, reference=reference)
        except TradeError:
            raise
        except (httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
            raise _wrap_transport_error(e, _context(request, quote)) from e

    # ─── Single attempt ──────────────────────────────────────────────

    async def _attempt(
        self,
        quote: Quote,
        fee: FeeSetting,
        record: SwapAttempt,
        context: dict[str, Any],
    ) -> str:
        if record.attempt_index > 1:
            logger.info(f"[SWAP] Rebuilding transaction (attempt {record.attempt_index}, fee: {fee})...")
        else:
            logger.info("[SWAP] Building swap transaction...")

        try:
            signed = await self._provider.build_signed_transaction(quote, fee)
            tx_id = await self._connection.submit(signed)
        except TradeError:
            raise
        except (httpx.HTTPError, OSError, asyncio.TimeoutError) as e:
            raise _wrap_transport_error(e, context) from e

        record.transaction_id = tx_id
        logger.info(f"[SWAP] Transaction sent: {tx_id}")
        logger.info("[SWAP] Waiting for confirmation...")

        confirmation = await self._await_confirmation(tx_id, signed, context)
        if confirmation.error is not None:
            await self._raise_on_chain_failure(tx_id, confirmation.error, context)
        return tx_id

    async def _await_confirmation(
        self,
        tx_id: str,
        signed: SignedTransaction,
        context: dict[str, Any],
    ):
        # wait_for cancels the pending confirmation on timeout; nothing is left running
        timeout = self._policy.confirm_timeout_sec
        try:
            return await asyncio.wait_for(
                self._connection.await_confirmation(tx_id, signed), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise ConfirmationTimeoutError(
                f"Transaction confirmation timed out after {timeout:g}s",
                transaction_id=tx_id,
                context=context,
            ) from e
        except TradeError as e:
            if e.transaction_id is None:
                e.transaction_id = tx_id
            raise
        except (httpx.HTTPError, OSError) as e:
            raise _wrap_transport_error(e, context, tx_id) from e

    async def _raise_on_chain_failure(
        self, tx_id: str, err: Any, context: dict[str, Any]
    ) -> None:
        parsed = parse_transaction_error(err)
        logger.error(f"[SWAP] Transaction failed on-chain: {parsed}")
        logger.error(f"[SWAP]   TX: {tx_id}")

        logs = await self._fetch_logs(tx_id)
        tail = logs[-LOG_TAIL_LINES:] if logs else []
        if tail:
            logger.error("[SWAP]   Transaction logs:")
            for line in tail:
                logger.error(f"[SWAP]     {line}")

        raise OnChainFailureError(
            f"Transaction failed on-chain: {parsed}",
            transaction_id=tx_id,
            raw_on_chain_error=err,
            logs=tail,
            context=context,
        )

    async def _fetch_logs(self, tx_id: str) -> list[str] | None:
        try:
            return await self._connection.fetch_transaction_logs(tx_id)
        except Exception as e:
            logger.debug(f"[SWAP] Log fetch failed for {tx_id}: {e}")
            return None


def _wrap_transport_error(
    exc: BaseException, context: dict[str, Any], tx_id: str | None = None
) -> TradeError:
    kind = classify_error(exc)
    if kind == ErrorKind.TIMEOUT:
        return ConfirmationTimeoutError(str(exc) or "request timed out", transaction_id=tx_id, context=context)
    if is_retryable(exc):
        return TransientNetworkError(str(exc) or type(exc).__name__, transaction_id=tx_id, context=context)
    return SubmissionError(f"Submission failed: {exc}", transaction_id=tx_id, context=context)


def _context(request: TradeRequest, quote: Quote) -> dict[str, Any]:
    return {
        "input_asset": request.input_asset,
        "token": request.output_asset,
        "amount": request.amount,
        "slippage_bps": request.slippage_bps,
        "expected_output": quote.output_amount,
        "minimum_output": quote.minimum_output_amount,
    }


async def execute_swap(
    request: TradeRequest,
    quote: Quote,
    quote_provider: QuoteProvider,
    connection: ChainConnection,
    fee_hints: FeeHints,
    *,
    policy: ExecutionPolicy | None = None,
    deadline: float | None = None,
) -> str:
    """Execute and return the confirmed transaction id."""
    executor = SwapExecutor(quote_provider, connection, policy=policy)
    receipt = await executor.execute(request, quote, fee_hints, deadline=deadline)
    return receipt.transaction_id
