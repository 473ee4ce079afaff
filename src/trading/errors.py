"""Trade error taxonomy and retry classification.

Risk findings are data, not exceptions. Everything here is raised by the
quote/execution path and carries enough context for a block-explorer
post-mortem.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFIG = "config"
    QUOTE_UNAVAILABLE = "quote-unavailable"
    PRICE_DEVIATION = "price-deviation"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    BLOCKHASH_EXPIRED = "blockhash-expired"
    SUBMIT = "submit"
    ON_CHAIN = "on-chain"
    RETRIES_EXHAUSTED = "retries-exhausted"
    CANCELLED = "cancelled"


class TradeError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        transaction_id: str | None = None,
        raw_on_chain_error: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id
        self.raw_on_chain_error = raw_on_chain_error
        self.context = context or {}


class ValidationError(TradeError):
    kind = ErrorKind.VALIDATION


class ConfigError(TradeError):
    kind = ErrorKind.CONFIG


class QuoteUnavailableError(TradeError):
    kind = ErrorKind.QUOTE_UNAVAILABLE


class PriceDeviationError(TradeError):
    """Refused to trade: the refreshed quote moved against us past the abort threshold."""

    kind = ErrorKind.PRICE_DEVIATION


class TransientNetworkError(TradeError):
    kind = ErrorKind.TRANSIENT
    retryable = True


class ConfirmationTimeoutError(TradeError):
    kind = ErrorKind.TIMEOUT
    retryable = True


class BlockhashExpiredError(TradeError):
    kind = ErrorKind.BLOCKHASH_EXPIRED
    retryable = True


class SubmissionError(TradeError):
    """Build or submit rejected for a non-transient reason (bad request, preflight failure)."""

    kind = ErrorKind.SUBMIT


class OnChainFailureError(TradeError):
    """Transaction landed and failed. Never retried: the outcome would repeat."""

    kind = ErrorKind.ON_CHAIN

    def __init__(self, message: str, *, logs: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.logs = logs or []


class RetriesExhaustedError(TradeError):
    kind = ErrorKind.RETRIES_EXHAUSTED

    def __init__(self, message: str, *, last_error: BaseException, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.last_error = last_error


class SwapCancelledError(TradeError):
    kind = ErrorKind.CANCELLED


_EXPIRED_MARKERS = (
    "blockhashnotfound",
    "blockhash not found",
    "block height exceeded",
    "transaction expired",
)
_TRANSIENT_MARKERS = (
    "connection reset",
    "timed out",
    "econnreset",
    "etimedout",
    "econnaborted",
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception from the submit/confirm path onto an ErrorKind."""
    if isinstance(exc, TradeError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429 or 500 <= status < 600:
            return ErrorKind.TRANSIENT
        return ErrorKind.VALIDATION
    if isinstance(exc, (ConnectionResetError, ConnectionError)):
        return ErrorKind.TRANSIENT

    text = str(exc).lower()
    if any(marker in text for marker in _EXPIRED_MARKERS):
        return ErrorKind.BLOCKHASH_EXPIRED
    if any(marker in text for marker in _TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.VALIDATION


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TRANSIENT, ErrorKind.TIMEOUT, ErrorKind.BLOCKHASH_EXPIRED}
)


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc) in RETRYABLE_KINDS


# Common Solana program error codes (Custom) -> readable message
PROGRAM_ERRORS: dict[int, str] = {
    0: "Not enough lamports",
    1: "Insufficient funds",
    6000: "Slippage tolerance exceeded",
    6001: "Slippage tolerance exceeded",
    6002: "Invalid route / zero output",
    6003: "Exceeds desired slippage limit",
}


def parse_transaction_error(err: Any) -> str:
    """Render a venue's structured on-chain error as a readable string.

    Solana: ``{"InstructionError": [idx, {"Custom": code}]}`` or a bare string.
    BSC: ``{"status": 0, "revert_reason": ...}``.
    """
    if err is None:
        return "unknown error"
    if isinstance(err, str):
        return err
    if isinstance(err, dict):
        if "InstructionError" in err:
            idx, detail = err["InstructionError"]
            if isinstance(detail, dict) and "Custom" in detail:
                code = detail["Custom"]
                readable = PROGRAM_ERRORS.get(code, f"program error code {code}")
                return f"Instruction #{idx}: {readable} (Custom: {code})"
            return f"Instruction #{idx}: {detail}"
        if err.get("status") == 0:
            reason = err.get("revert_reason")
            return f"Transaction reverted on-chain{f': {reason}' if reason else ''}"
    return str(err)
