from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

# Fee setting: "auto" lets the venue pick; an int is lamports (Solana) or wei gas price (BSC)
FeeSetting = Union[int, Literal["auto"]]
AUTO_FEE: Literal["auto"] = "auto"


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED_ONCHAIN = "failed-onchain"
    TIMED_OUT = "timed-out"
    NETWORK_ERROR = "network-error"


@dataclass(frozen=True)
class TradeRequest:
    input_asset: str
    output_asset: str
    amount: int  # base units of input asset
    slippage_bps: int
    allow_price_deviation: bool = False


@dataclass(frozen=True)
class FeeHints:
    initial_fee: FeeSetting = AUTO_FEE
    network_estimate: int | None = None
    default_retry_fee: int = 100_000


@dataclass(frozen=True)
class SignedTransaction:
    """Signed, serialized transaction plus what is needed to confirm it.

    ``deadline`` is venue-specific: last valid block height on Solana,
    the nonce on BSC.
    """

    payload: bytes
    tx_id: str | None = None
    deadline: int | None = None
    fee: FeeSetting = AUTO_FEE


@dataclass(frozen=True)
class ConfirmationResult:
    tx_id: str
    error: Any = None  # venue structured error, None = success
    slot: int | None = None


@dataclass
class SwapAttempt:
    attempt_index: int
    fee: FeeSetting
    transaction_id: str | None = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    error: str | None = None


@dataclass
class SwapReceipt:
    transaction_id: str
    minimum_output: int
    attempts: list[SwapAttempt] = field(default_factory=list)
