"""Fee helpers — Solana priority fee estimation and BSC gas price.

Both are hints for the swap executor: the initial fee comes from settings,
the network estimate seeds the first retry bump when starting from "auto".
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from web3 import AsyncWeb3

from src.parsers.solana_rpc import SolanaRpcClient
from src.trading.errors import ConfigError, TradeError

DEFAULT_COMPUTE_UNITS = 300_000
MICRO_LAMPORTS_PER_LAMPORT = 1_000_000
GWEI = 10**9


def micro_lamports_to_lamports(micro_lamports: int, compute_units: int = DEFAULT_COMPUTE_UNITS) -> int:
    """Per-CU micro-lamport price -> total lamports for a transaction (rounded up)."""
    return -(-micro_lamports * compute_units // MICRO_LAMPORTS_PER_LAMPORT)


@dataclass(frozen=True)
class PriorityFeeEstimate:
    """Total-transaction priority fee in lamports at three percentiles."""

    low: int
    medium: int
    high: int
    sampled_slots: int


def _percentile(sorted_values: list[int], pct: float) -> int:
    idx = min(len(sorted_values) - 1, int(len(sorted_values) * pct))
    return sorted_values[idx]


async def estimate_priority_fee(
    rpc: SolanaRpcClient, compute_units: int = DEFAULT_COMPUTE_UNITS
) -> PriorityFeeEstimate | None:
    """p25/p50/p75 of recent non-zero prioritization fees. None when unavailable."""
    try:
        samples = await rpc.get_recent_prioritization_fees()
    except TradeError as e:
        logger.debug(f"[FEES] getRecentPrioritizationFees failed: {e}")
        return None

    if not samples:
        return None

    non_zero = sorted(
        int(s.get("prioritizationFee", 0)) for s in samples if s.get("prioritizationFee")
    )
    if not non_zero:
        return PriorityFeeEstimate(low=0, medium=0, high=0, sampled_slots=len(samples))

    return PriorityFeeEstimate(
        low=micro_lamports_to_lamports(_percentile(non_zero, 0.25), compute_units),
        medium=micro_lamports_to_lamports(_percentile(non_zero, 0.50), compute_units),
        high=micro_lamports_to_lamports(_percentile(non_zero, 0.75), compute_units),
        sampled_slots=len(samples),
    )


@dataclass(frozen=True)
class GasSettings:
    gas_price_wei: int
    network_gas_price_wei: int
    capped: bool

    @property
    def gas_price_gwei(self) -> float:
        return self.gas_price_wei / GWEI


async def get_gas_price(w3: AsyncWeb3, max_gwei: float) -> GasSettings:
    """Network gas price, capped at ``max_gwei``."""
    if max_gwei <= 0:
        raise ConfigError(f"max gas price must be positive, got {max_gwei}")

    network = int(await w3.eth.gas_price)
    ceiling = int(max_gwei * GWEI)
    if network > ceiling:
        logger.warning(
            f"[FEES] Network gas {network / GWEI:.2f} gwei above cap {max_gwei} gwei, using cap"
        )
        return GasSettings(gas_price_wei=ceiling, network_gas_price_wei=network, capped=True)
    return GasSettings(gas_price_wei=network, network_gas_price_wei=network, capped=False)
