"""Shared test fixtures."""

from __future__ import annotations

import pytest

from src.models import AccountModelToken, Quote

SOL_MINT = "So11111111111111111111111111111111111111112"
TOKEN_MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


def make_quote(
    *,
    input_amount: int = 1_000_000_000,
    output_amount: int = 5_000_000,
    slippage_bps: int = 500,
    input_asset: str = SOL_MINT,
    output_asset: str = TOKEN_MINT,
    sell_tax_bps: int | None = None,
    fetched_at: float = 0.0,
) -> Quote:
    return Quote(
        input_asset=input_asset,
        output_asset=output_asset,
        input_amount=input_amount,
        output_amount=output_amount,
        minimum_output_amount=output_amount * (10_000 - slippage_bps) // 10_000,
        slippage_bps=slippage_bps,
        sell_tax_bps=sell_tax_bps,
        fetched_at=fetched_at,
        raw={"outAmount": str(output_amount)},
    )


@pytest.fixture
def clean_mint() -> AccountModelToken:
    """Revoked authorities, no extensions, non-zero supply."""
    return AccountModelToken(address=TOKEN_MINT, total_supply=1_000_000_000_000, decimals=6)
