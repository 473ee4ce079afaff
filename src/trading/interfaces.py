"""Collaborator contracts consumed by the risk engine and swap executor."""

from __future__ import annotations

from typing import Protocol

from src.models import ConfirmationResult, FeeSetting, Quote, SignedTransaction, TokenMetadata


class QuoteProvider(Protocol):
    async def get_quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        slippage_bps: int,
    ) -> Quote | None:
        """Return a quote, or None when no route exists."""
        ...

    async def build_signed_transaction(
        self, quote: Quote, fee: FeeSetting
    ) -> SignedTransaction: ...


class ChainConnection(Protocol):
    async def submit(self, signed: SignedTransaction) -> str: ...

    async def await_confirmation(
        self, tx_id: str, signed: SignedTransaction
    ) -> ConfirmationResult:
        """Wait for the venue to report a final status.

        Not required to time out on its own; the executor bounds it.
        """
        ...

    async def fetch_transaction_logs(self, tx_id: str) -> list[str] | None: ...


class TokenInspector(Protocol):
    async def fetch_token_metadata(self, address: str) -> TokenMetadata: ...
