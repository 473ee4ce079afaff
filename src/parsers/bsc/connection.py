"""BSC chain connection — raw transaction broadcast and receipt polling via web3."""

from __future__ import annotations

import asyncio
import re

import aiohttp
from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception

from src.models import ConfirmationResult, SignedTransaction
from src.trading.errors import (
    ErrorKind,
    SubmissionError,
    TransientNetworkError,
    classify_error,
)

BSC_CHAIN_ID = 56
RECEIPT_POLL_INTERVAL = 2.0  # seconds

# web3's async HTTP provider surfaces transport failures as aiohttp errors
RPC_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, aiohttp.ClientError)

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_evm_address(address: str) -> bool:
    """Hex shape check plus web3's checksum-aware validation."""
    return bool(_EVM_ADDRESS_RE.match(address)) and AsyncWeb3.is_address(address)


def make_web3(rpc_url: str, timeout: float = 10.0) -> AsyncWeb3:
    if not rpc_url:
        raise ValueError("RPC URL is empty")
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


class BscConnection:
    """Chain connection for the BSC venue."""

    def __init__(self, w3: AsyncWeb3, *, poll_interval: float = RECEIPT_POLL_INTERVAL) -> None:
        self._w3 = w3
        self._poll_interval = poll_interval

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    async def submit(self, signed: SignedTransaction) -> str:
        try:
            tx_hash = await self._w3.eth.send_raw_transaction(signed.payload)
        except RPC_TRANSPORT_ERRORS as e:
            raise TransientNetworkError(f"eth_sendRawTransaction failed: {e}") from e
        except (Web3Exception, ValueError) as e:
            kind = classify_error(e)
            if kind == ErrorKind.TRANSIENT:
                raise TransientNetworkError(f"eth_sendRawTransaction failed: {e}") from e
            raise SubmissionError(f"eth_sendRawTransaction rejected: {e}", transaction_id=signed.tx_id) from e
        return AsyncWeb3.to_hex(tx_hash)

    async def await_confirmation(self, tx_id: str, signed: SignedTransaction) -> ConfirmationResult:
        """Poll for the receipt. Unbounded; the caller applies the timeout."""
        while True:
            try:
                receipt = await self._w3.eth.get_transaction_receipt(tx_id)
            except TransactionNotFound:
                receipt = None
            except RPC_TRANSPORT_ERRORS as e:
                logger.debug(f"[BSC] Receipt poll for {tx_id[:16]} failed: {e}")
                receipt = None

            if receipt is not None:
                block = receipt.get("blockNumber")
                if receipt.get("status") == 0:
                    return ConfirmationResult(
                        tx_id=tx_id,
                        error={"status": 0, "revert_reason": None, "gas_used": receipt.get("gasUsed")},
                        slot=block,
                    )
                logger.debug(f"[BSC] {tx_id[:16]} mined in block {block}, gas used {receipt.get('gasUsed')}")
                return ConfirmationResult(tx_id=tx_id, slot=block)

            await asyncio.sleep(self._poll_interval)

    async def fetch_transaction_logs(self, tx_id: str) -> list[str] | None:
        """Emitted event logs rendered as lines. Best effort."""
        try:
            receipt = await self._w3.eth.get_transaction_receipt(tx_id)
        except (TransactionNotFound, Web3Exception, *RPC_TRANSPORT_ERRORS):
            return None
        lines = []
        for i, entry in enumerate(receipt.get("logs") or []):
            topics = ", ".join(AsyncWeb3.to_hex(t) for t in entry.get("topics") or [])
            lines.append(f"log #{i} {entry.get('address')} topics=[{topics}]")
        return lines or None

    async def get_balance(self, address: str) -> int:
        """Balance in wei."""
        return int(await self._w3.eth.get_balance(AsyncWeb3.to_checksum_address(address)))

    async def get_chain_id(self) -> int:
        return int(await self._w3.eth.chain_id)
