"""Solana JSON-RPC client — submission, confirmation polling, account and fee queries.

Implements the chain-connection side of a swap for the Solana venue. One
persistent httpx client is reused for every call.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from src.models import ConfirmationResult, SignedTransaction
from src.trading.errors import (
    BlockhashExpiredError,
    ErrorKind,
    SubmissionError,
    TransientNetworkError,
    classify_error,
)

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

CONFIRM_POLL_INTERVAL = 2.0  # seconds

# JSON-RPC error code for a failed preflight simulation
PREFLIGHT_FAILURE_CODE = -32002

GENESIS_HASHES = {
    "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d": "mainnet-beta",
    "EtWTRABZaYq6iMfeYKouRu166VU2xqa1wcaWoxPkrZBG": "devnet",
    "4uhcVJyU9pJkvQyS88uRDiswHXSCkY3zQawwpjk2NsNY": "testnet",
}


@dataclass(frozen=True)
class AccountInfo:
    owner: str
    data: bytes
    lamports: int


class SolanaRpcClient:
    """Async JSON-RPC client for a Solana node."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
    ) -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")
        self._rpc_url = rpc_url
        self._http = httpx.AsyncClient(timeout=timeout)
        self._poll_interval = poll_interval

    async def close(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:
        """POST one JSON-RPC request; returns ``result``.

        Retries 429/5xx and connection errors. RPC-level errors are mapped onto
        the trade error taxonomy.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []}

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._http.post(self._rpc_url, json=payload)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[RPC] {method} {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise TransientNetworkError(f"{method} failed after retries: {e}") from e

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[RPC] {method} HTTP {resp.status_code}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise TransientNetworkError(f"{method} failed: HTTP {resp.status_code}")

            if resp.status_code != 200:
                raise SubmissionError(f"{method} failed: HTTP {resp.status_code}")

            data = resp.json()
            if "error" in data:
                raise _rpc_error(method, data["error"])
            return data.get("result")

        raise TransientNetworkError(f"{method}: max retries exceeded")

    # ─── Chain connection ────────────────────────────────────────────

    async def submit(self, signed: SignedTransaction) -> str:
        tx_b64 = base64.b64encode(signed.payload).decode("ascii")
        result = await self._call(
            "sendTransaction",
            [tx_b64, {"encoding": "base64", "skipPreflight": False, "maxRetries": 3}],
        )
        if not result:
            raise SubmissionError("sendTransaction returned no signature")
        return str(result)

    async def await_confirmation(
        self, tx_id: str, signed: SignedTransaction
    ) -> ConfirmationResult:
        """Poll getSignatureStatuses until confirmed, failed, or the blockhash expires.

        Does not time out by itself; the caller bounds the wait.
        """
        params = [[tx_id], {"searchTransactionHistory": True}]
        while True:
            try:
                result = await self._call("getSignatureStatuses", params)
                statuses = (result or {}).get("value") or []
                status = statuses[0] if statuses else None
                if status is not None:
                    if status.get("err"):
                        return ConfirmationResult(tx_id=tx_id, error=status["err"], slot=status.get("slot"))
                    if status.get("confirmationStatus") in ("confirmed", "finalized"):
                        return ConfirmationResult(tx_id=tx_id, slot=status.get("slot"))
                elif signed.deadline is not None:
                    height = await self.get_block_height()
                    if height > signed.deadline:
                        raise BlockhashExpiredError(
                            f"block height exceeded: {height} > last valid {signed.deadline}",
                            transaction_id=tx_id,
                        )
            except TransientNetworkError as e:
                logger.debug(f"[RPC] Status poll for {tx_id[:16]} failed: {e}")

            await asyncio.sleep(self._poll_interval)

    async def fetch_transaction_logs(self, tx_id: str) -> list[str] | None:
        try:
            tx = await self._call(
                "getTransaction",
                [tx_id, {"commitment": "confirmed", "maxSupportedTransactionVersion": 0, "encoding": "json"}],
            )
        except (TransientNetworkError, SubmissionError):
            return None
        if not tx:
            return None
        return (tx.get("meta") or {}).get("logMessages") or None

    # ─── Queries ─────────────────────────────────────────────────────

    async def get_latest_blockhash(self) -> tuple[str, int]:
        result = await self._call("getLatestBlockhash", [{"commitment": "confirmed"}])
        value = result["value"]
        return value["blockhash"], int(value["lastValidBlockHeight"])

    async def get_block_height(self) -> int:
        return int(await self._call("getBlockHeight", [{"commitment": "confirmed"}]))

    async def get_account_info(self, address: str) -> AccountInfo | None:
        result = await self._call(
            "getAccountInfo", [address, {"encoding": "base64", "commitment": "confirmed"}]
        )
        value = (result or {}).get("value")
        if not value:
            return None
        raw_data = value.get("data") or []
        data = base64.b64decode(raw_data[0]) if raw_data else b""
        return AccountInfo(owner=value.get("owner", ""), data=data, lamports=int(value.get("lamports", 0)))

    async def get_balance(self, address: str) -> int:
        """Balance in lamports."""
        result = await self._call("getBalance", [address, {"commitment": "confirmed"}])
        return int((result or {}).get("value", 0))

    async def get_recent_prioritization_fees(self) -> list[dict[str, int]]:
        return await self._call("getRecentPrioritizationFees", []) or []

    async def get_genesis_hash(self) -> str:
        return str(await self._call("getGenesisHash", []))


def _rpc_error(method: str, error: dict[str, Any]) -> Exception:
    code = error.get("code", "?")
    msg = error.get("message", str(error))
    text = f"{method} RPC error {code}: {msg}"
    logger.warning(f"[RPC] {text}")

    if code == PREFLIGHT_FAILURE_CODE:
        # Simulation failed; resubmitting the same transaction fails the same way
        data = error.get("data") or {}
        logs = data.get("logs") or []
        return SubmissionError(text, raw_on_chain_error=data.get("err"), context={"logs": logs[-10:]})

    kind = classify_error(Exception(msg))
    if kind == ErrorKind.BLOCKHASH_EXPIRED:
        return BlockhashExpiredError(text)
    if kind == ErrorKind.TRANSIENT or code in (-32004, -32005, -32014):
        return TransientNetworkError(text)
    return SubmissionError(text)


async def detect_network(rpc: SolanaRpcClient) -> str:
    """mainnet-beta / devnet / testnet / unknown, from the genesis hash."""
    try:
        genesis = await rpc.get_genesis_hash()
    except (TransientNetworkError, SubmissionError):
        return "unknown"
    return GENESIS_HASHES.get(genesis, "unknown")
