"""Jupiter Swap API client — quotes and signed swap transactions.

Quote via /swap/v1/quote, transaction via /swap/v1/swap. Jupiter returns an
unsigned base64 VersionedTransaction which is signed locally with solders.
"""

import asyncio
import base64
import binascii

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from src.models import AUTO_FEE, FeeSetting, Quote, SignedTransaction
from src.parsers.jupiter.models import JupiterQuote, JupiterSwapResponse
from src.parsers.rate_limiter import RateLimiter
from src.parsers.solana_rpc import SolanaRpcClient
from src.trading.errors import (
    ConfigError,
    QuoteUnavailableError,
    SubmissionError,
    TransientNetworkError,
)

QUOTE_URL = "https://api.jup.ag/swap/v1/quote"
SWAP_URL = "https://api.jup.ag/swap/v1/swap"
MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


def _json_body(resp: httpx.Response) -> dict | None:
    """Decoded JSON object, or None for an empty, HTML or non-object body."""
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class JupiterClient:
    """Quote provider for the Solana venue (free tier: 1 RPS)."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        keypair: Keypair | None = None,
        api_key: str = "",
        quote_url: str = QUOTE_URL,
        swap_url: str = SWAP_URL,
        max_rps: float = 1.0,
    ) -> None:
        self._rpc = rpc
        self._keypair = keypair
        self._quote_url = quote_url
        self._swap_url = swap_url
        self._rate_limiter = RateLimiter(max_rps)
        headers: dict[str, str] = {}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.AsyncClient(timeout=10.0, headers=headers)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_quote(
        self, input_asset: str, output_asset: str, amount: int, slippage_bps: int
    ) -> Quote | None:
        """ExactIn quote. None when Jupiter has no route for the pair."""
        params = {
            "inputMint": input_asset,
            "outputMint": output_asset,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": "ExactIn",
        }

        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.get(self._quote_url, params=params)

                if resp.status_code == 429 or resp.status_code >= 500:
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[JUPITER] Quote HTTP {resp.status_code}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    raise TransientNetworkError(f"Jupiter quote failed: HTTP {resp.status_code}")

                if resp.status_code == 400:
                    data = _json_body(resp) or {}
                    error_msg = data.get("error", data.get("message", "Unknown error"))
                    logger.info(f"[JUPITER] No route {input_asset[:8]} -> {output_asset[:8]}: {error_msg}")
                    return None

                if resp.status_code in (401, 403):
                    raise ConfigError(
                        f"Jupiter rejected the API key (HTTP {resp.status_code}). Check JUPITER_API_KEY."
                    )

                if resp.status_code != 200:
                    raise QuoteUnavailableError(f"Jupiter quote failed: HTTP {resp.status_code}")

                data = _json_body(resp)
                if data is None:
                    raise QuoteUnavailableError("Jupiter quote response is not a JSON object")
                if not data.get("outAmount"):
                    return None
                try:
                    return JupiterQuote.model_validate(data).to_quote(data)
                except (PydanticValidationError, ValueError) as e:
                    raise QuoteUnavailableError(f"Malformed Jupiter quote: {e}") from e

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[JUPITER] Quote {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    raise TransientNetworkError(f"Jupiter quote failed after retries: {e}") from e

        raise TransientNetworkError("Jupiter quote: max retries exceeded")

    async def build_signed_transaction(self, quote: Quote, fee: FeeSetting) -> SignedTransaction:
        """POST the quote to /swap, sign the returned transaction.

        The quote's ``minimum_output_amount`` is written into
        ``otherAmountThreshold`` so the on-chain program enforces it.
        """
        if self._keypair is None:
            raise ConfigError("No wallet configured: cannot sign a swap")
        if not quote.raw:
            raise SubmissionError("Quote has no Jupiter payload to build from")

        quote_response = dict(quote.raw)
        quote_response["otherAmountThreshold"] = str(quote.minimum_output_amount)
        quote_response["slippageBps"] = quote.slippage_bps

        body: dict = {
            "quoteResponse": quote_response,
            "userPublicKey": str(self._keypair.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if fee == AUTO_FEE:
            body["prioritizationFeeLamports"] = "auto"
        elif isinstance(fee, int) and fee > 0:
            body["prioritizationFeeLamports"] = fee
        else:
            logger.warning(f"[JUPITER] Ignoring invalid priority fee {fee!r}, using Jupiter default")

        swap = await self._post_swap(body)
        if not swap.swapTransaction:
            raise SubmissionError("Jupiter did not return a swap transaction")

        try:
            raw_tx = VersionedTransaction.from_bytes(base64.b64decode(swap.swapTransaction))
        except (binascii.Error, ValueError) as e:
            raise SubmissionError(f"Undecodable swap transaction: {e}") from e

        signed = VersionedTransaction(raw_tx.message, [self._keypair])

        deadline = swap.lastValidBlockHeight
        if deadline is None:
            _, deadline = await self._rpc.get_latest_blockhash()

        used_fee: FeeSetting = fee
        if swap.prioritizationFeeLamports is not None:
            used_fee = swap.prioritizationFeeLamports

        return SignedTransaction(
            payload=bytes(signed),
            tx_id=str(signed.signatures[0]),
            deadline=deadline,
            fee=used_fee,
        )

    async def _post_swap(self, body: dict) -> JupiterSwapResponse:
        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.post(self._swap_url, json=body)

                if resp.status_code == 429 or resp.status_code >= 500:
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[JUPITER] Swap HTTP {resp.status_code}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    raise TransientNetworkError(f"Jupiter swap failed: HTTP {resp.status_code}")

                if resp.status_code != 200:
                    raise SubmissionError(
                        f"Jupiter swap failed: HTTP {resp.status_code} {resp.text[:200]}"
                    )

                try:
                    return JupiterSwapResponse.model_validate(resp.json())
                except (PydanticValidationError, ValueError) as e:
                    raise SubmissionError(f"Malformed Jupiter swap response: {e}") from e

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[JUPITER] Swap {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    raise TransientNetworkError(f"Jupiter swap failed after retries: {e}") from e

        raise TransientNetworkError("Jupiter swap: max retries exceeded")
