"""0x Swap API v2 client — BSC quotes and signed swap transactions.

Pricing via /swap/allowance-holder/price, executable calldata via
/swap/allowance-holder/quote. Selling native BNB needs no allowance.
"""

from __future__ import annotations

import asyncio

import httpx
from eth_account.signers.local import LocalAccount
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception

from src.models import AUTO_FEE, FeeSetting, Quote, SignedTransaction
from src.parsers.bsc.connection import BSC_CHAIN_ID, RPC_TRANSPORT_ERRORS
from src.parsers.bsc.models import ZeroXQuote, format_route
from src.parsers.rate_limiter import RateLimiter
from src.trading.errors import (
    ConfigError,
    PriceDeviationError,
    QuoteUnavailableError,
    SubmissionError,
    TransientNetworkError,
    is_retryable,
)
from src.trading.fees import get_gas_price

BASE_URL = "https://api.0x.org"
PRICE_PATH = "/swap/allowance-holder/price"
QUOTE_PATH = "/swap/allowance-holder/quote"
MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


class ZeroXClient:
    """Quote provider for the BSC venue."""

    def __init__(
        self,
        w3: AsyncWeb3,
        *,
        api_key: str,
        account: LocalAccount | None = None,
        base_url: str = BASE_URL,
        gas_limit: int = 300_000,
        max_gas_price_gwei: float = 10.0,
        max_rps: float = 2.0,
    ) -> None:
        if not api_key:
            raise ConfigError("0x API key is required for BSC swaps")
        self._w3 = w3
        self._account = account
        self._base_url = base_url.rstrip("/")
        self._gas_limit = gas_limit
        self._max_gas_price_gwei = max_gas_price_gwei
        self._rate_limiter = RateLimiter(max_rps)
        self._client = httpx.AsyncClient(
            timeout=15.0,
            headers={"0x-api-key": api_key, "0x-version": "v2"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get_quote(
        self, input_asset: str, output_asset: str, amount: int, slippage_bps: int
    ) -> Quote | None:
        """Indicative price. None when 0x reports no liquidity."""
        params = self._params(input_asset, output_asset, amount, slippage_bps)
        data = await self._get(PRICE_PATH, params)
        return _to_quote(data, slippage_bps)

    async def build_signed_transaction(self, quote: Quote, fee: FeeSetting) -> SignedTransaction:
        """Fetch a firm quote with calldata and sign it.

        ``fee`` is the gas price in wei; "auto" uses the capped network price.
        The firm quote must guarantee at least ``quote.minimum_output_amount``.
        """
        if self._account is None:
            raise ConfigError("No wallet configured: cannot sign a swap")

        params = self._params(
            quote.input_asset, quote.output_asset, quote.input_amount, quote.slippage_bps
        )
        data = await self._get(QUOTE_PATH, params)
        firm = _parse(data)
        if not firm.liquidityAvailable:
            raise QuoteUnavailableError("No liquidity available for this token on any DEX")
        if firm.transaction is None:
            raise SubmissionError("0x quote did not include a transaction")

        min_buy = int(firm.minBuyAmount or 0)
        if min_buy < quote.minimum_output_amount:
            raise PriceDeviationError(
                f"0x minimum output {min_buy} below required {quote.minimum_output_amount}"
            )

        route = format_route(firm.route.fills if firm.route else [])
        logger.info(f"[0X] Buy {firm.buyAmount} (min {min_buy}) via {route}")
        if firm.sell_tax_bps:
            logger.warning(f"[0X] Token has sell tax: {firm.sell_tax_bps / 100:.1f}%")

        try:
            gas_price = await self._resolve_gas_price(fee)
            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
        except RPC_TRANSPORT_ERRORS as e:
            raise TransientNetworkError(f"BSC RPC failed while preparing the swap: {e}") from e
        except Web3Exception as e:
            if is_retryable(e):
                raise TransientNetworkError(f"BSC RPC failed while preparing the swap: {e}") from e
            raise SubmissionError(f"Could not prepare the swap transaction: {e}") from e
        tx = {
            "to": AsyncWeb3.to_checksum_address(firm.transaction.to),
            "data": firm.transaction.data,
            "value": int(firm.transaction.value),
            "gas": int(firm.transaction.gas) if firm.transaction.gas else self._gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": BSC_CHAIN_ID,
        }
        signed = self._account.sign_transaction(tx)
        return SignedTransaction(
            payload=bytes(signed.raw_transaction),
            tx_id=AsyncWeb3.to_hex(signed.hash),
            fee=gas_price,
        )

    async def _resolve_gas_price(self, fee: FeeSetting) -> int:
        ceiling = int(self._max_gas_price_gwei * 10**9)
        if fee == AUTO_FEE or not isinstance(fee, int) or fee <= 0:
            if fee != AUTO_FEE:
                logger.warning(f"[0X] Ignoring invalid gas price {fee!r}, using network price")
            return (await get_gas_price(self._w3, self._max_gas_price_gwei)).gas_price_wei
        if fee > ceiling:
            logger.warning(f"[0X] Gas price {fee} wei above cap, clamped to {ceiling}")
            return ceiling
        return fee

    def _params(self, sell_token: str, buy_token: str, amount: int, slippage_bps: int) -> dict:
        params = {
            "chainId": BSC_CHAIN_ID,
            "sellToken": sell_token,
            "buyToken": buy_token,
            "sellAmount": str(amount),
            "slippageBps": slippage_bps,
        }
        if self._account is not None:
            params["taker"] = self._account.address
        return params

    async def _get(self, path: str, params: dict) -> dict:
        url = f"{self._base_url}{path}"
        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.get(url, params=params)

                if resp.status_code == 429 or resp.status_code >= 500:
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[0X] HTTP {resp.status_code} on {path}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    raise TransientNetworkError(f"0x {path} failed: HTTP {resp.status_code}")

                if resp.status_code in (401, 403):
                    raise ConfigError(f"0x rejected the API key (HTTP {resp.status_code})")

                if resp.status_code != 200:
                    raise QuoteUnavailableError(
                        f"0x {path} failed: HTTP {resp.status_code} {resp.text[:200]}"
                    )

                return resp.json()

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[0X] {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    raise TransientNetworkError(f"0x {path} failed after retries: {e}") from e

        raise TransientNetworkError(f"0x {path}: max retries exceeded")


def _parse(data: dict) -> ZeroXQuote:
    try:
        return ZeroXQuote.model_validate(data)
    except PydanticValidationError as e:
        raise QuoteUnavailableError(f"Malformed 0x response: {e}") from e


def _to_quote(data: dict, slippage_bps: int) -> Quote | None:
    parsed = _parse(data)
    if not parsed.liquidityAvailable or int(parsed.buyAmount or 0) == 0:
        return None
    return parsed.to_quote(slippage_bps, data)
