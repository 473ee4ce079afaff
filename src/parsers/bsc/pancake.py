"""PancakeSwap V2 router quoter — getAmountsOut, used for round-trip simulation."""

from __future__ import annotations

from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception

from config.settings import BSC_NATIVE_TOKEN, WBNB
from src.models import FeeSetting, Quote, RouteHop, SignedTransaction
from src.parsers.bsc.connection import RPC_TRANSPORT_ERRORS
from src.trading.errors import SubmissionError, TransientNetworkError

ROUTER_ABI = [
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
]


class PancakeRouterQuoter:
    """Read-only quote provider; never builds transactions."""

    def __init__(self, w3: AsyncWeb3, router_address: str, wbnb: str = WBNB) -> None:
        self._wbnb = AsyncWeb3.to_checksum_address(wbnb)
        self._router = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(router_address), abi=ROUTER_ABI
        )

    def _path(self, input_asset: str, output_asset: str) -> list[str]:
        tokens = [self._wbnb if a.lower() == BSC_NATIVE_TOKEN.lower() else a for a in (input_asset, output_asset)]
        path = [AsyncWeb3.to_checksum_address(t) for t in tokens]
        if self._wbnb not in path:
            path.insert(1, self._wbnb)
        return path

    async def get_quote(
        self, input_asset: str, output_asset: str, amount: int, slippage_bps: int
    ) -> Quote | None:
        path = self._path(input_asset, output_asset)
        try:
            amounts = await self._router.functions.getAmountsOut(amount, path).call()
        except (ContractLogicError, BadFunctionCallOutput) as e:
            logger.info(f"[PANCAKE] getAmountsOut reverted for {path}: {e}")
            return None
        except (Web3Exception, *RPC_TRANSPORT_ERRORS) as e:
            raise TransientNetworkError(f"getAmountsOut call failed: {e}") from e

        out = int(amounts[-1])
        hops = tuple(
            RouteHop(venue="PancakeSwap_V2", in_amount=int(amounts[i]), out_amount=int(amounts[i + 1]))
            for i in range(len(amounts) - 1)
        )
        return Quote(
            input_asset=input_asset,
            output_asset=output_asset,
            input_amount=amount,
            output_amount=out,
            minimum_output_amount=out * (10_000 - slippage_bps) // 10_000,
            slippage_bps=slippage_bps,
            route_hops=hops,
        )

    async def build_signed_transaction(self, quote: Quote, fee: FeeSetting) -> SignedTransaction:
        raise SubmissionError("PancakeSwap quoter is read-only; swaps execute through 0x")
