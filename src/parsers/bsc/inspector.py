"""BEP-20 contract inspection — supply, decimals, owner(), EIP-1967 proxy slot."""

from __future__ import annotations

from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception

from src.models import ContractModelToken
from src.parsers.bsc.connection import RPC_TRANSPORT_ERRORS
from src.trading.errors import ValidationError

EIP1967_IMPL_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC
ZERO_ADDRESS = "0x" + "0" * 40

TOKEN_ABI = [
    {"name": "totalSupply", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
    {"name": "name", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"name": "symbol", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"name": "owner", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "address"}]},
]

_CALL_ERRORS = (ContractLogicError, BadFunctionCallOutput, ValueError)


class ContractInspector:
    """Token inspector for the BSC venue."""

    def __init__(self, w3: AsyncWeb3) -> None:
        self._w3 = w3

    async def fetch_token_metadata(self, address: str) -> ContractModelToken:
        checksum = AsyncWeb3.to_checksum_address(address)
        code = await self._w3.eth.get_code(checksum)
        if not code:
            raise ValidationError(f"No contract deployed at {address}")

        contract = self._w3.eth.contract(address=checksum, abi=TOKEN_ABI)
        try:
            total_supply = int(await contract.functions.totalSupply().call())
            decimals = int(await contract.functions.decimals().call())
        except _CALL_ERRORS as e:
            raise ValidationError(f"{address} does not look like a BEP-20 token: {e}") from e

        name = await self._optional_call(contract.functions.name())
        symbol = await self._optional_call(contract.functions.symbol())
        owner = await self._owner(contract)
        implementation = await self._implementation(checksum)

        logger.debug(
            f"[BSC] {symbol or address[:10]} supply={total_supply} decimals={decimals} "
            f"owner={owner} proxy={implementation is not None}"
        )
        return ContractModelToken(
            address=checksum,
            total_supply=total_supply,
            decimals=decimals,
            owner=owner,
            implementation=implementation,
            name=name,
            symbol=symbol,
        )

    @staticmethod
    async def _optional_call(fn) -> str | None:
        try:
            return await fn.call()
        except _CALL_ERRORS:
            return None

    async def _owner(self, contract) -> str | None:
        """None when owner() is missing, reverts, or returns the zero address."""
        owner = await self._optional_call(contract.functions.owner())
        if not owner or int(owner, 16) == 0:
            return None
        return AsyncWeb3.to_checksum_address(owner)

    async def _implementation(self, address: str) -> str | None:
        """EIP-1967 implementation address. An unreadable slot counts as not a proxy."""
        try:
            raw = await self._w3.eth.get_storage_at(address, EIP1967_IMPL_SLOT)
        except (Web3Exception, ValueError, *RPC_TRANSPORT_ERRORS) as e:
            logger.debug(f"[BSC] Proxy slot read failed for {address}: {e}")
            return None
        impl = bytes(raw)[-20:]
        if not any(impl):
            return None
        return AsyncWeb3.to_checksum_address("0x" + impl.hex())
