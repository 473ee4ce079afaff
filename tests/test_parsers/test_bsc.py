"""Tests for the BSC venue — connection, contract inspector, PancakeSwap quoter."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from config.settings import BSC_NATIVE_TOKEN, WBNB
from src.models import SignedTransaction
from src.parsers.bsc.connection import BscConnection, is_valid_evm_address
from src.parsers.bsc.inspector import ContractInspector
from src.parsers.bsc.pancake import PancakeRouterQuoter
from src.trading.errors import SubmissionError, TransientNetworkError, ValidationError

TOKEN = "0x0E09FaBB73Bd3Ade0a17ECC321fD13a19e81cE82"
OWNER = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
ROUTER = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
TX_HASH = "0x" + "ab" * 32


def _call(value=None, error: Exception | None = None) -> MagicMock:
    fn = MagicMock()
    fn.call = AsyncMock(return_value=value, side_effect=error)
    return fn


# ── Address validation ─────────────────────────────────────────────────


class TestIsValidEvmAddress:
    def test_checksummed(self):
        assert is_valid_evm_address(TOKEN)

    def test_lowercase(self):
        assert is_valid_evm_address(TOKEN.lower())

    @pytest.mark.parametrize("address", ["", "0x1234", TOKEN[2:], "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"])
    def test_invalid(self, address):
        assert not is_valid_evm_address(address)


# ── BscConnection ──────────────────────────────────────────────────────


class TestBscConnection:
    def _connection(self) -> tuple[BscConnection, MagicMock]:
        w3 = MagicMock()
        return BscConnection(w3, poll_interval=0.0), w3

    async def test_submit(self):
        conn, w3 = self._connection()
        w3.eth.send_raw_transaction = AsyncMock(return_value=bytes.fromhex("ab" * 32))

        assert await conn.submit(SignedTransaction(payload=b"\x01")) == TX_HASH

    async def test_submit_network_error(self):
        conn, w3 = self._connection()
        w3.eth.send_raw_transaction = AsyncMock(side_effect=ConnectionResetError("reset"))
        with pytest.raises(TransientNetworkError):
            await conn.submit(SignedTransaction(payload=b"\x01"))

    async def test_submit_rejected(self):
        conn, w3 = self._connection()
        w3.eth.send_raw_transaction = AsyncMock(side_effect=ValueError("insufficient funds for gas"))
        with pytest.raises(SubmissionError):
            await conn.submit(SignedTransaction(payload=b"\x01", tx_id=TX_HASH))

    async def test_confirmation_after_not_found(self):
        conn, w3 = self._connection()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=[
            TransactionNotFound("not yet"),
            {"status": 1, "blockNumber": 123, "gasUsed": 150_000},
        ])

        result = await conn.await_confirmation(TX_HASH, SignedTransaction(payload=b""))

        assert result.error is None
        assert result.slot == 123

    async def test_reverted(self):
        conn, w3 = self._connection()
        w3.eth.get_transaction_receipt = AsyncMock(
            return_value={"status": 0, "blockNumber": 124, "gasUsed": 90_000}
        )

        result = await conn.await_confirmation(TX_HASH, SignedTransaction(payload=b""))

        assert result.error == {"status": 0, "revert_reason": None, "gas_used": 90_000}

    async def test_logs(self):
        conn, w3 = self._connection()
        w3.eth.get_transaction_receipt = AsyncMock(return_value={
            "logs": [{"address": TOKEN, "topics": [bytes.fromhex("dd" * 32)]}],
        })

        lines = await conn.fetch_transaction_logs(TX_HASH)

        assert lines == [f"log #0 {TOKEN} topics=[0x{'dd' * 32}]"]

    async def test_logs_unavailable(self):
        conn, w3 = self._connection()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("gone"))
        assert await conn.fetch_transaction_logs(TX_HASH) is None


# ── ContractInspector ──────────────────────────────────────────────────


def _inspector(
    *,
    code: bytes = b"\x60\x80",
    owner=OWNER,
    owner_error: Exception | None = None,
    impl_slot: bytes = bytes(32),
    impl_error: Exception | None = None,
    supply_error: Exception | None = None,
) -> ContractInspector:
    w3 = MagicMock()
    w3.eth.get_code = AsyncMock(return_value=code)
    w3.eth.get_storage_at = AsyncMock(return_value=impl_slot, side_effect=impl_error)
    contract = MagicMock()
    contract.functions.totalSupply.return_value = _call(10**27, supply_error)
    contract.functions.decimals.return_value = _call(18)
    contract.functions.name.return_value = _call("PancakeSwap Token")
    contract.functions.symbol.return_value = _call(error=ContractLogicError("no symbol"))
    contract.functions.owner.return_value = _call(owner, owner_error)
    w3.eth.contract.return_value = contract
    return ContractInspector(w3)


class TestContractInspector:
    async def test_owned_token(self):
        token = await _inspector().fetch_token_metadata(TOKEN.lower())

        assert token.address == TOKEN
        assert token.total_supply == 10**27
        assert token.decimals == 18
        assert token.owner == OWNER
        assert token.name == "PancakeSwap Token"
        assert token.symbol is None
        assert token.has_owner_risk()
        assert not token.is_proxy()

    async def test_renounced(self):
        token = await _inspector(owner="0x" + "0" * 40).fetch_token_metadata(TOKEN)
        assert token.owner is None

    async def test_no_owner_function(self):
        token = await _inspector(owner_error=ContractLogicError("execution reverted")).fetch_token_metadata(TOKEN)
        assert token.owner is None

    async def test_proxy(self):
        slot = bytes(12) + bytes.fromhex(OWNER[2:])
        token = await _inspector(impl_slot=slot).fetch_token_metadata(TOKEN)
        assert token.implementation == OWNER
        assert token.is_proxy()

    @pytest.mark.parametrize(
        "error",
        [
            Web3Exception("eth_getStorageAt not supported"),
            aiohttp.ClientConnectionError("reset"),
            asyncio.TimeoutError(),
        ],
    )
    async def test_unreadable_proxy_slot_is_not_proxy(self, error):
        token = await _inspector(impl_error=error).fetch_token_metadata(TOKEN)

        assert token.implementation is None
        assert not token.is_proxy()
        assert token.total_supply == 10**27

    async def test_no_code(self):
        with pytest.raises(ValidationError, match="No contract"):
            await _inspector(code=b"").fetch_token_metadata(TOKEN)

    async def test_not_a_token(self):
        with pytest.raises(ValidationError, match="BEP-20"):
            await _inspector(supply_error=ContractLogicError("revert")).fetch_token_metadata(TOKEN)


# ── PancakeRouterQuoter ────────────────────────────────────────────────


class TestPancakeRouterQuoter:
    def _quoter(self, amounts=None, error: Exception | None = None) -> tuple[PancakeRouterQuoter, MagicMock]:
        w3 = MagicMock()
        router = MagicMock()
        router.functions.getAmountsOut.return_value = _call(amounts, error)
        w3.eth.contract.return_value = router
        return PancakeRouterQuoter(w3, ROUTER), router

    async def test_sell_quote_maps_native_to_wbnb(self):
        quoter, router = self._quoter([5_000_000, 9 * 10**15])

        quote = await quoter.get_quote(TOKEN, BSC_NATIVE_TOKEN, 5_000_000, 4900)

        assert quote is not None
        assert quote.output_amount == 9 * 10**15
        assert quote.minimum_output_amount == 9 * 10**15 * 5100 // 10_000
        assert quote.output_asset == BSC_NATIVE_TOKEN
        amount, path = router.functions.getAmountsOut.call_args.args
        assert amount == 5_000_000
        assert path == [TOKEN, WBNB]

    async def test_token_to_token_routes_through_wbnb(self):
        other = "0x55d398326f99059fF775485246999027B3197955"
        quoter, router = self._quoter([1, 2, 3])

        quote = await quoter.get_quote(TOKEN, other, 1, 100)

        assert router.functions.getAmountsOut.call_args.args[1] == [TOKEN, WBNB, other]
        assert len(quote.route_hops) == 2

    async def test_revert_is_no_route(self):
        quoter, _ = self._quoter(error=ContractLogicError("INSUFFICIENT_LIQUIDITY"))
        assert await quoter.get_quote(TOKEN, BSC_NATIVE_TOKEN, 1, 100) is None

    async def test_read_only(self):
        quoter, _ = self._quoter()
        with pytest.raises(SubmissionError):
            await quoter.build_signed_transaction(MagicMock(), "auto")

    @pytest.mark.parametrize(
        "error",
        [
            aiohttp.ClientResponseError(MagicMock(), (), status=503, message="Service Unavailable"),
            OSError("conn reset"),
            asyncio.TimeoutError(),
            Web3Exception("rpc error"),
        ],
    )
    async def test_transport_failure_is_transient(self, error):
        quoter, _ = self._quoter(error=error)
        with pytest.raises(TransientNetworkError, match="getAmountsOut"):
            await quoter.get_quote(TOKEN, BSC_NATIVE_TOKEN, 1, 100)
