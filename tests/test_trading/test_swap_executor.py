"""Tests for SwapExecutor — freshness gate, slippage floor, retries and fee escalation.

Quote provider and chain connection are AsyncMocks; confirmation timeouts use
a short policy window instead of the real 60s.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from fractions import Fraction
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.models import (
    AUTO_FEE,
    AttemptOutcome,
    ConfirmationResult,
    FeeHints,
    SignedTransaction,
    TradeRequest,
)
from src.trading.errors import (
    BlockhashExpiredError,
    ConfigError,
    ConfirmationTimeoutError,
    ErrorKind,
    OnChainFailureError,
    PriceDeviationError,
    QuoteUnavailableError,
    RetriesExhaustedError,
    SubmissionError,
    SwapCancelledError,
    TransientNetworkError,
    ValidationError,
)
from src.trading.swap_executor import (
    ExecutionPolicy,
    SwapExecutor,
    execute_swap,
    minimum_output_amount,
    next_fee,
    price_deviation_pct,
)
from tests.conftest import SOL_MINT, TOKEN_MINT, make_quote

TX_ID = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"


def _request(**overrides) -> TradeRequest:
    params = dict(input_asset=SOL_MINT, output_asset=TOKEN_MINT, amount=1_000_000_000, slippage_bps=500)
    params.update(overrides)
    return TradeRequest(**params)


def _provider() -> MagicMock:
    provider = MagicMock()
    provider.get_quote = AsyncMock(return_value=make_quote())
    provider.build_signed_transaction = AsyncMock(
        side_effect=lambda quote, fee: SignedTransaction(payload=b"signed", tx_id=TX_ID, fee=fee)
    )
    return provider


def _connection(confirmation: ConfirmationResult | None = None) -> MagicMock:
    connection = MagicMock()
    connection.submit = AsyncMock(return_value=TX_ID)
    connection.await_confirmation = AsyncMock(return_value=confirmation or ConfirmationResult(tx_id=TX_ID))
    connection.fetch_transaction_logs = AsyncMock(return_value=None)
    return connection


def _executor(provider, connection, *, now: float = 1.0, **policy) -> SwapExecutor:
    return SwapExecutor(provider, connection, policy=ExecutionPolicy(**policy), clock=lambda: now)


def _fees(provider: MagicMock) -> list:
    return [c.args[1] for c in provider.build_signed_transaction.await_args_list]


# ── Pure helpers ──────────────────────────────────────────────────────


class TestMinimumOutputAmount:
    def test_reference_value(self):
        assert minimum_output_amount(1_000_000, 550) == 945_000

    def test_floors(self):
        assert minimum_output_amount(999, 500) == 949

    def test_deterministic(self):
        assert minimum_output_amount(123_456_789, 137) == minimum_output_amount(123_456_789, 137)

    def test_zero_and_full_slippage(self):
        assert minimum_output_amount(5_000, 0) == 5_000
        assert minimum_output_amount(5_000, 10_000) == 0

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_out_of_range(self, bps):
        with pytest.raises(ValidationError):
            minimum_output_amount(1_000, bps)


class TestNextFee:
    hints = FeeHints(default_retry_fee=100_000)

    def test_auto_uses_default_without_estimate(self):
        assert next_fee(AUTO_FEE, self.hints) == 100_000

    def test_auto_prefers_network_estimate(self):
        assert next_fee(AUTO_FEE, FeeHints(network_estimate=42_000, default_retry_fee=100_000)) == 42_000

    def test_escalation_sequence(self):
        first = next_fee(AUTO_FEE, self.hints)
        second = next_fee(first, self.hints)
        third = next_fee(second, self.hints)
        assert [first, second, third] == [100_000, 150_000, 225_000]

    def test_rounds_up(self):
        assert next_fee(3, self.hints) == 5

    def test_custom_multiplier(self):
        assert next_fee(1_000, self.hints, Fraction(2)) == 2_000

    def test_non_positive_restarts_from_default(self):
        assert next_fee(0, self.hints) == 100_000


class TestPriceDeviation:
    def test_worse(self):
        assert price_deviation_pct(1_000, 850) == Decimal(15)

    def test_better_is_negative(self):
        assert price_deviation_pct(1_000, 1_100) < 0

    def test_zero_baseline(self):
        assert price_deviation_pct(0, 10) == 0


# ── Execution ─────────────────────────────────────────────────────────


class TestExecuteSuccess:
    @pytest.mark.asyncio
    async def test_first_attempt_confirms(self):
        provider, connection = _provider(), _connection()
        receipt = await _executor(provider, connection).execute(_request(), make_quote(), FeeHints())

        assert receipt.transaction_id == TX_ID
        assert len(receipt.attempts) == 1
        assert receipt.attempts[0].outcome == AttemptOutcome.CONFIRMED
        assert receipt.attempts[0].transaction_id == TX_ID
        provider.get_quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_minimum_output_applied_before_build(self):
        provider, connection = _provider(), _connection()
        quote = make_quote(output_amount=1_000_000)

        receipt = await _executor(provider, connection).execute(_request(slippage_bps=550), quote, FeeHints())

        built_quote = provider.build_signed_transaction.await_args.args[0]
        assert built_quote.minimum_output_amount == 945_000
        assert receipt.minimum_output == 945_000

    @pytest.mark.asyncio
    async def test_execute_swap_returns_tx_id(self):
        tx_id = await execute_swap(
            _request(), make_quote(fetched_at=1e12), _provider(), _connection(), FeeHints()
        )
        assert tx_id == TX_ID


class TestOnChainFailure:
    @pytest.mark.asyncio
    async def test_revert_is_not_retried(self):
        provider = _provider()
        connection = _connection(
            ConfirmationResult(tx_id=TX_ID, error={"InstructionError": [2, {"Custom": 6001}]})
        )
        connection.fetch_transaction_logs = AsyncMock(return_value=[f"log line {i}" for i in range(15)])

        with pytest.raises(OnChainFailureError) as exc_info:
            await _executor(provider, connection).execute(_request(), make_quote(), FeeHints())

        err = exc_info.value
        assert err.transaction_id == TX_ID
        assert err.kind == ErrorKind.ON_CHAIN
        assert "Slippage tolerance exceeded" in str(err)
        assert err.raw_on_chain_error == {"InstructionError": [2, {"Custom": 6001}]}
        assert err.logs == [f"log line {i}" for i in range(5, 15)]
        assert err.context["token"] == TOKEN_MINT
        connection.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_log_fetch_failure_still_reports_revert(self):
        connection = _connection(ConfirmationResult(tx_id=TX_ID, error={"status": 0, "revert_reason": None}))
        connection.fetch_transaction_logs = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(OnChainFailureError) as exc_info:
            await _executor(_provider(), connection).execute(_request(), make_quote(), FeeHints())

        assert exc_info.value.logs == []
        assert "reverted on-chain" in str(exc_info.value)


class TestRetries:
    @pytest.mark.asyncio
    async def test_timeout_then_success_bumps_fee(self):
        provider, connection = _provider(), _connection()
        calls = 0

        async def _confirm(tx_id, signed):
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(5)
            return ConfirmationResult(tx_id=tx_id)

        connection.await_confirmation = AsyncMock(side_effect=_confirm)
        executor = _executor(provider, connection, confirm_timeout_sec=0.05)

        receipt = await executor.execute(_request(), make_quote(), FeeHints(initial_fee=100_000))

        fees = _fees(provider)
        assert len(fees) == 2
        assert fees[1] > fees[0]
        assert [a.outcome for a in receipt.attempts] == [AttemptOutcome.TIMED_OUT, AttemptOutcome.CONFIRMED]

    @pytest.mark.asyncio
    async def test_fee_sequence_until_exhausted(self):
        provider, connection = _provider(), _connection()
        connection.submit = AsyncMock(side_effect=TransientNetworkError("connection reset"))

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await _executor(provider, connection, max_retries=2).execute(
                _request(), make_quote(), FeeHints(initial_fee=AUTO_FEE, default_retry_fee=100_000)
            )

        assert _fees(provider) == [AUTO_FEE, 100_000, 150_000]
        assert isinstance(exc_info.value.last_error, TransientNetworkError)
        assert connection.submit.await_count == 3

    @pytest.mark.asyncio
    async def test_explicit_initial_fee_sequence(self):
        provider, connection = _provider(), _connection()
        connection.submit = AsyncMock(side_effect=BlockhashExpiredError("Blockhash not found"))

        with pytest.raises(RetriesExhaustedError):
            await _executor(provider, connection, max_retries=2).execute(
                _request(), make_quote(), FeeHints(initial_fee=100_000)
            )

        assert _fees(provider) == [100_000, 150_000, 225_000]

    @pytest.mark.asyncio
    async def test_raw_transport_error_is_retried(self):
        provider, connection = _provider(), _connection()
        connection.submit = AsyncMock(side_effect=[httpx.ConnectError("refused"), TX_ID])

        receipt = await _executor(provider, connection).execute(_request(), make_quote(), FeeHints())

        assert receipt.transaction_id == TX_ID
        assert receipt.attempts[0].outcome == AttemptOutcome.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_expired_blockhash_during_confirmation_is_retried(self):
        provider, connection = _provider(), _connection()
        connection.await_confirmation = AsyncMock(
            side_effect=[BlockhashExpiredError("block height exceeded"), ConfirmationResult(tx_id=TX_ID)]
        )

        receipt = await _executor(provider, connection).execute(_request(), make_quote(), FeeHints())

        assert len(receipt.attempts) == 2
        assert provider.build_signed_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_terminal_submit_error_not_retried(self):
        provider, connection = _provider(), _connection()
        connection.submit = AsyncMock(side_effect=SubmissionError("Transaction simulation failed"))

        with pytest.raises(SubmissionError):
            await _executor(provider, connection).execute(_request(), make_quote(), FeeHints())

        connection.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_exhaustion_keeps_tx_id(self):
        provider, connection = _provider(), _connection()

        async def _hang(tx_id, signed):
            await asyncio.sleep(5)

        connection.await_confirmation = AsyncMock(side_effect=_hang)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await _executor(provider, connection, confirm_timeout_sec=0.02, max_retries=1).execute(
                _request(), make_quote(), FeeHints()
            )

        assert isinstance(exc_info.value.last_error, ConfirmationTimeoutError)
        assert exc_info.value.transaction_id == TX_ID
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_deadline_cancels_before_attempt(self):
        provider, connection = _provider(), _connection()
        executor = SwapExecutor(provider, connection, clock=lambda: 100.0)

        with pytest.raises(SwapCancelledError):
            await executor.execute(_request(), make_quote(fetched_at=99.0), FeeHints(), deadline=50.0)

        provider.build_signed_transaction.assert_not_awaited()


class TestQuoteFreshness:
    @pytest.mark.asyncio
    async def test_fresh_quote_reused(self):
        provider = _provider()
        executor = _executor(provider, _connection(), now=5.0)

        await executor.execute(_request(), make_quote(fetched_at=0.0), FeeHints())
        provider.get_quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_quote_refreshed(self):
        provider = _provider()
        provider.get_quote = AsyncMock(return_value=make_quote(output_amount=4_950_000, fetched_at=100.0))
        executor = _executor(provider, _connection(), now=100.0)

        await executor.execute(_request(), make_quote(output_amount=5_000_000, fetched_at=0.0), FeeHints())

        provider.get_quote.assert_awaited_once_with(SOL_MINT, TOKEN_MINT, 1_000_000_000, 500)
        built = provider.build_signed_transaction.await_args.args[0]
        assert built.output_amount == 4_950_000

    @pytest.mark.asyncio
    async def test_adverse_move_aborts(self):
        provider = _provider()
        provider.get_quote = AsyncMock(return_value=make_quote(output_amount=4_000_000, fetched_at=100.0))
        executor = _executor(provider, _connection(), now=100.0)

        with pytest.raises(PriceDeviationError):
            await executor.execute(_request(), make_quote(output_amount=5_000_000), FeeHints())

        provider.build_signed_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_adverse_move_allowed_by_override(self):
        provider = _provider()
        provider.get_quote = AsyncMock(return_value=make_quote(output_amount=4_000_000, fetched_at=100.0))
        executor = _executor(provider, _connection(), now=100.0)

        receipt = await executor.execute(
            _request(allow_price_deviation=True), make_quote(output_amount=5_000_000), FeeHints()
        )
        assert receipt.minimum_output == 3_800_000

    @pytest.mark.asyncio
    async def test_refresh_without_route(self):
        provider = _provider()
        provider.get_quote = AsyncMock(return_value=None)
        executor = _executor(provider, _connection(), now=100.0)

        with pytest.raises(QuoteUnavailableError):
            await executor.execute(_request(), make_quote(), FeeHints())

    @pytest.mark.asyncio
    async def test_transient_refresh_failure_is_retried(self):
        provider = _provider()
        provider.get_quote = AsyncMock(
            side_effect=[TransientNetworkError("HTTP 503"), make_quote(output_amount=4_990_000, fetched_at=100.0)]
        )
        executor = _executor(provider, _connection(), now=100.0)

        receipt = await executor.execute(_request(), make_quote(fetched_at=0.0), FeeHints())

        assert provider.get_quote.await_count == 2
        assert provider.build_signed_transaction.await_count == 1
        assert [a.outcome for a in receipt.attempts] == [AttemptOutcome.NETWORK_ERROR, AttemptOutcome.CONFIRMED]
        assert receipt.minimum_output == minimum_output_amount(4_990_000, 500)

    @pytest.mark.asyncio
    async def test_raw_transport_error_during_refresh_is_retried(self):
        provider = _provider()
        provider.get_quote = AsyncMock(
            side_effect=[httpx.ConnectError("refused"), make_quote(fetched_at=100.0)]
        )
        executor = _executor(provider, _connection(), now=100.0)

        receipt = await executor.execute(_request(), make_quote(fetched_at=0.0), FeeHints())
        assert len(receipt.attempts) == 2

    @pytest.mark.asyncio
    async def test_refresh_failures_exhaust_retries(self):
        provider = _provider()
        provider.get_quote = AsyncMock(side_effect=TransientNetworkError("HTTP 503"))
        executor = _executor(provider, _connection(), now=100.0, max_retries=1)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await executor.execute(_request(), make_quote(fetched_at=0.0), FeeHints())

        assert isinstance(exc_info.value.last_error, TransientNetworkError)
        assert provider.get_quote.await_count == 2
        provider.build_signed_transaction.assert_not_awaited()


class TestExecutionPolicy:
    def test_from_settings(self):
        from config.settings import Settings

        cfg = Settings(swap_max_retries=4, fee_bump_multiplier=2.0, confirm_timeout_sec=30)
        policy = ExecutionPolicy.from_settings(cfg)

        assert policy.max_retries == 4
        assert policy.fee_bump_multiplier == Fraction(2)
        assert policy.confirm_timeout_sec == 30

    def test_max_retries_override(self):
        from config.settings import Settings

        policy = ExecutionPolicy.from_settings(Settings(), max_retries=1, retry_delay_sec=0.5)
        assert policy.max_retries == 1
        assert policy.retry_delay_sec == 0.5

    def test_negative_retries_rejected(self):
        with pytest.raises(ConfigError, match="max_retries"):
            ExecutionPolicy(max_retries=-1)

    def test_zero_retries_is_single_attempt(self):
        assert ExecutionPolicy(max_retries=0).max_retries == 0
