"""Entry point — buy one token after a pre-trade risk assessment.

    python -m src.main <TOKEN> [--amount X] [--dry-run] [--yes] [--chain solana|bsc] [--force]
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger
from web3.exceptions import Web3Exception

from config.settings import (
    BSC_NATIVE_TOKEN,
    LAMPORTS_PER_SOL,
    SOL_MINT,
    WEI_PER_BNB,
    Settings,
    check_env_file_permissions,
    load_private_key_raw,
    settings,
    validate_trade_settings,
)
from src.models import AUTO_FEE, FeeHints, FeeSetting, TradeRequest
from src.parsers.bsc.connection import (
    BSC_CHAIN_ID,
    RPC_TRANSPORT_ERRORS,
    BscConnection,
    is_valid_evm_address,
    make_web3,
)
from src.parsers.bsc.inspector import ContractInspector
from src.parsers.bsc.pancake import PancakeRouterQuoter
from src.parsers.bsc.zerox import ZeroXClient
from src.parsers.dexscreener.client import DexScreenerClient
from src.parsers.jupiter.client import JupiterClient
from src.parsers.mint_parser import MintInspector, is_valid_solana_address
from src.parsers.pool_selector import analyze_pools
from src.parsers.solana_rpc import SolanaRpcClient, detect_network
from src.trading.errors import (
    ErrorKind,
    OnChainFailureError,
    RetriesExhaustedError,
    TradeError,
    ValidationError,
)
from src.trading.fees import GWEI, estimate_priority_fee, get_gas_price
from src.trading.interfaces import ChainConnection, QuoteProvider, TokenInspector
from src.trading.risk_engine import RiskEngine, RiskPolicy, VenueContext
from src.trading.swap_executor import ExecutionPolicy, SwapExecutor
from src.trading.wallet import SolanaWallet, load_evm_account
from src.utils.logger import setup_logger


class ExitCode(IntEnum):
    SUCCESS = 0
    BAD_ARGS = 1
    CONFIG_ERROR = 2
    RPC_ERROR = 3
    INSUFFICIENT_FUNDS = 4
    QUOTE_ERROR = 5
    SWAP_ERROR = 6
    USER_CANCELLED = 7
    TOKEN_INVALID = 8
    PRICE_DEVIATION = 9
    SCAM_DETECTED = 10


EXPLORERS = {
    "solana": "https://solscan.io/tx/",
    "bsc": "https://bscscan.com/tx/",
}


class ExitRequested(Exception):
    def __init__(self, code: ExitCode, message: str = "") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class Venue:
    chain: str
    native_asset: str
    native_symbol: str
    base_units: int
    amount: int
    quoter: QuoteProvider
    sell_quoter: QuoteProvider
    connection: ChainConnection
    inspector: TokenInspector
    # sell quoter prices a different venue than execution, so it quotes the buy leg too
    simulate_buy_leg: bool = False
    get_balance: Callable[[], Awaitable[int]] | None = None
    initial_fee: FeeSetting = AUTO_FEE
    retry_delay_sec: float = 0.0
    max_retries: int | None = None
    closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    def display(self, amount: int) -> str:
        return f"{Decimal(amount) / self.base_units} {self.native_symbol}"

    async def close(self) -> None:
        for close in self.closers:
            await close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m src.main",
        description="Buy one token on Solana (Jupiter) or BSC (0x) with anti-scam checks.",
    )
    parser.add_argument("token", help="token mint (Solana) or contract address (BSC)")
    parser.add_argument("--amount", help="override BUY_AMOUNT_SOL / BUY_AMOUNT_BNB")
    parser.add_argument("--dry-run", action="store_true", help="analyze without sending a transaction")
    parser.add_argument("--yes", "-y", action="store_true", help="skip the confirmation prompt")
    parser.add_argument("--chain", choices=["solana", "bsc"], help="override CHAIN")
    parser.add_argument("--force", action="store_true", help="buy even when risk is critical")
    return parser.parse_args(argv)


def _confirm(message: str) -> bool:
    sys.stderr.write(message)
    sys.stderr.flush()
    answer = sys.stdin.readline().strip().lower()
    return answer in ("y", "yes")


def apply_overrides(args: argparse.Namespace, cfg: Settings) -> Settings:
    """Settings with CLI overrides applied. Raises ExitRequested on bad input."""
    update: dict[str, Any] = {}
    if args.chain:
        update["chain"] = args.chain
    chain = args.chain or cfg.chain

    if args.amount is not None:
        try:
            value = float(args.amount)
        except ValueError:
            value = -1.0
        if value <= 0:
            raise ExitRequested(ExitCode.BAD_ARGS, "--amount must be a positive number")
        maximum = cfg.max_buy_sol if chain == "solana" else cfg.max_buy_bnb
        if value > maximum:
            raise ExitRequested(
                ExitCode.BAD_ARGS,
                f"--amount {args.amount} exceeds the configured maximum ({maximum}). "
                "Increase MAX_BUY_SOL / MAX_BUY_BNB in .env if intentional.",
            )
        update["buy_amount_sol" if chain == "solana" else "buy_amount_bnb"] = args.amount
        logger.info(f"[CLI] Override: --amount {args.amount}")

    return cfg.model_copy(update=update) if update else cfg


def validate_token_address(chain: str, token: str) -> None:
    valid = is_valid_solana_address(token) if chain == "solana" else is_valid_evm_address(token)
    if not valid:
        raise ExitRequested(ExitCode.BAD_ARGS, f"Invalid {chain} token address: {token}")


async def build_solana_venue(cfg: Settings, key_raw: str | None) -> Venue:
    rpc = SolanaRpcClient(cfg.solana_rpc_url)
    wallet = SolanaWallet(key_raw, rpc) if key_raw else None
    jupiter = JupiterClient(
        rpc,
        keypair=wallet.keypair if wallet else None,
        api_key=cfg.jupiter_api_key,
        quote_url=cfg.jupiter_quote_url,
        swap_url=cfg.jupiter_swap_url,
    )
    venue = Venue(
        chain="solana",
        native_asset=SOL_MINT,
        native_symbol="SOL",
        base_units=LAMPORTS_PER_SOL,
        amount=cfg.amount_lamports,
        quoter=jupiter,
        sell_quoter=jupiter,
        connection=rpc,
        inspector=MintInspector(rpc),
        get_balance=wallet.get_balance_lamports if wallet else None,
        initial_fee=AUTO_FEE if cfg.priority_fee == "auto" else int(cfg.priority_fee),
        closers=[jupiter.close, rpc.close],
    )

    try:
        height = await rpc.get_block_height()
    except TradeError as e:
        await venue.close()
        raise ExitRequested(ExitCode.RPC_ERROR, f"RPC connection failed: {e}") from e

    network = await detect_network(rpc)
    logger.info(f"[CLI] Solana network: {network}, block height {height}")
    if network == "mainnet-beta":
        logger.warning("[CLI] *** SOLANA MAINNET: real funds at risk ***")
    return venue


async def build_bsc_venue(cfg: Settings, key_raw: str | None) -> Venue:
    w3 = make_web3(cfg.bsc_rpc_url)
    account = load_evm_account(key_raw) if key_raw else None
    if account is not None:
        logger.info(f"[WALLET] Loaded wallet: {account.address}")
    connection = BscConnection(w3)
    zerox = ZeroXClient(
        w3,
        api_key=cfg.zerox_api_key,
        account=account,
        base_url=cfg.zerox_api_url,
        gas_limit=cfg.gas_limit,
        max_gas_price_gwei=cfg.max_gas_price_gwei,
    )

    async def _balance() -> int:
        return await connection.get_balance(account.address)

    venue = Venue(
        chain="bsc",
        native_asset=BSC_NATIVE_TOKEN,
        native_symbol="BNB",
        base_units=WEI_PER_BNB,
        amount=cfg.amount_wei,
        quoter=zerox,
        sell_quoter=PancakeRouterQuoter(w3, cfg.pancake_router),
        connection=connection,
        inspector=ContractInspector(w3),
        simulate_buy_leg=True,
        get_balance=_balance if account else None,
        retry_delay_sec=cfg.buy_retry_delay_ms / 1000,
        max_retries=cfg.buy_retries,
        closers=[zerox.close],
    )

    try:
        chain_id = await connection.get_chain_id()
    except (ValueError, Web3Exception, *RPC_TRANSPORT_ERRORS) as e:
        await venue.close()
        raise ExitRequested(ExitCode.RPC_ERROR, f"RPC connection failed: {e}") from e
    logger.info(f"[CLI] BSC chain ID: {chain_id}")
    if chain_id == BSC_CHAIN_ID:
        logger.warning("[CLI] *** BSC MAINNET: real funds at risk ***")
    return venue


async def fee_hints_for(venue: Venue, cfg: Settings) -> FeeHints:
    if venue.chain == "solana":
        estimate = await estimate_priority_fee(venue.connection)  # type: ignore[arg-type]
        if estimate is not None:
            logger.info(
                f"[FEES] Priority fee lamports low={estimate.low} medium={estimate.medium} "
                f"high={estimate.high} ({estimate.sampled_slots} slots)"
            )
        return FeeHints(
            initial_fee=venue.initial_fee,
            network_estimate=estimate.medium if estimate and estimate.medium > 0 else None,
            default_retry_fee=cfg.default_retry_fee_lamports,
        )

    bsc: BscConnection = venue.connection  # type: ignore[assignment]
    try:
        gas = await get_gas_price(bsc.w3, cfg.max_gas_price_gwei)
    except (ValueError, Web3Exception, *RPC_TRANSPORT_ERRORS) as e:
        logger.warning(f"[FEES] Gas price fetch failed: {e}. Using default")
        return FeeHints(initial_fee=AUTO_FEE, default_retry_fee=GWEI)
    logger.info(f"[FEES] Gas price {gas.gas_price_gwei:.2f} gwei{' (capped)' if gas.capped else ''}")
    return FeeHints(
        initial_fee=AUTO_FEE,
        network_estimate=gas.gas_price_wei,
        default_retry_fee=gas.gas_price_wei,
    )


async def pool_liquidity(cfg: Settings, chain: str, token: str) -> Decimal | None:
    dex = DexScreenerClient(base_url=cfg.dexscreener_api_url)
    try:
        pools = await dex.get_token_pairs(token, chain)
    except httpx.HTTPError as e:
        logger.warning(f"[CLI] DexScreener lookup failed: {e}. Continuing without pool data")
        return None
    finally:
        await dex.close()

    best = analyze_pools(pools, token, chain)
    if best is None:
        return None
    logger.info("[CLI] The aggregator finds its own route; pool data above is for reference only")
    return best.liquidity_usd


async def process_token(args: argparse.Namespace, cfg: Settings, venue: Venue) -> ExitCode:
    token = args.token

    if venue.get_balance is not None:
        try:
            balance = await venue.get_balance()
        except (TradeError, Web3Exception, *RPC_TRANSPORT_ERRORS) as e:
            logger.error(f"[CLI] Failed to fetch balance: {e}")
            return ExitCode.RPC_ERROR
        logger.info(f"[CLI] Balance: {venue.display(balance)}")
        if balance < venue.amount:
            logger.error(
                f"[CLI] Insufficient funds. Need {venue.display(venue.amount)} but have {venue.display(balance)}"
            )
            return ExitCode.INSUFFICIENT_FUNDS

    try:
        metadata = await venue.inspector.fetch_token_metadata(token)
    except ValidationError as e:
        logger.error(f"[CLI] Token validation failed: {e}")
        return ExitCode.TOKEN_INVALID
    except (TradeError, Web3Exception, *RPC_TRANSPORT_ERRORS) as e:
        logger.error(f"[CLI] Token lookup failed: {e}")
        return ExitCode.RPC_ERROR

    liquidity = await pool_liquidity(cfg, venue.chain, token)

    try:
        quote = await venue.quoter.get_quote(venue.native_asset, token, venue.amount, cfg.slippage_bps)
    except TradeError as e:
        logger.error(f"[CLI] Quote failed: {e}")
        return ExitCode.QUOTE_ERROR
    if quote is None:
        logger.error("[CLI] No route found for this token")
        return ExitCode.QUOTE_ERROR
    logger.info(
        f"[CLI] Quote: {venue.display(quote.input_amount)} -> {quote.output_amount} raw tokens "
        f"via {quote.route_label()} (impact {quote.price_impact_pct:.2f}%)"
    )

    engine = RiskEngine(
        venue.sell_quoter,
        policy=RiskPolicy.from_settings(cfg),
        simulate_buy_leg=venue.simulate_buy_leg,
    )
    assessment = await engine.assess(
        metadata,
        quote,
        VenueContext(chain=venue.chain, native_asset=venue.native_asset, pool_liquidity_usd=liquidity),
    )
    if assessment.is_critical:
        if not args.force:
            logger.error("[CLI] CRITICAL risk detected. Skipping token (use --force to override)")
            return ExitCode.SCAM_DETECTED
        logger.warning("[CLI] CRITICAL risk detected, continuing because of --force")

    if args.dry_run:
        logger.success("[CLI] Dry run complete. No transaction was sent")
        return ExitCode.SUCCESS

    if not args.yes:
        if not sys.stdin.isatty():
            logger.error("[CLI] Non-interactive mode. Use --yes to skip confirmation")
            return ExitCode.BAD_ARGS
        if not _confirm(f"\n  Swap {venue.display(venue.amount)} for token {token}?\n  Proceed? (y/n): "):
            logger.info("[CLI] Cancelled by user")
            return ExitCode.USER_CANCELLED

    fee_hints = await fee_hints_for(venue, cfg)
    policy = ExecutionPolicy.from_settings(
        cfg, max_retries=venue.max_retries, retry_delay_sec=venue.retry_delay_sec
    )
    executor = SwapExecutor(venue.quoter, venue.connection, policy=policy)
    request = TradeRequest(
        input_asset=venue.native_asset,
        output_asset=token,
        amount=venue.amount,
        slippage_bps=cfg.slippage_bps,
    )

    try:
        receipt = await executor.execute(request, quote, fee_hints)
    except TradeError as e:
        return _report_failure(e, venue.chain)

    explorer = EXPLORERS[venue.chain]
    logger.success("[CLI] Swap completed successfully!")
    logger.info(f"[CLI]   TX: {receipt.transaction_id}")
    logger.info(f"[CLI]   Explorer: {explorer}{receipt.transaction_id}")
    logger.info(f"[CLI]   Minimum output: {receipt.minimum_output} raw tokens, attempts: {len(receipt.attempts)}")
    return ExitCode.SUCCESS


def _report_failure(error: TradeError, chain: str) -> ExitCode:
    logger.error(f"[CLI] Swap failed: {error}")
    if error.transaction_id:
        logger.error(f"[CLI]   TX (failed): {EXPLORERS[chain]}{error.transaction_id}")
    if isinstance(error, OnChainFailureError) and error.logs:
        logger.error("[CLI]   Program logs:")
        for line in error.logs:
            logger.error(f"[CLI]     {line}")

    kind = error.kind
    if isinstance(error, RetriesExhaustedError):
        kind = getattr(error.last_error, "kind", kind)
    if kind == ErrorKind.PRICE_DEVIATION:
        return ExitCode.PRICE_DEVIATION
    if kind == ErrorKind.QUOTE_UNAVAILABLE:
        return ExitCode.QUOTE_ERROR
    if kind == ErrorKind.CANCELLED:
        return ExitCode.USER_CANCELLED
    return ExitCode.SWAP_ERROR


async def run(args: argparse.Namespace, cfg: Settings) -> ExitCode:
    cfg = apply_overrides(args, cfg)
    validate_token_address(cfg.chain, args.token)

    if args.dry_run:
        logger.info("[CLI] Mode: DRY RUN (no transaction will be sent)")

    check_env_file_permissions()
    errors = validate_trade_settings(cfg)
    if args.dry_run:
        # Analysis needs no wallet
        errors = [e for e in errors if "PRIVATE_KEY" not in e]
    if errors:
        for err in errors:
            logger.error(f"[CONFIG] {err}")
        return ExitCode.CONFIG_ERROR

    try:
        key_raw = load_private_key_raw(cfg)
        builder = build_solana_venue if cfg.chain == "solana" else build_bsc_venue
        venue = await builder(cfg, key_raw)
    except ValueError as e:
        logger.error(f"[CONFIG] {e}")
        return ExitCode.CONFIG_ERROR
    except TradeError as e:
        logger.error(f"[CONFIG] {e}")
        return ExitCode.CONFIG_ERROR

    logger.info(f"[CLI] Buy amount: {venue.display(venue.amount)}, slippage {cfg.slippage_bps / 100}%")
    try:
        return await process_token(args, cfg, venue)
    finally:
        await venue.close()


async def main(argv: list[str] | None = None) -> int:
    setup_logger(level="INFO")
    args = parse_args(argv)

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    run_task = asyncio.create_task(run(args, settings))
    shutdown_task = asyncio.create_task(shutdown_event.wait())
    done, pending = await asyncio.wait([run_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    if run_task not in done:
        logger.warning("[CLI] Interrupted. A transaction already sent may still land; check the explorer")
        return ExitCode.USER_CANCELLED

    try:
        return int(run_task.result())
    except ExitRequested as e:
        logger.error(f"[CLI] {e}")
        return int(e.code)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
