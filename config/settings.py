import os
import stat
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

LAMPORTS_PER_SOL = 1_000_000_000
WEI_PER_BNB = 10**18

SOL_MINT = "So11111111111111111111111111111111111111112"
# 0x uses this pseudo-address for the native chain asset
BSC_NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"

MAX_SLIPPAGE_BPS = 5000


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Venue
    chain: str = "solana"  # "solana" | "bsc"

    # Solana / Jupiter
    solana_rpc_url: str = ""
    jupiter_api_key: str = ""
    jupiter_quote_url: str = "https://api.jup.ag/swap/v1/quote"
    jupiter_swap_url: str = "https://api.jup.ag/swap/v1/swap"
    buy_amount_sol: str = ""
    max_buy_sol: float = 10.0
    priority_fee: str = "auto"  # "auto" or lamports

    # BSC / 0x / PancakeSwap
    bsc_rpc_url: str = ""
    zerox_api_key: str = ""
    zerox_api_url: str = "https://api.0x.org"
    pancake_router: str = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
    buy_amount_bnb: str = ""
    max_buy_bnb: float = 1.0
    max_gas_price_gwei: float = 10.0
    gas_limit: int = 300_000
    buy_retries: int = 2
    buy_retry_delay_ms: int = 500

    # Shared trade parameters
    slippage_bps: int = 500
    private_key: str = ""  # NEVER LOG THIS
    private_key_path: str = ""
    min_liquidity_usd: float = 0.0
    dexscreener_api_url: str = "https://api.dexscreener.com"

    # Risk policy
    roundtrip_high_loss_pct: float = 20.0
    roundtrip_critical_loss_pct: float = 50.0
    sell_tax_high_bps: int = 1000
    transfer_fee_critical_bps: int = 1000

    # Execution policy
    quote_max_age_sec: float = 10.0
    quote_warn_deviation_pct: float = 2.0
    quote_abort_deviation_pct: float = 10.0
    confirm_timeout_sec: float = 60.0
    swap_max_retries: int = 2
    default_retry_fee_lamports: int = 100_000
    fee_bump_multiplier: float = 1.5

    @property
    def amount_lamports(self) -> int:
        return sol_to_lamports(self.buy_amount_sol)

    @property
    def amount_wei(self) -> int:
        return bnb_to_wei(self.buy_amount_bnb)

    def __repr__(self) -> str:
        return f"Settings(chain={self.chain!r}, slippage_bps={self.slippage_bps})"


def _decimal_to_base_units(value: str, decimals: int) -> int:
    """Convert a decimal string to integer base units without float rounding.

    Digits beyond ``decimals`` are truncated.
    """
    value = value.strip()
    if not value or value.startswith("-"):
        raise ValueError(f"Invalid amount: {value!r}")
    whole, _, frac = value.partition(".")
    if not (whole or frac) or not (whole or "0").isdigit() or (frac and not frac.isdigit()):
        raise ValueError(f"Invalid amount: {value!r}")
    padded = (frac + "0" * decimals)[:decimals]
    return int(whole or "0") * 10**decimals + int(padded or "0")


def sol_to_lamports(sol: str) -> int:
    return _decimal_to_base_units(sol, 9)


def bnb_to_wei(bnb: str) -> int:
    return _decimal_to_base_units(bnb, 18)


def _warn_if_world_readable(path: Path, label: str) -> None:
    if os.name != "posix":
        return
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except OSError:
        return
    if mode & 0o044:
        logger.warning(
            f"[CONFIG] {label} {path} is readable by others (mode: {mode:o}). "
            f"Run: chmod 600 {path}"
        )


def check_env_file_permissions(env_path: str = ".env") -> None:
    path = Path(env_path).resolve()
    if path.exists():
        _warn_if_world_readable(path, ".env file")


def load_private_key_raw(cfg: Settings) -> str | None:
    """Return the raw private key from PRIVATE_KEY or PRIVATE_KEY_PATH.

    Raises ValueError when both sources are set or the key file is missing.
    """
    if cfg.private_key and cfg.private_key_path:
        raise ValueError("Both PRIVATE_KEY and PRIVATE_KEY_PATH are set. Use only one.")

    if cfg.private_key_path:
        path = Path(cfg.private_key_path).resolve()
        if not path.exists():
            raise ValueError(f"PRIVATE_KEY_PATH file not found: {path}")
        _warn_if_world_readable(path, "Key file")
        return path.read_text(encoding="utf-8").strip()

    return cfg.private_key or None


def validate_trade_settings(cfg: Settings) -> list[str]:
    """Collect every configuration problem for the selected venue.

    Returns a list of human-readable errors (empty when valid).
    """
    errors: list[str] = []

    if cfg.chain == "solana":
        if not cfg.solana_rpc_url:
            errors.append("SOLANA_RPC_URL is required")
        errors.extend(_amount_errors("BUY_AMOUNT_SOL", cfg.buy_amount_sol, cfg.max_buy_sol, "MAX_BUY_SOL"))
        if cfg.priority_fee != "auto" and not (cfg.priority_fee.isdigit() and int(cfg.priority_fee) > 0):
            errors.append('PRIORITY_FEE must be "auto" or a positive integer (lamports)')
    elif cfg.chain == "bsc":
        if not cfg.bsc_rpc_url:
            errors.append("BSC_RPC_URL is required")
        if not cfg.zerox_api_key:
            errors.append("ZEROX_API_KEY is required")
        errors.extend(_amount_errors("BUY_AMOUNT_BNB", cfg.buy_amount_bnb, cfg.max_buy_bnb, "MAX_BUY_BNB"))
    else:
        errors.append(f"CHAIN must be 'solana' or 'bsc' (got {cfg.chain!r})")

    if cfg.slippage_bps < 0:
        errors.append("SLIPPAGE_BPS must be a non-negative integer")
    elif cfg.slippage_bps > MAX_SLIPPAGE_BPS:
        errors.append(f"SLIPPAGE_BPS exceeds {MAX_SLIPPAGE_BPS} (50%), likely a mistake")

    for name, value in (("SWAP_MAX_RETRIES", cfg.swap_max_retries), ("BUY_RETRIES", cfg.buy_retries)):
        if value < 0:
            errors.append(f"{name} must be a non-negative integer")

    if cfg.private_key and cfg.private_key_path:
        errors.append("Both PRIVATE_KEY and PRIVATE_KEY_PATH are set. Use only one.")
    elif not (cfg.private_key or cfg.private_key_path):
        errors.append("PRIVATE_KEY or PRIVATE_KEY_PATH is required")

    return errors


def _amount_errors(name: str, raw: str, maximum: float, max_name: str) -> list[str]:
    try:
        value = float(raw)
    except ValueError:
        return [f"{name} must be a valid number"]
    if value <= 0:
        return [f"{name} must be greater than 0"]
    if value > maximum:
        return [f"{name} ({raw}) exceeds {max_name} ({maximum}). Increase {max_name} if intentional."]
    return []


settings = Settings()
