"""Wallet loading — Solana keypair and BSC account, balance checks.

Private key is loaded ONCE at startup and never logged or exposed.
Only the public key / address is shown in logs and __repr__.
"""

from __future__ import annotations

import json
import re
from decimal import Decimal

from eth_account import Account
from eth_account.signers.local import LocalAccount
from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from config.settings import LAMPORTS_PER_SOL
from src.parsers.solana_rpc import SolanaRpcClient

SOLANA_KEYPAIR_BYTES = 64
_BASE58_KEYPAIR_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{86,88}$")


def load_keypair(raw: str) -> Keypair:
    """Keypair from a base58 secret or a solana-keygen JSON byte array."""
    raw = raw.strip()
    if not raw:
        raise ValueError("Wallet private key is empty")

    if raw.startswith("["):
        try:
            key_bytes = bytes(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ValueError("Private key JSON is not a byte array") from e
        if len(key_bytes) != SOLANA_KEYPAIR_BYTES:
            raise ValueError(f"Keypair must be {SOLANA_KEYPAIR_BYTES} bytes, got {len(key_bytes)}")
        return Keypair.from_bytes(key_bytes)

    if not _BASE58_KEYPAIR_RE.match(raw):
        raise ValueError("Private key is not a valid base58 keypair")
    try:
        return Keypair.from_base58_string(raw)
    except ValueError as e:
        raise ValueError("Private key is not a valid base58 keypair") from e


def load_evm_account(raw: str) -> LocalAccount:
    """BSC signer from a hex private key (with or without 0x)."""
    raw = raw.strip()
    if not raw:
        raise ValueError("Wallet private key is empty")
    if not raw.startswith("0x"):
        raw = "0x" + raw
    try:
        return Account.from_key(raw)
    except (ValueError, TypeError) as e:
        raise ValueError("Private key is not a valid 32-byte hex key") from e


class SolanaWallet:
    """Holds a Solana keypair and queries its SOL balance.

    Security: private key is only accessible via .keypair property.
    __repr__ and logging show only the public key.
    """

    def __init__(self, private_key_raw: str, rpc: SolanaRpcClient) -> None:
        self._keypair = load_keypair(private_key_raw)
        self._rpc = rpc
        logger.info(f"[WALLET] Loaded wallet: {self.pubkey_str}")

    def __repr__(self) -> str:
        return f"SolanaWallet(pubkey={self.pubkey_str})"

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def pubkey_str(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    async def get_balance_lamports(self) -> int:
        return await self._rpc.get_balance(self.pubkey_str)

    async def get_sol_balance(self) -> Decimal:
        """SOL balance (not lamports)."""
        lamports = await self.get_balance_lamports()
        return Decimal(lamports) / LAMPORTS_PER_SOL
