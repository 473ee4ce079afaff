"""Direct on-chain mint account parser — SPL Token / Token2022.

Decodes raw mint account data fetched via getAccountInfo, including the
Token2022 extension TLV area (transfer fee, permanent delegate,
non-transferable, transfer hook).
"""

import struct
from enum import IntEnum

from loguru import logger
from solders.pubkey import Pubkey

from src.models import (
    AccountModelToken,
    MintExtension,
    NonTransferableExtension,
    PermanentDelegateExtension,
    TransferFeeExtension,
    TransferHookExtension,
    UnknownExtension,
)
from src.parsers.solana_rpc import SolanaRpcClient
from src.trading.errors import ValidationError

# SPL Token mint layout: 82 bytes
# [0:36]   mintAuthorityOption (4) + mintAuthority (32)
# [36:44]  supply (u64)
# [44:45]  decimals (u8)
# [45:46]  isInitialized (bool)
# [46:82]  freezeAuthorityOption (4) + freezeAuthority (32)
SPL_MINT_SIZE = 82

# Token2022 pads mints to the token account size so the account type byte
# lands at the same offset for both account kinds
TOKEN_ACCOUNT_SIZE = 165
ACCOUNT_TYPE_MINT = 1

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

NULL_ADDRESS = "11111111111111111111111111111111"


class Token2022ExtType(IntEnum):
    """Token2022 extension type IDs (spl-token-2022 extension/mod.rs)."""

    TRANSFER_FEE_CONFIG = 1
    TRANSFER_FEE_AMOUNT = 2
    MINT_CLOSE_AUTHORITY = 3
    CONFIDENTIAL_TRANSFER_MINT = 4
    CONFIDENTIAL_TRANSFER_ACCOUNT = 5
    DEFAULT_ACCOUNT_STATE = 6
    IMMUTABLE_OWNER = 7
    MEMO_TRANSFER = 8
    NON_TRANSFERABLE = 9
    INTEREST_BEARING_CONFIG = 10
    CPI_GUARD = 11
    PERMANENT_DELEGATE = 12
    NON_TRANSFERABLE_ACCOUNT = 13
    TRANSFER_HOOK = 14
    TRANSFER_HOOK_ACCOUNT = 15
    METADATA_POINTER = 18
    TOKEN_METADATA = 19
    GROUP_POINTER = 20
    GROUP_MEMBER_POINTER = 22


# TransferFeeConfig: config authority (32) + withdraw authority (32) +
# withheld amount (8) + older TransferFee (16) + newer TransferFee (16).
# TransferFee = epoch u64 + maximum_fee u64 + basis_points u16
_NEWER_FEE_OFFSET = 90
TRANSFER_FEE_CONFIG_SIZE = 108


def is_valid_solana_address(address: str) -> bool:
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def _pubkey_or_none(raw: bytes) -> str | None:
    """Base58 pubkey; all-zero (default) key means unset."""
    if not any(raw):
        return None
    key = str(Pubkey.from_bytes(raw))
    return None if key == NULL_ADDRESS else key


def decode_mint(raw: bytes, address: str = "", *, owner: str = "") -> AccountModelToken:
    """Decode raw mint account bytes (SPL Token or Token2022)."""
    if len(raw) < SPL_MINT_SIZE:
        raise ValidationError(f"Mint data too short: {len(raw)} bytes")

    mint_authority: str | None = None
    if struct.unpack_from("<I", raw, 0)[0] == 1:
        mint_authority = _pubkey_or_none(raw[4:36])

    supply = struct.unpack_from("<Q", raw, 36)[0]
    decimals = raw[44]
    is_initialized = raw[45] != 0

    freeze_authority: str | None = None
    if struct.unpack_from("<I", raw, 46)[0] == 1:
        freeze_authority = _pubkey_or_none(raw[50:82])

    is_token2022 = owner == TOKEN_2022_PROGRAM_ID or len(raw) > SPL_MINT_SIZE
    extensions: tuple[MintExtension, ...] = ()
    if len(raw) > SPL_MINT_SIZE:
        extensions = tuple(parse_extensions(raw))

    return AccountModelToken(
        address=address,
        total_supply=supply,
        decimals=decimals,
        mint_authority=mint_authority,
        freeze_authority=freeze_authority,
        is_initialized=is_initialized,
        is_token2022=is_token2022,
        extensions=extensions,
    )


def _tlv_start(raw: bytes) -> int:
    # Canonical layout: zero padding up to 165, account type at 165, TLV from 166.
    # Compact layout: account type right after the base mint.
    if len(raw) > TOKEN_ACCOUNT_SIZE and not any(raw[SPL_MINT_SIZE:TOKEN_ACCOUNT_SIZE]):
        return TOKEN_ACCOUNT_SIZE + 1
    return SPL_MINT_SIZE + 1


def parse_extensions(raw: bytes) -> list[MintExtension]:
    """Parse Token2022 extension TLV entries from full mint account data.

    Entries are u16 type + u16 length + value. A truncated entry ends parsing:
    whatever was decoded before it is returned.
    """
    extensions: list[MintExtension] = []
    offset = _tlv_start(raw)

    while offset + 4 <= len(raw):
        ext_type, ext_len = struct.unpack_from("<HH", raw, offset)
        if ext_type == 0 and ext_len == 0:
            break  # Uninitialized padding

        start = offset + 4
        end = start + ext_len
        if end > len(raw):
            logger.debug(f"[MINT] Truncated extension {ext_type} at offset {offset}")
            break

        extensions.append(_decode_extension(ext_type, raw[start:end]))
        offset = end

    return extensions


def _decode_extension(ext_type: int, value: bytes) -> MintExtension:
    if ext_type == Token2022ExtType.TRANSFER_FEE_CONFIG and len(value) >= TRANSFER_FEE_CONFIG_SIZE:
        max_fee = struct.unpack_from("<Q", value, _NEWER_FEE_OFFSET + 8)[0]
        fee_bps = struct.unpack_from("<H", value, _NEWER_FEE_OFFSET + 16)[0]
        return TransferFeeExtension(fee_bps=fee_bps, max_fee=max_fee)
    if ext_type == Token2022ExtType.PERMANENT_DELEGATE and len(value) >= 32:
        return PermanentDelegateExtension(delegate=_pubkey_or_none(value[:32]))
    if ext_type == Token2022ExtType.NON_TRANSFERABLE:
        return NonTransferableExtension()
    if ext_type == Token2022ExtType.TRANSFER_HOOK and len(value) >= 64:
        return TransferHookExtension(program_id=_pubkey_or_none(value[32:64]))
    return UnknownExtension(ext_type=ext_type, length=len(value))


class MintInspector:
    """Token inspector for the Solana venue."""

    def __init__(self, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc

    async def fetch_token_metadata(self, address: str) -> AccountModelToken:
        account = await self._rpc.get_account_info(address)
        if account is None:
            raise ValidationError(f"Token account not found: {address}")
        if account.owner not in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            raise ValidationError(f"{address} is not an SPL token mint (owner {account.owner})")

        token = decode_mint(account.data, address, owner=account.owner)
        if not token.is_initialized:
            raise ValidationError(f"Mint {address} is not initialized")

        logger.debug(
            f"[MINT] {address[:12]} supply={token.total_supply} decimals={token.decimals} "
            f"token2022={token.is_token2022} extensions={len(token.extensions)}"
        )
        return token
