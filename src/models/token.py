"""On-chain token facts, as decoded by a venue's token inspector.

Two shapes exist: account-model mints (Solana SPL / Token-2022) and
contract-model tokens (BEP-20 on BSC). Both expose the same small capability
surface so the risk engine never branches on venue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class TransferFeeExtension:
    fee_bps: int
    max_fee: int


@dataclass(frozen=True)
class PermanentDelegateExtension:
    delegate: str | None  # None = default (all-zero) pubkey


@dataclass(frozen=True)
class NonTransferableExtension:
    pass


@dataclass(frozen=True)
class TransferHookExtension:
    program_id: str | None  # None = default (all-zero) pubkey


@dataclass(frozen=True)
class UnknownExtension:
    ext_type: int
    length: int


MintExtension = Union[
    TransferFeeExtension,
    PermanentDelegateExtension,
    NonTransferableExtension,
    TransferHookExtension,
    UnknownExtension,
]


@dataclass(frozen=True)
class AccountModelToken:
    """SPL Token / Token-2022 mint."""

    address: str
    total_supply: int
    decimals: int
    mint_authority: str | None = None  # None = revoked
    freeze_authority: str | None = None  # None = revoked
    is_initialized: bool = True
    is_token2022: bool = False
    extensions: tuple[MintExtension, ...] = field(default_factory=tuple)

    @property
    def has_mint_authority(self) -> bool:
        return self.mint_authority is not None

    @property
    def has_freeze_authority(self) -> bool:
        return self.freeze_authority is not None

    def has_mint_risk(self) -> bool:
        return self.has_mint_authority

    def has_freeze_risk(self) -> bool:
        return self.has_freeze_authority

    def has_owner_risk(self) -> bool:
        return False

    def is_proxy(self) -> bool:
        return False


@dataclass(frozen=True)
class ContractModelToken:
    """BEP-20 / ERC-20 token contract."""

    address: str
    total_supply: int
    decimals: int
    owner: str | None = None  # None = renounced or no owner()
    implementation: str | None = None  # EIP-1967 implementation, None = not a proxy
    name: str | None = None
    symbol: str | None = None

    @property
    def has_owner(self) -> bool:
        return self.owner is not None

    def has_mint_risk(self) -> bool:
        return False

    def has_freeze_risk(self) -> bool:
        return False

    def has_owner_risk(self) -> bool:
        return self.has_owner

    def is_proxy(self) -> bool:
        return self.implementation is not None

    @property
    def extensions(self) -> tuple[MintExtension, ...]:
        return ()


TokenMetadata = Union[AccountModelToken, ContractModelToken]
