"""Anti-scam risk engine — heuristics over token metadata plus a round-trip sell simulation.

Checks are independent and best-effort: a failing check becomes a finding,
never an exception, so the remaining checks still run. The aggregate level is
the max structured severity across findings ("low" when there are none).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from types import MappingProxyType
from typing import Any

import httpx
from loguru import logger
from web3.exceptions import Web3Exception

from config.settings import Settings
from src.models import (
    LEVEL_LOW,
    NonTransferableExtension,
    PermanentDelegateExtension,
    Quote,
    RiskAssessment,
    RiskCategory,
    RiskFinding,
    Severity,
    TokenMetadata,
    TransferFeeExtension,
    TransferHookExtension,
)
from src.trading.errors import TradeError
from src.trading.interfaces import QuoteProvider

# Sell simulation accepts a wide slippage; only the expected output matters
SIMULATION_SLIPPAGE_BPS = 5000

# Quoter failures that say nothing about the token itself
_SIMULATION_ERRORS = (TradeError, httpx.HTTPError, Web3Exception, OSError, asyncio.TimeoutError, ValueError)


@dataclass(frozen=True)
class RiskPolicy:
    high_loss_pct: Decimal = Decimal("20")
    critical_loss_pct: Decimal = Decimal("50")
    sell_tax_high_bps: int = 1000
    transfer_fee_critical_bps: int = 1000
    min_liquidity_usd: Decimal = Decimal("0")

    @classmethod
    def from_settings(cls, cfg: Settings) -> RiskPolicy:
        return cls(
            high_loss_pct=Decimal(str(cfg.roundtrip_high_loss_pct)),
            critical_loss_pct=Decimal(str(cfg.roundtrip_critical_loss_pct)),
            sell_tax_high_bps=cfg.sell_tax_high_bps,
            transfer_fee_critical_bps=cfg.transfer_fee_critical_bps,
            min_liquidity_usd=Decimal(str(cfg.min_liquidity_usd)),
        )


@dataclass(frozen=True)
class VenueContext:
    chain: str  # "solana" | "bsc"
    native_asset: str  # asset the round trip returns to (SOL mint / WBNB)
    pool_liquidity_usd: Decimal | None = None  # best pool from discovery, if any


@dataclass(frozen=True)
class RoundTripResult:
    """Raw outcome of the buy→sell simulation."""

    can_sell: bool
    tokens_received: int = 0
    native_returned: int = 0
    loss_pct: Fraction | None = None
    reason: str | None = None
    api_error: bool = False  # simulation itself unavailable, says nothing about the token

    @property
    def loss_pct_display(self) -> str:
        if self.loss_pct is None:
            return "n/a"
        return f"{float(self.loss_pct):.1f}%"


def round_trip_loss_pct(spent: int, returned: int) -> Fraction:
    """Exact percentage of ``spent`` lost on the round trip (negative = gain)."""
    if spent <= 0:
        return Fraction(0)
    return Fraction((spent - returned) * 100, spent)


def classify_round_trip_loss(loss_pct: Fraction | Decimal | int, policy: RiskPolicy) -> RiskFinding | None:
    """Step function over loss: > critical → CRITICAL, > high → HIGH, else nothing."""
    loss = Fraction(loss_pct)
    shown = f"{float(loss):.1f}%"
    if loss > Fraction(policy.critical_loss_pct):
        return RiskFinding(
            Severity.CRITICAL,
            f"Extreme round-trip loss: {shown}, likely honeypot or extreme tax",
            RiskCategory.HONEYPOT,
        )
    if loss > Fraction(policy.high_loss_pct):
        return RiskFinding(
            Severity.HIGH,
            f"High round-trip loss: {shown}, possible hidden sell tax",
            RiskCategory.HONEYPOT,
        )
    return None


def aggregate_level(findings: list[RiskFinding] | tuple[RiskFinding, ...]) -> str:
    if not findings:
        return LEVEL_LOW
    return max(f.severity for f in findings).label


class RiskEngine:
    """Runs the fixed battery of checks for one token."""

    def __init__(
        self,
        sell_quoter: QuoteProvider,
        *,
        policy: RiskPolicy | None = None,
        simulate_buy_leg: bool = False,
    ) -> None:
        self._quoter = sell_quoter
        self._policy = policy or RiskPolicy()
        # Re-price the buy on the sell quoter when it is not the execution venue
        self._simulate_buy_leg = simulate_buy_leg

    async def assess(
        self,
        metadata: TokenMetadata,
        quote: Quote | None,
        venue: VenueContext,
    ) -> RiskAssessment:
        logger.info(f"[RISK] Running anti-scam checks for {metadata.address}")
        findings: list[RiskFinding] = []
        details: dict[str, Any] = {}

        round_trip = await self._simulate_round_trip(metadata, quote, venue)
        details["honeypot"] = round_trip
        findings.extend(self._honeypot_findings(round_trip))
        findings.extend(self._sell_tax_findings(quote))

        details["proxy"] = {"is_proxy": metadata.is_proxy(), "implementation": getattr(metadata, "implementation", None)}
        findings.extend(self._proxy_findings(metadata))

        details["authority"] = {
            "owner": getattr(metadata, "owner", None),
            "mint_authority": getattr(metadata, "mint_authority", None),
            "freeze_authority": getattr(metadata, "freeze_authority", None),
        }
        findings.extend(self._authority_findings(metadata))

        details["extensions"] = list(metadata.extensions)
        findings.extend(self._extension_findings(metadata))

        details["supply"] = metadata.total_supply
        if metadata.total_supply == 0:
            findings.append(
                RiskFinding(Severity.MEDIUM, "Token has zero supply, suspicious", RiskCategory.SUPPLY)
            )

        details["liquidity_usd"] = venue.pool_liquidity_usd
        findings.extend(self._liquidity_findings(venue))

        # Stable sort keeps check order within a severity
        findings.sort(key=lambda f: f.severity, reverse=True)
        assessment = RiskAssessment(
            level=aggregate_level(findings),
            findings=tuple(findings),
            details=MappingProxyType(details),
        )
        _log_assessment(assessment, round_trip)
        return assessment

    # ─── Honeypot ────────────────────────────────────────────────────

    async def _simulate_round_trip(
        self,
        metadata: TokenMetadata,
        quote: Quote | None,
        venue: VenueContext,
    ) -> RoundTripResult | None:
        if quote is None:
            logger.debug("[RISK] No buy quote, round-trip simulation skipped")
            return None

        logger.info("[RISK] Simulating round-trip swap to detect honeypot...")
        try:
            buy = await self._buy_leg(metadata, quote, venue)
            if buy is None:
                return RoundTripResult(
                    can_sell=False,
                    reason="No buy route on the simulation venue",
                    api_error=True,
                )
            if buy.output_amount <= 0:
                return RoundTripResult(can_sell=False, reason="Buy quote returned 0 tokens")

            sell = await self._quoter.get_quote(
                metadata.address,
                venue.native_asset,
                buy.output_amount,
                SIMULATION_SLIPPAGE_BPS,
            )
        except _SIMULATION_ERRORS as e:
            logger.warning(f"[RISK] Sell simulation unavailable: {e}")
            return RoundTripResult(
                can_sell=False,
                tokens_received=quote.output_amount,
                reason=f"Sell simulation failed: {e}",
                api_error=True,
            )

        if sell is None:
            return RoundTripResult(
                can_sell=False,
                tokens_received=buy.output_amount,
                reason="No sell route, token may be a honeypot",
            )
        if sell.output_amount <= 0:
            return RoundTripResult(
                can_sell=False,
                tokens_received=buy.output_amount,
                reason="Sell quote returned 0",
            )

        return RoundTripResult(
            can_sell=True,
            tokens_received=buy.output_amount,
            native_returned=sell.output_amount,
            loss_pct=round_trip_loss_pct(buy.input_amount, sell.output_amount),
        )

    async def _buy_leg(self, metadata: TokenMetadata, quote: Quote, venue: VenueContext) -> Quote | None:
        """The execution quote, or a fresh buy on the sell quoter's venue so both legs price one pool."""
        if not self._simulate_buy_leg:
            return quote
        return await self._quoter.get_quote(
            venue.native_asset,
            metadata.address,
            quote.input_amount,
            SIMULATION_SLIPPAGE_BPS,
        )

    def _honeypot_findings(self, result: RoundTripResult | None) -> list[RiskFinding]:
        if result is None:
            return []
        if result.api_error:
            return [
                RiskFinding(
                    Severity.INFO,
                    f"Honeypot simulation unavailable: {result.reason}",
                    RiskCategory.HONEYPOT,
                )
            ]
        if not result.can_sell:
            return [RiskFinding(Severity.CRITICAL, f"HONEYPOT RISK: {result.reason}", RiskCategory.HONEYPOT)]
        finding = classify_round_trip_loss(result.loss_pct or Fraction(0), self._policy)
        return [finding] if finding else []

    def _sell_tax_findings(self, quote: Quote | None) -> list[RiskFinding]:
        if quote is None or not quote.sell_tax_bps:
            return []
        pct = Decimal(quote.sell_tax_bps) / 100
        severity = Severity.HIGH if quote.sell_tax_bps >= self._policy.sell_tax_high_bps else Severity.MEDIUM
        return [RiskFinding(severity, f"Token declares a sell tax of {pct:.1f}%", RiskCategory.HONEYPOT)]

    # ─── Metadata checks ─────────────────────────────────────────────

    @staticmethod
    def _proxy_findings(metadata: TokenMetadata) -> list[RiskFinding]:
        if not metadata.is_proxy():
            return []
        impl = getattr(metadata, "implementation", None)
        return [
            RiskFinding(
                Severity.HIGH,
                f"Contract is an upgradeable proxy (impl: {impl}), owner can change logic",
                RiskCategory.PROXY,
            )
        ]

    @staticmethod
    def _authority_findings(metadata: TokenMetadata) -> list[RiskFinding]:
        findings: list[RiskFinding] = []
        if metadata.has_owner_risk():
            findings.append(
                RiskFinding(
                    Severity.MEDIUM,
                    f"Ownership not renounced (owner: {metadata.owner}), owner may have special privileges",
                    RiskCategory.AUTHORITY,
                )
            )
        if metadata.has_freeze_risk():
            findings.append(
                RiskFinding(
                    Severity.HIGH,
                    f"Freeze authority is set ({metadata.freeze_authority}), token accounts can be frozen",
                    RiskCategory.AUTHORITY,
                )
            )
        if metadata.has_mint_risk():
            findings.append(
                RiskFinding(
                    Severity.MEDIUM,
                    f"Mint authority is set ({metadata.mint_authority}), unlimited tokens can be minted",
                    RiskCategory.AUTHORITY,
                )
            )
        return findings

    def _extension_findings(self, metadata: TokenMetadata) -> list[RiskFinding]:
        findings: list[RiskFinding] = []
        for ext in metadata.extensions:
            if isinstance(ext, TransferFeeExtension) and ext.fee_bps > 0:
                pct = Decimal(ext.fee_bps) / 100
                if ext.fee_bps >= self._policy.transfer_fee_critical_bps:
                    findings.append(
                        RiskFinding(
                            Severity.CRITICAL,
                            f"EXTREME transfer fee: {pct:.2f}% (max {ext.max_fee} base units)",
                            RiskCategory.EXTENSION,
                        )
                    )
                else:
                    findings.append(
                        RiskFinding(
                            Severity.MEDIUM,
                            f"Transfer fee: {pct:.2f}% (max {ext.max_fee} base units)",
                            RiskCategory.EXTENSION,
                        )
                    )
            elif isinstance(ext, PermanentDelegateExtension) and ext.delegate:
                findings.append(
                    RiskFinding(
                        Severity.CRITICAL,
                        f"Permanent delegate {ext.delegate} can transfer or burn any holder's tokens",
                        RiskCategory.EXTENSION,
                    )
                )
            elif isinstance(ext, NonTransferableExtension):
                findings.append(
                    RiskFinding(
                        Severity.CRITICAL,
                        "Token is non-transferable (soulbound), it cannot be sold",
                        RiskCategory.EXTENSION,
                    )
                )
            elif isinstance(ext, TransferHookExtension) and ext.program_id:
                findings.append(
                    RiskFinding(
                        Severity.HIGH,
                        f"Transfer hook program {ext.program_id} runs custom logic that can block transfers",
                        RiskCategory.EXTENSION,
                    )
                )
        return findings

    def _liquidity_findings(self, venue: VenueContext) -> list[RiskFinding]:
        if venue.pool_liquidity_usd is None or self._policy.min_liquidity_usd <= 0:
            return []
        if venue.pool_liquidity_usd < self._policy.min_liquidity_usd:
            return [
                RiskFinding(
                    Severity.CRITICAL,
                    f"Pool liquidity ${venue.pool_liquidity_usd:,.0f} is below minimum "
                    f"${self._policy.min_liquidity_usd:,.0f}",
                    RiskCategory.LIQUIDITY,
                )
            ]
        return []


def _log_assessment(assessment: RiskAssessment, round_trip: RoundTripResult | None) -> None:
    if round_trip is not None and round_trip.can_sell:
        logger.info(f"[RISK]   Sell simulation OK: round-trip loss {round_trip.loss_pct_display}")
    if not assessment.has_findings:
        logger.success("[RISK] No scam indicators detected")
        return
    logger.warning(
        f"[RISK] Risk level: {assessment.level.upper()} ({len(assessment.findings)} finding(s))"
    )
    for f in assessment.findings:
        logger.warning(f"[RISK]   - [{f.severity.label}] {f.message}")


async def assess_risk(
    metadata: TokenMetadata,
    quote: Quote | None,
    venue: VenueContext,
    *,
    sell_quoter: QuoteProvider,
    policy: RiskPolicy | None = None,
    simulate_buy_leg: bool = False,
) -> RiskAssessment:
    engine = RiskEngine(sell_quoter, policy=policy, simulate_buy_leg=simulate_buy_leg)
    return await engine.assess(metadata, quote, venue)
