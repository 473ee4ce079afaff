"""Pydantic models for Jupiter Swap API v1 responses."""

from decimal import Decimal, InvalidOperation

from pydantic import BaseModel

from src.models import Quote, RouteHop


class JupiterSwapInfo(BaseModel):
    model_config = {"extra": "ignore"}

    ammKey: str = ""
    label: str | None = None
    inputMint: str = ""
    outputMint: str = ""
    inAmount: str = "0"
    outAmount: str = "0"
    feeAmount: str | None = None
    feeMint: str | None = None


class JupiterRoutePlanStep(BaseModel):
    model_config = {"extra": "ignore"}

    swapInfo: JupiterSwapInfo
    percent: int | None = None


class JupiterQuote(BaseModel):
    """GET /swap/v1/quote response body."""

    model_config = {"extra": "ignore"}

    inputMint: str
    inAmount: str
    outputMint: str
    outAmount: str
    otherAmountThreshold: str = "0"
    swapMode: str = "ExactIn"
    slippageBps: int = 0
    priceImpactPct: str | None = None
    routePlan: list[JupiterRoutePlanStep] = []

    def to_quote(self, raw: dict) -> Quote:
        hops = tuple(
            RouteHop(
                venue=step.swapInfo.label or step.swapInfo.ammKey[:8] or "unknown",
                in_amount=int(step.swapInfo.inAmount or 0),
                out_amount=int(step.swapInfo.outAmount or 0),
                fee_amount=int(step.swapInfo.feeAmount) if step.swapInfo.feeAmount else None,
            )
            for step in self.routePlan
        )
        return Quote(
            input_asset=self.inputMint,
            output_asset=self.outputMint,
            input_amount=int(self.inAmount),
            output_amount=int(self.outAmount),
            minimum_output_amount=int(self.otherAmountThreshold or 0),
            slippage_bps=self.slippageBps,
            price_impact_pct=_impact_pct(self.priceImpactPct),
            route_hops=hops,
            raw=raw,
        )


class JupiterSwapResponse(BaseModel):
    """POST /swap/v1/swap response body."""

    model_config = {"extra": "ignore"}

    swapTransaction: str | None = None
    lastValidBlockHeight: int | None = None
    prioritizationFeeLamports: int | None = None


def _impact_pct(value: str | None) -> Decimal:
    # Jupiter reports impact as a fraction ("0.0123" == 1.23%)
    if not value:
        return Decimal(0)
    try:
        return Decimal(value) * 100
    except InvalidOperation:
        return Decimal(0)
