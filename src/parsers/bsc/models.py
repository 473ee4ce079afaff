"""Pydantic models for 0x Swap API v2 (allowance-holder) responses."""

from decimal import Decimal

from pydantic import BaseModel

from src.models import Quote, RouteHop


class ZeroXFill(BaseModel):
    model_config = {"extra": "ignore"}

    source: str = "unknown"
    proportionBps: str = "0"


class ZeroXRoute(BaseModel):
    model_config = {"extra": "ignore"}

    fills: list[ZeroXFill] = []


class ZeroXTokenTaxes(BaseModel):
    model_config = {"extra": "ignore"}

    buyTaxBps: str | None = None
    sellTaxBps: str | None = None


class ZeroXTokenMetadata(BaseModel):
    model_config = {"extra": "ignore"}

    buyToken: ZeroXTokenTaxes | None = None
    sellToken: ZeroXTokenTaxes | None = None


class ZeroXTransaction(BaseModel):
    model_config = {"extra": "ignore"}

    to: str
    data: str
    value: str = "0"
    gas: str | None = None
    gasPrice: str | None = None


class ZeroXQuote(BaseModel):
    """/price and /quote share this shape; only /quote carries ``transaction``."""

    model_config = {"extra": "ignore"}

    liquidityAvailable: bool = True
    sellToken: str = ""
    buyToken: str = ""
    sellAmount: str = "0"
    buyAmount: str = "0"
    minBuyAmount: str = "0"
    route: ZeroXRoute | None = None
    tokenMetadata: ZeroXTokenMetadata | None = None
    transaction: ZeroXTransaction | None = None

    @property
    def sell_tax_bps(self) -> int | None:
        taxes = self.tokenMetadata.buyToken if self.tokenMetadata else None
        if taxes is None or taxes.sellTaxBps is None:
            return None
        return int(taxes.sellTaxBps)

    def to_quote(self, slippage_bps: int, raw: dict) -> Quote:
        sell_amount = int(self.sellAmount)
        buy_amount = int(self.buyAmount)
        fills = self.route.fills if self.route else []
        hops = tuple(
            RouteHop(
                venue=fill.source,
                in_amount=sell_amount * int(fill.proportionBps) // 10_000,
                out_amount=buy_amount * int(fill.proportionBps) // 10_000,
            )
            for fill in fills
        )
        return Quote(
            input_asset=self.sellToken,
            output_asset=self.buyToken,
            input_amount=sell_amount,
            output_amount=buy_amount,
            minimum_output_amount=int(self.minBuyAmount or 0),
            slippage_bps=slippage_bps,
            price_impact_pct=Decimal(0),
            route_hops=hops,
            sell_tax_bps=self.sell_tax_bps,
            raw=raw,
        )


def format_route(fills: list[ZeroXFill] | list[dict]) -> str:
    """Route label, e.g. ``PancakeSwap_V2 (60%) + DODO (40%)``."""
    if not fills:
        return "unknown"
    parts = []
    for fill in fills:
        if isinstance(fill, dict):
            fill = ZeroXFill.model_validate(fill)
        parts.append(f"{fill.source} ({float(fill.proportionBps) / 100:.0f}%)")
    return " + ".join(parts)
