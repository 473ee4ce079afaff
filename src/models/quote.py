from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class RouteHop:
    venue: str
    in_amount: int
    out_amount: int
    fee_amount: int | None = None


@dataclass(frozen=True)
class Quote:
    """A priced route. Amounts are integers in base units.

    Never mutated: a refreshed quote is a new object.
    """

    input_asset: str
    output_asset: str
    input_amount: int
    output_amount: int
    minimum_output_amount: int
    slippage_bps: int
    price_impact_pct: Decimal = Decimal("0")
    route_hops: tuple[RouteHop, ...] = ()
    sell_tax_bps: int | None = None  # venue-declared tax, independent of simulation
    fetched_at: float = field(default_factory=time.monotonic)
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def age(self, now: float | None = None) -> float:
        """Seconds since this quote was fetched."""
        return (time.monotonic() if now is None else now) - self.fetched_at

    def route_label(self) -> str:
        if not self.route_hops:
            return "unknown"
        return " -> ".join(hop.venue for hop in self.route_hops)
