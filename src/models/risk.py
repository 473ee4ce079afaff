from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Mapping


class Severity(IntEnum):
    """Finding severity. Ordering matters: aggregation takes the max."""

    INFO = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class RiskCategory(str, Enum):
    HONEYPOT = "honeypot"
    AUTHORITY = "authority"
    EXTENSION = "extension"
    LIQUIDITY = "liquidity"
    PROXY = "proxy"
    SUPPLY = "supply"


# Aggregate level when no finding was produced
LEVEL_LOW = "low"


@dataclass(frozen=True)
class RiskFinding:
    severity: Severity
    message: str
    category: RiskCategory


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of one risk run. Not cached: on-chain state can change."""

    level: str
    findings: tuple[RiskFinding, ...] = ()
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_critical(self) -> bool:
        return self.level == Severity.CRITICAL.label

    @property
    def has_findings(self) -> bool:
        return len(self.findings) > 0

    def by_category(self, category: RiskCategory) -> list[RiskFinding]:
        return [f for f in self.findings if f.category == category]
