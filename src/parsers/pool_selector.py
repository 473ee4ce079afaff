"""DexScreener pool ranking — hard filters plus composite score (0-100).

Informational only: the aggregator routes independently. The best pool's
liquidity feeds the minimum-liquidity gate.

Score breakdown:
- Liquidity:      40 pts max (log10 scale, $1K -> 0, $1M -> 40)
- Volume 24h:     25 pts max (log10 scale, $100 -> 0, $500K -> 25)
- Turnover ratio: 15 pts max (volume/liquidity, capped at 2.0)
- Quote quality:  10 pts max (tier 1 = 10, tier 2 = 5)
- Tx count 24h:   10 pts max (log10 scale, 10 -> 0, 10K -> 10)
"""

import math
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal

from loguru import logger

from src.parsers.dexscreener.models import DexScreenerPair, DexScreenerToken


@dataclass(frozen=True)
class QuoteTokenInfo:
    symbol: str
    tier: int


# Keys are lowercased so EVM addresses match regardless of checksum casing
LIQUID_QUOTES: dict[str, dict[str, QuoteTokenInfo]] = {
    "solana": {
        "so11111111111111111111111111111111111111112": QuoteTokenInfo("SOL", 1),
        "epjfwdd5aufqssqem2qn1xzybapc8g4weggkzwytdt1v": QuoteTokenInfo("USDC", 1),
        "es9vmfrzacermjfrf4h2fyd4kconky11mcce8benwnyb": QuoteTokenInfo("USDT", 2),
    },
    "bsc": {
        "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c": QuoteTokenInfo("WBNB", 1),
        "0x55d398326f99059ff775485246999027b3197955": QuoteTokenInfo("USDT", 1),
        "0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d": QuoteTokenInfo("USDC", 2),
        "0xe9e7cea3dedca5984780bafc599bd69add087d56": QuoteTokenInfo("BUSD", 2),
    },
}

TRUSTED_DEXES: dict[str, frozenset[str]] = {
    "solana": frozenset(
        {"raydium", "orca", "meteora", "phoenix", "lifinity", "openbook", "fluxbeam", "invariant", "saber"}
    ),
    "bsc": frozenset({"pancakeswap", "biswap", "apeswap", "thena", "uniswap", "sushiswap"}),
}


@dataclass(frozen=True)
class PoolValidation:
    valid: bool
    reason: str | None = None
    quote_info: QuoteTokenInfo | None = None


@dataclass(frozen=True)
class PoolScore:
    pool: DexScreenerPair
    quote_info: QuoteTokenInfo
    total: float
    liquidity: float
    volume: float
    turnover: float
    quote_quality: int
    tx_activity: float

    @property
    def liquidity_usd(self) -> Decimal:
        return _liquidity_usd(self.pool)


def identify_tokens(
    pool: DexScreenerPair, target: str
) -> tuple[DexScreenerToken, DexScreenerToken | None] | None:
    """(target, quote) token pair, or None if the target is not in the pool."""
    needle = target.lower()
    base, quote = pool.baseToken, pool.quoteToken
    if base is not None and base.address.lower() == needle:
        return base, quote
    if quote is not None and quote.address.lower() == needle:
        return quote, base
    return None


def _liquidity_usd(pool: DexScreenerPair) -> Decimal:
    if pool.liquidity is None or pool.liquidity.usd is None:
        return Decimal(0)
    return pool.liquidity.usd


def validate_pool(pool: DexScreenerPair, target: str, chain: str = "solana") -> PoolValidation:
    tokens = identify_tokens(pool, target)
    if tokens is None:
        return PoolValidation(False, "target token not in pair")

    quote = tokens[1]
    quote_addr = quote.address.lower() if quote else ""
    quote_info = LIQUID_QUOTES.get(chain, {}).get(quote_addr)
    if quote_info is None:
        label = (quote.symbol if quote else None) or quote_addr
        return PoolValidation(False, f"non-liquid quote token: {label}")

    if pool.dexId.lower() not in TRUSTED_DEXES.get(chain, frozenset()):
        return PoolValidation(False, f"untrusted DEX: {pool.dexId}")

    if _liquidity_usd(pool) <= 0:
        return PoolValidation(False, "zero liquidity")

    return PoolValidation(True, quote_info=quote_info)


def _log_score(value: float, max_pts: float, low: float, high: float) -> float:
    if value <= 0:
        return 0.0
    scaled = (math.log10(value) - math.log10(low)) / (math.log10(high) - math.log10(low))
    return min(max_pts, max(0.0, scaled * max_pts))


def score_pool(pool: DexScreenerPair, quote_info: QuoteTokenInfo) -> PoolScore:
    liq = float(_liquidity_usd(pool))
    vol = float(pool.volume.h24 or 0) if pool.volume else 0.0
    day = pool.txns.h24 if pool.txns else None
    tx_count = ((day.buys or 0) + (day.sells or 0)) if day else 0

    liq_score = _log_score(liq, 40, 1_000, 1_000_000)
    vol_score = _log_score(vol, 25, 100, 500_000)
    turnover = min(vol / liq, 2.0) if liq > 0 else 0.0
    turnover_score = turnover / 2.0 * 15
    quote_score = 10 if quote_info.tier == 1 else 5
    tx_score = _log_score(tx_count, 10, 10, 10_000)

    total = liq_score + vol_score + turnover_score + quote_score + tx_score
    return PoolScore(
        pool=pool,
        quote_info=quote_info,
        total=round(total, 2),
        liquidity=round(liq_score, 2),
        volume=round(vol_score, 2),
        turnover=round(turnover_score, 2),
        quote_quality=quote_score,
        tx_activity=round(tx_score, 2),
    )


def analyze_pools(pools: list[DexScreenerPair], target: str, chain: str = "solana") -> PoolScore | None:
    """Filter, score and rank pools; returns the best or None."""
    if not pools:
        logger.warning("[POOLS] No pools found on DexScreener for this token")
        return None

    valid: list[PoolScore] = []
    rejected: Counter[str] = Counter()
    for pool in pools:
        check = validate_pool(pool, target, chain)
        if check.valid and check.quote_info is not None:
            valid.append(score_pool(pool, check.quote_info))
        else:
            rejected[check.reason or "invalid"] += 1

    if rejected:
        logger.info(f"[POOLS] Filtered out {sum(rejected.values())} pool(s)")
        for reason, count in rejected.items():
            logger.info(f"[POOLS]   - {reason}: {count}")

    if not valid:
        logger.warning("[POOLS] No pools passed filters; token may lack liquid pairs on trusted DEXes")
        return None

    valid.sort(key=lambda s: s.total, reverse=True)
    for i, s in enumerate(valid):
        logger.info(
            f"[POOLS] #{i + 1} {s.pool.dexId} {s.pool.pairAddress[:12]} score {s.total}/100 "
            f"(liq={s.liquidity} vol={s.volume} turn={s.turnover} "
            f"quote={s.quote_quality} tx={s.tx_activity})"
        )

    best = valid[0]
    base = best.pool.baseToken.symbol if best.pool.baseToken else "?"
    quote = best.pool.quoteToken.symbol if best.pool.quoteToken else "?"
    labels = ", ".join(best.pool.labels) or "N/A"
    logger.info(
        f"[POOLS] Best pool: {base}/{quote} on {best.pool.dexId} (score {best.total}/100), "
        f"liquidity ${best.liquidity_usd:,.0f}, labels {labels}, "
        f"quote {best.quote_info.symbol} (tier {best.quote_info.tier})"
    )
    return best
