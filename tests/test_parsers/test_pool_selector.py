"""Tests for pool validation, scoring and ranking, plus the DexScreener pair lookup."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.parsers.dexscreener.client import DexScreenerClient
from src.parsers.dexscreener.models import DexScreenerPair
from src.parsers.pool_selector import (
    LIQUID_QUOTES,
    analyze_pools,
    identify_tokens,
    score_pool,
    validate_pool,
)

TARGET = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
SOL = "So11111111111111111111111111111111111111112"
USDT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
BSC_TOKEN = "0x0E09FaBB73Bd3Ade0a17ECC321fD13a19e81cE82"
WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"


def _pair(
    *,
    dex: str = "raydium",
    base: str = TARGET,
    quote: str = SOL,
    quote_symbol: str = "SOL",
    liquidity: float | None = 250_000,
    volume: float = 100_000,
    buys: int = 400,
    sells: int = 350,
    address: str = "PairAddr1111",
    chain: str = "solana",
) -> DexScreenerPair:
    return DexScreenerPair.model_validate({
        "chainId": chain,
        "dexId": dex,
        "pairAddress": address,
        "baseToken": {"address": base, "symbol": "TKN"},
        "quoteToken": {"address": quote, "symbol": quote_symbol},
        "liquidity": {"usd": liquidity} if liquidity is not None else None,
        "volume": {"h24": volume},
        "txns": {"h24": {"buys": buys, "sells": sells}},
        "labels": ["CLMM"],
    })


class TestIdentifyTokens:
    def test_target_as_base(self):
        target, quote = identify_tokens(_pair(), TARGET)
        assert target.address == TARGET
        assert quote.address == SOL

    def test_target_as_quote(self):
        target, quote = identify_tokens(_pair(base=SOL, quote=TARGET), TARGET)
        assert target.address == TARGET
        assert quote.address == SOL

    def test_case_insensitive_evm(self):
        pool = _pair(base=BSC_TOKEN.lower(), quote=WBNB, chain="bsc", dex="pancakeswap")
        assert identify_tokens(pool, BSC_TOKEN) is not None

    def test_not_in_pair(self):
        assert identify_tokens(_pair(), "Other111") is None


class TestValidatePool:
    def test_valid(self):
        check = validate_pool(_pair(), TARGET)
        assert check.valid
        assert check.quote_info.symbol == "SOL"

    def test_non_liquid_quote(self):
        check = validate_pool(_pair(quote="Junk111", quote_symbol="JUNK"), TARGET)
        assert not check.valid
        assert check.reason == "non-liquid quote token: JUNK"

    def test_untrusted_dex(self):
        check = validate_pool(_pair(dex="shadyswap"), TARGET)
        assert not check.valid
        assert "untrusted DEX" in check.reason

    def test_zero_liquidity(self):
        assert validate_pool(_pair(liquidity=None), TARGET).reason == "zero liquidity"

    def test_bsc_quotes(self):
        pool = _pair(base=BSC_TOKEN, quote=WBNB, quote_symbol="WBNB", dex="pancakeswap", chain="bsc")
        assert validate_pool(pool, BSC_TOKEN, "bsc").valid
        # same pool judged against the Solana quote list fails
        assert not validate_pool(pool, BSC_TOKEN, "solana").valid

    def test_quote_tables_are_lowercase(self):
        for quotes in LIQUID_QUOTES.values():
            assert all(key == key.lower() for key in quotes)


class TestScorePool:
    def test_score_components(self):
        pool = _pair(liquidity=1_000_000, volume=500_000, buys=5_000, sells=5_000)
        score = score_pool(pool, validate_pool(pool, TARGET).quote_info)

        assert score.liquidity == 40
        assert score.volume == 25
        assert score.turnover == 3.75  # 0.5 / 2.0 * 15
        assert score.quote_quality == 10
        assert score.tx_activity == 10
        assert score.total == 88.75
        assert score.liquidity_usd == Decimal(1_000_000)

    def test_tier2_quote(self):
        pool = _pair(quote=USDT, quote_symbol="USDT")
        score = score_pool(pool, validate_pool(pool, TARGET).quote_info)
        assert score.quote_quality == 5

    def test_tiny_pool_floors_at_zero(self):
        pool = _pair(liquidity=500, volume=0, buys=0, sells=0)
        score = score_pool(pool, validate_pool(pool, TARGET).quote_info)
        assert score.liquidity == 0
        assert score.volume == 0
        assert score.tx_activity == 0


class TestAnalyzePools:
    def test_empty(self):
        assert analyze_pools([], TARGET) is None

    def test_all_rejected(self):
        assert analyze_pools([_pair(dex="shadyswap"), _pair(liquidity=0)], TARGET) is None

    def test_best_pool_wins(self):
        small = _pair(liquidity=20_000, volume=1_000, address="Small")
        large = _pair(liquidity=900_000, volume=400_000, address="Large", dex="orca")
        junk = _pair(quote="Junk111", address="Junk")

        best = analyze_pools([small, junk, large], TARGET)

        assert best is not None
        assert best.pool.pairAddress == "Large"


class TestDexScreenerClient:
    async def test_get_token_pairs_filters_chain(self):
        client = DexScreenerClient(max_rps=100.0)
        resp = MagicMock(spec=httpx.Response)
        resp.status_code = 200
        resp.json.return_value = [
            _pair().model_dump(),
            _pair(chain="ethereum", address="Eth").model_dump(),
        ]
        client._client.get = AsyncMock(return_value=resp)

        pairs = await client.get_token_pairs(TARGET)

        assert [p.pairAddress for p in pairs] == ["PairAddr1111"]
        assert client._client.get.call_args.args[0] == f"/token-pairs/v1/solana/{TARGET}"
