"""DexScreener /token-pairs/v1 response models, reduced to what pool ranking reads."""

from decimal import Decimal

from pydantic import BaseModel


class DexScreenerToken(BaseModel):
    model_config = {"extra": "ignore"}

    address: str
    symbol: str | None = None


class DexScreenerDayVolume(BaseModel):
    model_config = {"extra": "ignore"}

    h24: Decimal | None = None


class DexScreenerLiquidity(BaseModel):
    model_config = {"extra": "ignore"}

    usd: Decimal | None = None


class DexScreenerTxns(BaseModel):
    model_config = {"extra": "ignore"}

    buys: int | None = None
    sells: int | None = None


class DexScreenerDayTxns(BaseModel):
    model_config = {"extra": "ignore"}

    h24: DexScreenerTxns | None = None


class DexScreenerPair(BaseModel):
    model_config = {"extra": "ignore"}

    chainId: str = ""
    dexId: str = ""
    pairAddress: str = ""
    url: str | None = None
    baseToken: DexScreenerToken | None = None
    quoteToken: DexScreenerToken | None = None
    volume: DexScreenerDayVolume | None = None
    liquidity: DexScreenerLiquidity | None = None
    txns: DexScreenerDayTxns | None = None
    labels: list[str] = []
