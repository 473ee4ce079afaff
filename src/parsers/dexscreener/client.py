"""DexScreener pair lookup, used only to rank pools before a buy."""

import asyncio

import httpx
from loguru import logger

from src.parsers.dexscreener.models import DexScreenerPair
from src.parsers.rate_limiter import RateLimiter

BASE_URL = "https://api.dexscreener.com"
MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


class DexScreenerClient:
    """Public API, no auth. Errors surface as ``httpx.HTTPError``."""

    def __init__(
        self,
        base_url: str = BASE_URL,
        rate_limiter: RateLimiter | None = None,
        max_rps: float = 1.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=15.0,
            headers={"Accept": "application/json"},
        )
        self._rate_limiter = rate_limiter or RateLimiter(max_rps)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_token_pairs(self, token_address: str, chain: str = "solana") -> list[DexScreenerPair]:
        """All pairs for a token on one chain ("solana" or "bsc")."""
        path = f"/token-pairs/v1/{chain}/{token_address}"

        for attempt in range(MAX_RETRIES + 1):
            await self._rate_limiter.acquire()
            try:
                resp = await self._client.get(path)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt >= MAX_RETRIES:
                    raise
                delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                logger.debug(f"[DEXSCREENER] {type(e).__name__}, retry in {delay}s")
                await asyncio.sleep(delay)
                continue

            if resp.status_code == 429 and attempt < MAX_RETRIES:
                delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                logger.debug(f"[DEXSCREENER] 429 rate limited, retry in {delay}s")
                await asyncio.sleep(delay)
                continue
            resp.raise_for_status()
            return self._parse_pairs(resp.json(), token_address, chain)

        return []

    @staticmethod
    def _parse_pairs(data: object, token_address: str, chain: str) -> list[DexScreenerPair]:
        # v1 returns a bare list; older endpoints wrap it in {"pairs": [...]}
        if isinstance(data, dict):
            data = data.get("pairs") or []
        if not isinstance(data, list):
            return []

        pairs = [DexScreenerPair.model_validate(p) for p in data]
        on_chain = [p for p in pairs if not p.chainId or p.chainId == chain]
        logger.info(f"[DEXSCREENER] {len(pairs)} pair(s) for {token_address[:12]}, {len(on_chain)} on {chain}")
        return on_chain
