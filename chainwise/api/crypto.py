"""Crypto market-data routes — server-side proxy for CoinGecko."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from chainwise.api.cache import CACHE_PRESETS, CacheConfig, add_cache_headers
from chainwise.api.rate_limit import RateLimitDecision, rate_limit
from chainwise.services.data.coingecko_feed import UpstreamError, UpstreamRateLimitError
from chainwise.services.data.feeds import coingecko_feed as _coingecko_feed

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/crypto", tags=["crypto"])

# Served when CoinGecko is unreachable, so the UI still has something to render
FALLBACK_PRICES: dict[str, dict[str, float]] = {
    "bitcoin": {"usd": 112000, "usd_24h_change": 1.82},
    "ethereum": {"usd": 4200, "usd_24h_change": 1.2},
    "ripple": {"usd": 2.45, "usd_24h_change": 5.8},
    "solana": {"usd": 256, "usd_24h_change": 0.83},
    "cardano": {"usd": 1.23, "usd_24h_change": 1.23},
    "dogecoin": {"usd": 0.38, "usd_24h_change": 2.1},
    "binancecoin": {"usd": 712, "usd_24h_change": 0.59},
    "litecoin": {"usd": 105, "usd_24h_change": 1.5},
    "polkadot": {"usd": 8.45, "usd_24h_change": 2.3},
    "chainlink": {"usd": 28.50, "usd_24h_change": 1.8},
}

FALLBACK_CACHE = CacheConfig(max_age=30, stale_while_revalidate=15)


def _split(raw: str) -> list[str]:
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


def _fallback(coin_ids: list[str], currencies: list[str], include_24hr_change: bool) -> dict:
    """Rows from FALLBACK_PRICES shaped like the provider's reply to the same query."""
    data = {}
    for coin in coin_ids:
        row = FALLBACK_PRICES.get(coin)
        if row is None:
            continue
        quote = {}
        for cur in currencies:
            if cur not in row:
                continue
            quote[cur] = row[cur]
            if include_24hr_change and f"{cur}_24h_change" in row:
                quote[f"{cur}_24h_change"] = row[f"{cur}_24h_change"]
        if quote:
            data[coin] = quote
    return data


@router.get("/simple/price")
async def simple_price(
    response: Response,
    ids: str = Query("bitcoin,ethereum", max_length=2000),
    vs_currencies: str = Query("usd", max_length=200),
    include_24hr_change: bool = Query(False),
    rl: RateLimitDecision = Depends(rate_limit()),
):
    """Current prices for `ids` in `vs_currencies`, CDN-cacheable for a few seconds."""
    coin_ids = _split(ids)
    if not coin_ids:
        raise HTTPException(status_code=422, detail="At least one coin id is required")

    currencies = _split(vs_currencies) or ["usd"]
    response.headers.update(rl.headers)

    try:
        data = await _coingecko_feed.get_simple_price(coin_ids, currencies, include_24hr_change)
    except UpstreamRateLimitError:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers=rl.headers,
        )
    except UpstreamError as e:
        logger.warning("CoinGecko simple price failed, using fallback data: %s", e)
        add_cache_headers(response.headers, FALLBACK_CACHE)
        return _fallback(coin_ids, currencies, include_24hr_change)

    add_cache_headers(response.headers, CACHE_PRESETS["CRYPTO_PRICES"])
    return data
