"""Cache-Control presets for API responses.

Route handlers pick a named preset instead of hand-writing header strings, so
browser and CDN caching stay consistent across routes that proxy market data.
"""

from collections.abc import MutableMapping
from dataclasses import dataclass

# Durations in seconds
CACHE_DURATIONS = {
    "REALTIME": 10,
    "SHORT": 60,
    "MEDIUM": 300,
    "LONG": 3600,
    "VERY_LONG": 86400,
    "STATIC": 604800,  # 7 days
}


@dataclass(frozen=True)
class CacheConfig:
    """How long a response may be cached and by whom."""

    max_age: int
    stale_while_revalidate: int | None = None
    public: bool = True


def get_cache_headers(config: CacheConfig) -> dict[str, str]:
    """Build identical Cache-Control, CDN-Cache-Control and Vercel-CDN-Cache-Control values."""
    directives = ["public" if config.public else "private", f"max-age={config.max_age}"]
    if config.stale_while_revalidate:
        directives.append(f"stale-while-revalidate={config.stale_while_revalidate}")

    value = ", ".join(directives)
    return {
        "Cache-Control": value,
        "CDN-Cache-Control": value,
        "Vercel-CDN-Cache-Control": value,
    }


def add_cache_headers(headers: MutableMapping[str, str], config: CacheConfig) -> None:
    """Set the cache headers for `config` on an existing header mapping."""
    for key, value in get_cache_headers(config).items():
        headers[key] = value


CACHE_PRESETS: dict[str, CacheConfig] = {
    # Spot prices move constantly
    "CRYPTO_PRICES": CacheConfig(
        max_age=CACHE_DURATIONS["REALTIME"],
        stale_while_revalidate=CACHE_DURATIONS["SHORT"],
    ),
    "MARKET_DATA": CacheConfig(
        max_age=CACHE_DURATIONS["SHORT"],
        stale_while_revalidate=CACHE_DURATIONS["MEDIUM"],
    ),
    "TRENDING_DATA": CacheConfig(
        max_age=CACHE_DURATIONS["MEDIUM"],
        stale_while_revalidate=CACHE_DURATIONS["LONG"],
    ),
    # Per-user responses must never land in a shared cache
    "USER_DATA": CacheConfig(
        max_age=CACHE_DURATIONS["SHORT"],
        stale_while_revalidate=CACHE_DURATIONS["MEDIUM"],
        public=False,
    ),
    "STATIC_CONTENT": CacheConfig(
        max_age=CACHE_DURATIONS["STATIC"],
        stale_while_revalidate=CACHE_DURATIONS["VERY_LONG"],
    ),
    "NO_CACHE": CacheConfig(max_age=0, public=False),
}
