"""CoinGecko data feed for crypto spot prices.

Uses the public /simple/price endpoint (an optional demo API key raises the
quota). Outbound calls are counted against two local per-minute budgets: one
reserved for the shared poller, one for the proxy route. Together they stay
under the provider's limit, and proxy traffic can never starve the poller.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

import httpx

from chainwise.config import settings
from chainwise.services.rate_limiter import RateLimiter
from chainwise.services.realtime.models import PriceUpdate, now_ms

logger = logging.getLogger(__name__)

POLLER_BUDGET_KEY = "coingecko:poller"
PROXY_BUDGET_KEY = "coingecko:proxy"


class UpstreamError(Exception):
    """Market-data provider call failed (network, status, or payload)."""


class UpstreamRateLimitError(UpstreamError):
    """The provider, or our own outbound budget, refused the call."""


def _clean_ids(coin_ids: Iterable[str]) -> list[str]:
    return sorted({c.strip().lower() for c in coin_ids if c and c.strip()})


class CoinGeckoFeed:
    """Batched spot prices from CoinGecko.

    `get_prices` is the fetcher handed to the PricePoller; it raises
    UpstreamError on any failure and leaves retrying to the caller.
    """

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        vs_currency: str | None = None,
        timeout: float | None = None,
        poller_requests_per_minute: int | None = None,
        proxy_requests_per_minute: int | None = None,
        limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._api_base = api_base or settings.coingecko_api_base
        self._api_key = settings.coingecko_api_key if api_key is None else api_key
        self.vs_currency = (vs_currency or settings.vs_currency).lower()
        self._timeout = timeout or settings.coingecko_timeout_seconds
        self._budgets = {
            POLLER_BUDGET_KEY: poller_requests_per_minute or settings.coingecko_poller_requests_per_minute,
            PROXY_BUDGET_KEY: proxy_requests_per_minute or settings.coingecko_proxy_requests_per_minute,
        }
        self._limiter = limiter or RateLimiter(interval_ms=60_000, unique_token_per_interval=10)
        self._transport = transport
        self._clock = clock

    async def get_prices(self, coin_ids: Iterable[str]) -> list[PriceUpdate]:
        """Fetch price and 24h change for every coin in one request.

        Coins the provider does not know (or returns without a usable price)
        are left out of the result rather than failing the batch. Counted
        against the poller's budget.
        """
        coins = _clean_ids(coin_ids)
        if not coins:
            return []

        cur = self.vs_currency
        data = await self._simple_price(coins, [cur], True, POLLER_BUDGET_KEY)
        stamp = self._clock()

        updates: list[PriceUpdate] = []
        for coin in coins:
            quote = data.get(coin)
            if not isinstance(quote, dict):
                continue
            price = quote.get(cur)
            if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
                logger.warning("CoinGecko returned unusable price for %s: %r", coin, price)
                continue
            change = quote.get(f"{cur}_24h_change")
            updates.append(
                PriceUpdate(
                    coin_id=coin,
                    price=float(price),
                    change_24h_pct=float(change) if isinstance(change, (int, float)) else 0.0,
                    timestamp=stamp,
                )
            )
        return updates

    async def get_simple_price(
        self,
        coin_ids: Iterable[str],
        vs_currencies: Iterable[str] = ("usd",),
        include_24hr_change: bool = False,
    ) -> dict[str, Any]:
        """Raw /simple/price payload: {coin_id: {currency: price, ...}}.

        Counted against the proxy budget.
        """
        return await self._simple_price(coin_ids, vs_currencies, include_24hr_change, PROXY_BUDGET_KEY)

    async def _simple_price(
        self,
        coin_ids: Iterable[str],
        vs_currencies: Iterable[str],
        include_24hr_change: bool,
        budget_key: str,
    ) -> dict[str, Any]:
        params = {
            "ids": ",".join(_clean_ids(coin_ids)),
            "vs_currencies": ",".join(c.strip().lower() for c in vs_currencies if c.strip()),
        }
        if include_24hr_change:
            params["include_24hr_change"] = "true"

        data = await self._get("/simple/price", params, budget_key)
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected /simple/price payload type: {type(data).__name__}")
        return data

    async def _get(self, path: str, params: dict[str, str], budget_key: str) -> Any:
        limit = self._budgets[budget_key]
        budget = self._limiter.check(limit, budget_key)
        if budget.is_rate_limited:
            logger.warning(
                "CoinGecko outbound budget %s of %d/min exhausted, skipping %s",
                budget_key,
                limit,
                path,
            )
            raise UpstreamRateLimitError("Outbound CoinGecko budget exhausted")

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key

        try:
            async with httpx.AsyncClient(
                base_url=self._api_base,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(path, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("CoinGecko request %s failed: %s", path, e)
            raise UpstreamError(f"CoinGecko request failed: {e}") from e

        if resp.status_code == 429:
            logger.warning("CoinGecko rate limit hit on %s", path)
            raise UpstreamRateLimitError("CoinGecko rate limit exceeded")
        if resp.status_code != 200:
            logger.warning("CoinGecko returned %d: %s", resp.status_code, resp.text[:200])
            raise UpstreamError(f"CoinGecko returned HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError("CoinGecko returned invalid JSON") from e
