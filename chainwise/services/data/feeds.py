"""Shared feed singletons — one CoinGecko client and one price poller per process.

Every live-price consumer must go through `price_poller`; creating another
poller would double the upstream calls and defeat the shared rate budget.
"""

from chainwise.config import settings
from chainwise.services.data.coingecko_feed import CoinGeckoFeed
from chainwise.services.realtime.poller import PricePoller

coingecko_feed = CoinGeckoFeed()

price_poller = PricePoller(
    coingecko_feed.get_prices,
    update_interval_ms=settings.price_update_interval_ms,
    min_update_interval_ms=settings.price_min_update_interval_ms,
)
