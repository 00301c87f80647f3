"""Live crypto prices: one shared upstream poller, many staleness-tracking subscribers."""

from chainwise.services.realtime.models import PriceEntry, PriceUpdate
from chainwise.services.realtime.poller import PricePoller
from chainwise.services.realtime.subscription import LivePriceSubscription

__all__ = ["LivePriceSubscription", "PriceEntry", "PricePoller", "PriceUpdate"]
