"""Shared test fixtures."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from chainwise.services.rate_limiter import RateLimiter
from chainwise.services.realtime.models import PriceUpdate
from chainwise.services.realtime.poller import PricePoller


def make_update(coin_id: str, price: float = 100.0, timestamp: int = 1_000_000, change: float = 1.5) -> PriceUpdate:
    """Helper to build a price update with sensible defaults."""
    return PriceUpdate(coin_id=coin_id, price=price, change_24h_pct=change, timestamp=timestamp)


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> AsyncMock:
    """Upstream fetch returning one update per requested coin."""

    async def _fetch(coin_ids: list[str]) -> list[PriceUpdate]:
        return [make_update(c) for c in coin_ids]

    return AsyncMock(side_effect=_fetch)


@pytest_asyncio.fixture
async def poller(fetcher: AsyncMock):
    """Poller with a long interval so only the immediate first tick runs."""
    p = PricePoller(fetcher, update_interval_ms=60_000, min_update_interval_ms=0)
    yield p
    await p.stop()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(interval_ms=60_000, unique_token_per_interval=500, clock=clock)
