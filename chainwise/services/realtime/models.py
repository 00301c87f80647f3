"""Price records shared by the poller, its subscribers and the upstream feed."""

import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PriceUpdate:
    """One sampled price for one coin, as delivered by the poller."""

    coin_id: str
    price: float  # USD unless the feed is configured otherwise
    change_24h_pct: float
    timestamp: int  # epoch ms when the sample was obtained
    symbol: str = ""

    def __post_init__(self) -> None:
        if not self.symbol:
            object.__setattr__(self, "symbol", self.coin_id.upper())


@dataclass
class PriceEntry:
    """Last-known price for one coin, owned by a single subscription."""

    price: float
    change_24h_pct: float
    last_update: int
    is_stale: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


PriceFetcher = Callable[[list[str]], Awaitable[list[PriceUpdate]]]
PriceUpdateCallback = Callable[[list[PriceUpdate]], None]
