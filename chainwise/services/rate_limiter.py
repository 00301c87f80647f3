"""Fixed-window rate limiter — in-memory, single process.

Guards inbound API routes (keyed by client identity) and outbound calls to
rate-limited upstreams (keyed by provider name). Counts live only in this
process; multiple app instances each enforce their own window.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from chainwise.config import settings

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitResult:
    """Outcome of a single rate-limit check."""

    is_rate_limited: bool
    remaining: int
    reset: int  # epoch ms when the current window ends


@dataclass
class _WindowEntry:
    count: int
    reset_time: int


class RateLimiter:
    """Count requests per key in fixed windows of `interval_ms`.

    Expired entries are treated as absent on their next access. When the table
    grows beyond `unique_token_per_interval` keys, all expired entries are
    swept in one pass; live entries are never evicted.
    """

    def __init__(
        self,
        interval_ms: int = 60_000,
        unique_token_per_interval: int = 500,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.interval_ms = interval_ms
        self.unique_token_per_interval = unique_token_per_interval
        self.clock = clock
        self._entries: dict[str, _WindowEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, limit: int, key: str) -> RateLimitResult:
        """Record one request for `key` and report whether it exceeds `limit`."""
        now = self.clock()

        if len(self._entries) > self.unique_token_per_interval:
            self._sweep(now)

        entry = self._entries.get(key)
        if entry is None or entry.reset_time < now:
            entry = _WindowEntry(count=0, reset_time=now + self.interval_ms)
            self._entries[key] = entry

        entry.count += 1

        return RateLimitResult(
            is_rate_limited=entry.count > limit,
            remaining=max(0, limit - entry.count),
            reset=entry.reset_time,
        )

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when none is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def _sweep(self, now: int) -> None:
        expired = [k for k, v in self._entries.items() if v.reset_time < now]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Rate limiter swept %d expired keys (%d remain)", len(expired), len(self._entries))


# Pre-configured limiters for different route classes
api_rate_limiter = RateLimiter(
    interval_ms=settings.rate_limit_interval_ms,
    unique_token_per_interval=500,
)

strict_rate_limiter = RateLimiter(
    interval_ms=settings.rate_limit_interval_ms,
    unique_token_per_interval=200,
)

generous_rate_limiter = RateLimiter(
    interval_ms=settings.rate_limit_interval_ms,
    unique_token_per_interval=1000,
)
