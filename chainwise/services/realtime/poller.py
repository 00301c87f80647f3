"""Shared price poller — one upstream polling loop fanned out to many subscribers.

The upstream market-data API is rate limited, so every consumer of live prices
goes through a single poller. Each tick fetches the union of all subscribers'
coins in one batched call and hands every subscriber only the coins it asked for.

The poller is single-threaded asyncio: subscribe/unsubscribe and the tick run on
the same event loop, so the registry needs no lock. Ticks that fail are logged
and retried on the next interval; staleness downstream is the visible symptom.
"""

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from chainwise.services.realtime.models import PriceFetcher, PriceUpdate, PriceUpdateCallback

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL_MS = 30_000


@dataclass
class _Subscriber:
    coin_ids: frozenset[str]
    callback: PriceUpdateCallback


def _normalise(coin_ids: Iterable[str]) -> frozenset[str]:
    return frozenset(c.strip().lower() for c in coin_ids if c and c.strip())


class PricePoller:
    """Fetch prices for the union of subscribed coins on a fixed interval.

    Interval changes apply from the next scheduled wait; a wait already in
    progress is not reset. The timer starts with the first subscriber that has
    coins, fetches immediately, and stops as soon as the union becomes empty.
    """

    def __init__(
        self,
        fetcher: PriceFetcher,
        update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS,
        min_update_interval_ms: int = 10_000,
    ) -> None:
        self._fetcher = fetcher
        self._min_interval_ms = min_update_interval_ms
        self._interval_ms = max(min_update_interval_ms, update_interval_ms)
        self._subscribers: dict[str, _Subscriber] = {}
        self._task: asyncio.Task | None = None
        # Highest timestamp delivered per coin; older samples are dropped
        self._delivered_at: dict[str, int] = {}

    # ── introspection ───────────────────────────────────────

    @property
    def update_interval_ms(self) -> int:
        return self._interval_ms

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def tracked_coins(self) -> list[str]:
        """Union of every subscriber's coins, sorted."""
        union: set[str] = set()
        for sub in self._subscribers.values():
            union |= sub.coin_ids
        return sorted(union)

    # ── public API ──────────────────────────────────────────

    def subscribe(self, coin_ids: Iterable[str], callback: PriceUpdateCallback) -> Callable[[], None]:
        """Register `callback` for `coin_ids` and return its unsubscribe function.

        Must be called from a running event loop. The returned function is
        idempotent: only its first call removes the registration.
        """
        sub_id = uuid.uuid4().hex
        self._subscribers[sub_id] = _Subscriber(coin_ids=_normalise(coin_ids), callback=callback)

        if not self.is_running and self.tracked_coins:
            self._start()

        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            self._subscribers.pop(sub_id, None)
            self._on_union_changed()

        return unsubscribe

    def set_update_interval(self, ms: int) -> None:
        """Change the shared tick period, clamped to the configured minimum."""
        interval = max(self._min_interval_ms, int(ms))
        if interval != self._interval_ms:
            logger.debug("Price update interval %dms -> %dms", self._interval_ms, interval)
        self._interval_ms = interval

    async def fetch_now(self) -> list[PriceUpdate]:
        """Fetch and fan out immediately, outside the regular schedule.

        Unlike a scheduled tick, upstream errors propagate to the caller.
        Returns the updates that were delivered.
        """
        return await self._fetch_and_notify(raise_errors=True)

    async def stop(self) -> None:
        """Cancel the timer and wait for it to finish (application shutdown)."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped real-time price updates")

    # ── timer ───────────────────────────────────────────────

    def _start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            "Starting real-time price updates every %ds for %d coins",
            self._interval_ms // 1000,
            len(self.tracked_coins),
        )

    def _stop_timer(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("Stopped real-time price updates (no coins tracked)")

    def _on_union_changed(self) -> None:
        union = set(self.tracked_coins)
        for coin in [c for c in self._delivered_at if c not in union]:
            del self._delivered_at[coin]
        if not union:
            self._stop_timer()

    async def _run(self) -> None:
        try:
            while self.tracked_coins:
                await self._fetch_and_notify(raise_errors=False)
                await asyncio.sleep(self._interval_ms / 1000)
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    # ── fetch + fan-out ─────────────────────────────────────

    async def _fetch_and_notify(self, raise_errors: bool) -> list[PriceUpdate]:
        coins = self.tracked_coins
        if not coins:
            return []

        try:
            updates = await self._fetcher(coins)
        except Exception as e:
            if raise_errors:
                raise
            logger.warning("Price tick failed for %d coins: %s", len(coins), e)
            return []

        accepted = self._accept(updates)
        if accepted:
            logger.debug("Price updates for %d coins", len(accepted))
            self._notify(accepted)
        return accepted

    def _accept(self, updates: list[PriceUpdate]) -> list[PriceUpdate]:
        """Keep tracked coins whose sample is not older than the last one delivered."""
        union = set(self.tracked_coins)
        accepted: list[PriceUpdate] = []
        for update in updates:
            coin = update.coin_id.lower()
            if coin not in union:
                continue
            last = self._delivered_at.get(coin)
            if last is not None and update.timestamp < last:
                continue
            self._delivered_at[coin] = update.timestamp
            accepted.append(update)
        return accepted

    def _notify(self, updates: list[PriceUpdate]) -> None:
        # Registry as it stands now, not when the fetch started
        for sub_id, sub in list(self._subscribers.items()):
            if sub_id not in self._subscribers:
                continue  # removed by an earlier callback in this loop
            relevant = [u for u in updates if u.coin_id.lower() in sub.coin_ids]
            if not relevant:
                continue
            try:
                sub.callback(relevant)
            except Exception:
                logger.exception("Subscriber callback failed for %d updates", len(relevant))
