"""Live price subscription — one consumer's view over the shared poller.

Keeps its own last-known price per coin and flags entries stale when nothing
has arrived for twice the update interval. Staleness is checked by a
background sweep, not on read, so a consumer polling `prices` sees the same
flags the sweep last computed.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence

from chainwise.services.realtime.models import PriceEntry, PriceUpdate, now_ms
from chainwise.services.realtime.poller import DEFAULT_UPDATE_INTERVAL_MS, PricePoller

logger = logging.getLogger(__name__)

STALE_CHECK_INTERVAL_MS = 10_000
STALE_AFTER_INTERVALS = 2


class LivePriceSubscription:
    """Per-consumer adapter turning poller pushes into a queryable snapshot.

    Usage:
        sub = LivePriceSubscription(price_poller)
        sub.activate(["bitcoin", "ethereum"], update_interval_ms=30_000)
        ...
        sub.get_price("bitcoin")
        await sub.close()
    """

    def __init__(
        self,
        poller: PricePoller,
        clock: Callable[[], int] = now_ms,
        stale_check_interval_ms: int = STALE_CHECK_INTERVAL_MS,
    ) -> None:
        self._poller = poller
        self._clock = clock
        self._stale_check_interval_ms = stale_check_interval_ms

        self.prices: dict[str, PriceEntry] = {}
        self.is_connected: bool = False
        self.error: Exception | None = None
        self.coin_ids: tuple[str, ...] = ()
        self.update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
        self.enabled: bool = True

        self._unsubscribe: Callable[[], None] | None = None
        self._generation = 0
        self._sweep_task: asyncio.Task | None = None

    # ── lifecycle ───────────────────────────────────────────

    def activate(
        self,
        coin_ids: Sequence[str],
        update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS,
        enabled: bool = True,
    ) -> None:
        """(Re)bind to `coin_ids`. Re-activating with the same arguments is a no-op."""
        coins = tuple(dict.fromkeys(c.strip().lower() for c in coin_ids if c and c.strip()))
        if (
            self._unsubscribe is not None
            and coins == self.coin_ids
            and update_interval_ms == self.update_interval_ms
            and enabled == self.enabled
        ):
            return

        self.deactivate()
        self.coin_ids = coins
        self.update_interval_ms = update_interval_ms
        self.enabled = enabled
        self._ensure_sweep()

        if not enabled or not coins:
            return

        self.error = None
        generation = self._generation

        def handle(updates: list[PriceUpdate]) -> None:
            if generation == self._generation:
                self._handle_updates(updates)

        try:
            self._poller.set_update_interval(update_interval_ms)
            self._unsubscribe = self._poller.subscribe(coins, handle)
        except Exception as e:
            logger.warning("Failed to subscribe to %s: %s", ", ".join(coins), e)
            self.error = e
            self.is_connected = False
            return

        self.is_connected = True

    def deactivate(self) -> None:
        """Drop the current poller registration, if any. Known prices are kept."""
        self._generation += 1
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        self.is_connected = False

    async def close(self) -> None:
        """Deactivate and stop the staleness sweep."""
        self.deactivate()
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ── queries / commands ──────────────────────────────────

    def get_price(self, coin_id: str) -> PriceEntry | None:
        return self.prices.get(coin_id.lower())

    async def refresh_now(self) -> None:
        """Force an out-of-band poll; failures land in `error`, never raise."""
        self.error = None
        try:
            await self._poller.fetch_now()
        except Exception as e:
            logger.warning("Forced price refresh failed: %s", e)
            self.error = e

    def sweep_stale(self, now_ms: int | None = None) -> list[str]:
        """Flag entries older than twice the update interval; returns newly stale coins.

        Only a new update clears the flag, so the sweep never marks an entry fresh.
        """
        now = self._clock() if now_ms is None else now_ms
        threshold = self.update_interval_ms * STALE_AFTER_INTERVALS
        newly_stale = []
        for coin_id, entry in self.prices.items():
            if not entry.is_stale and now - entry.last_update > threshold:
                entry.is_stale = True
                newly_stale.append(coin_id)
        if newly_stale:
            logger.debug("Marked %d prices stale: %s", len(newly_stale), ", ".join(newly_stale))
        return newly_stale

    def snapshot(self) -> dict:
        return {
            "coin_ids": list(self.coin_ids),
            "update_interval_ms": self.update_interval_ms,
            "enabled": self.enabled,
            "is_connected": self.is_connected,
            "error": str(self.error) if self.error else None,
            "prices": {coin_id: entry.to_dict() for coin_id, entry in self.prices.items()},
        }

    # ── internals ───────────────────────────────────────────

    def _handle_updates(self, updates: list[PriceUpdate]) -> None:
        for update in updates:
            self.prices[update.coin_id.lower()] = PriceEntry(
                price=update.price,
                change_24h_pct=update.change_24h_pct,
                last_update=update.timestamp,
                is_stale=False,
            )

    def _ensure_sweep(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._stale_check_interval_ms / 1000)
            self.sweep_stale()
