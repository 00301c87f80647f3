"""CLI for live prices.

Usage:
    python scripts/prices.py --once bitcoin ethereum        # One batched fetch
    python scripts/prices.py --watch bitcoin --interval 30  # Live view with staleness, Ctrl-C to stop
    python scripts/prices.py --serve --port 8000            # Run the API with uvicorn
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _fmt_ts(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%H:%M:%S")


async def do_once(coin_ids: list[str]) -> None:
    """Fetch current prices once and print them."""
    from chainwise.services.data.feeds import coingecko_feed

    updates = await coingecko_feed.get_prices(coin_ids)

    print("\n=== Prices ===")
    for u in updates:
        print(f"  {u.symbol:<12} ${u.price:>14,.4f}  {u.change_24h_pct:+6.2f}%  @ {_fmt_ts(u.timestamp)}")
    missing = sorted(set(c.lower() for c in coin_ids) - {u.coin_id for u in updates})
    if missing:
        print(f"  (no price for: {', '.join(missing)})")
    print("==============\n")


async def do_watch(coin_ids: list[str], interval_s: int) -> None:
    """Subscribe through the shared poller and print the snapshot every interval."""
    from chainwise.services.data.feeds import price_poller
    from chainwise.services.realtime.subscription import LivePriceSubscription

    sub = LivePriceSubscription(price_poller)
    sub.activate(coin_ids, update_interval_ms=interval_s * 1000)
    logger.info("Watching %s every %ds", ", ".join(sub.coin_ids), price_poller.update_interval_ms // 1000)

    try:
        while True:
            await asyncio.sleep(price_poller.update_interval_ms / 1000)
            for coin_id in sub.coin_ids:
                entry = sub.get_price(coin_id)
                if entry is None:
                    print(f"  {coin_id:<12} (waiting)")
                    continue
                flag = " STALE" if entry.is_stale else ""
                print(f"  {coin_id:<12} ${entry.price:>14,.4f}  {entry.change_24h_pct:+6.2f}%  @ {_fmt_ts(entry.last_update)}{flag}")
            if sub.error:
                print(f"  error: {sub.error}")
            print()
    finally:
        await sub.close()
        await price_poller.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="ChainWise live prices")
    parser.add_argument("coins", nargs="*", help="CoinGecko coin ids (e.g. bitcoin ethereum)")
    parser.add_argument("--once", action="store_true", help="Fetch prices once and exit")
    parser.add_argument("--watch", action="store_true", help="Stream prices until interrupted")
    parser.add_argument("--interval", type=int, default=30, help="Watch interval in seconds")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    if args.serve:
        import uvicorn

        from chainwise.config import settings

        uvicorn.run(
            "chainwise.main:app",
            host=args.host,
            port=args.port,
            reload=settings.app_env == "development",
        )
    elif (args.once or args.watch) and not args.coins:
        parser.error("at least one coin id is required")
    elif args.once:
        asyncio.run(do_once(args.coins))
    elif args.watch:
        try:
            asyncio.run(do_watch(args.coins, args.interval))
        except KeyboardInterrupt:
            pass
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
