"""ChainWise price service — FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chainwise import __version__
from chainwise.api import crypto, realtime
from chainwise.api.rate_limit import rate_limit
from chainwise.config import settings
from chainwise.services.data.feeds import price_poller
from chainwise.services.rate_limiter import generous_rate_limiter

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

VERSION = __version__


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Shutdown: close live sessions and stop the shared poller."""
    logger.info("ChainWise price service starting (env=%s)", settings.app_env)
    yield
    await realtime.close_all_sessions()
    await price_poller.stop()
    logger.info("Live price sessions closed, poller stopped")


app = FastAPI(
    title="ChainWise",
    description="Live crypto prices with shared upstream polling and staleness tracking",
    version=VERSION,
    lifespan=lifespan,
)

# CORS: restrict in production, allow localhost in development
_allowed_origins = (
    ["http://localhost:3000", "http://localhost:8000"]
    if settings.app_env == "development"
    else settings.allowed_hosts.split(",")
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(crypto.router)
app.include_router(realtime.router)


@app.get("/api")
async def api_root():
    return {
        "name": "ChainWise",
        "version": VERSION,
        "status": "running",
        "environment": settings.app_env,
    }


@app.get("/api/health", dependencies=[Depends(rate_limit(limiter=generous_rate_limiter))])
async def health():
    """Poller status for uptime checks."""
    return {
        "status": "ok",
        "poller": {
            "running": price_poller.is_running,
            "update_interval_ms": price_poller.update_interval_ms,
            "tracked_coins": price_poller.tracked_coins,
            "subscribers": price_poller.subscriber_count,
        },
        "realtime_sessions": realtime.active_session_count(),
    }
