"""Realtime price sessions — server-held live price subscriptions.

A session is one LivePriceSubscription on the shared poller. Clients create
one for their watchlist, then poll its snapshot; the poller keeps upstream
traffic at one batched call per interval no matter how many sessions exist.
Sessions live in process memory, are closed after sitting idle, and vanish
on restart.

The poller's interval is shared, so no session sets it alone: after every
change it is recomputed as the shortest interval any connected session asked
for.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from chainwise.api.cache import CACHE_PRESETS, add_cache_headers
from chainwise.api.rate_limit import rate_limit
from chainwise.config import settings
from chainwise.services.data.feeds import price_poller
from chainwise.services.rate_limiter import generous_rate_limiter, strict_rate_limiter
from chainwise.services.realtime.models import now_ms
from chainwise.services.realtime.subscription import LivePriceSubscription

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/realtime", tags=["realtime"])


@dataclass
class _Session:
    subscription: LivePriceSubscription
    last_seen: int


_sessions: dict[str, _Session] = {}

CoinId = Annotated[str, Field(min_length=1, max_length=100, pattern=r"^[A-Za-z0-9-]+$")]


class SessionRequest(BaseModel):
    """Request body for creating or re-targeting a live price session."""

    coin_ids: list[CoinId] = Field(..., min_length=1, max_length=50)
    update_interval_ms: int = Field(
        settings.price_update_interval_ms,
        ge=settings.price_min_update_interval_ms,
        le=settings.price_update_interval_ms,
    )
    enabled: bool = True


def active_session_count() -> int:
    return len(_sessions)


async def close_all_sessions() -> None:
    """Close every session (application shutdown)."""
    while _sessions:
        _, session = _sessions.popitem()
        await session.subscription.close()


async def _evict_idle() -> None:
    cutoff = now_ms() - settings.realtime_session_idle_timeout_ms
    expired = [sid for sid, s in _sessions.items() if s.last_seen < cutoff]
    for session_id in expired:
        session = _sessions.pop(session_id)
        await session.subscription.close()
        logger.info("Closed idle live price session %s", session_id)
    if expired:
        _sync_poller_interval()


def _sync_poller_interval() -> None:
    """Poll as often as the most demanding connected session needs."""
    intervals = [
        s.subscription.update_interval_ms for s in _sessions.values() if s.subscription.is_connected
    ]
    price_poller.set_update_interval(min(intervals, default=settings.price_update_interval_ms))


def _get_session(session_id: str) -> LivePriceSubscription:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    session.last_seen = now_ms()
    return session.subscription


def _render(session_id: str, session: LivePriceSubscription, response: Response) -> dict:
    add_cache_headers(response.headers, CACHE_PRESETS["NO_CACHE"])
    return {"session_id": session_id, **session.snapshot()}


@router.post(
    "/sessions",
    status_code=201,
    dependencies=[Depends(rate_limit(20, strict_rate_limiter))],
)
async def create_session(req: SessionRequest, response: Response):
    """Start tracking `coin_ids`; returns the session id and its first snapshot."""
    await _evict_idle()
    if len(_sessions) >= settings.max_realtime_sessions:
        logger.warning("Refusing new live price session: %d already open", len(_sessions))
        raise HTTPException(status_code=503, detail="Too many live price sessions")

    session = LivePriceSubscription(
        price_poller,
        stale_check_interval_ms=settings.stale_check_interval_ms,
    )
    session.activate(req.coin_ids, req.update_interval_ms, req.enabled)

    session_id = uuid.uuid4().hex
    _sessions[session_id] = _Session(subscription=session, last_seen=now_ms())
    _sync_poller_interval()
    logger.info("Opened live price session %s for %s", session_id, ", ".join(session.coin_ids))

    return _render(session_id, session, response)


@router.get(
    "/sessions/{session_id}",
    dependencies=[Depends(rate_limit(limiter=generous_rate_limiter))],
)
async def get_session(session_id: str, response: Response):
    """Latest prices with staleness flags."""
    return _render(session_id, _get_session(session_id), response)


@router.put(
    "/sessions/{session_id}",
    dependencies=[Depends(rate_limit(20, strict_rate_limiter))],
)
async def update_session(session_id: str, req: SessionRequest, response: Response):
    """Change the coins, interval or enabled flag; the old subscription is dropped first."""
    session = _get_session(session_id)
    session.activate(req.coin_ids, req.update_interval_ms, req.enabled)
    _sync_poller_interval()
    return _render(session_id, session, response)


@router.post(
    "/sessions/{session_id}/refresh",
    dependencies=[Depends(rate_limit(10, strict_rate_limiter))],
)
async def refresh_session(session_id: str, response: Response):
    """Force an immediate poll. A failed refresh shows up in `error`, not as an HTTP error."""
    session = _get_session(session_id)
    await session.refresh_now()
    return _render(session_id, session, response)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str):
    session = _sessions.pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    await session.subscription.close()
    _sync_poller_interval()
    logger.info("Closed live price session %s", session_id)
    return Response(status_code=204)
