"""Inbound rate limiting for API routes.

Callers are identified by a digest of their Authorization header when present,
otherwise by the first forwarded client address. Limits are per process.
"""

import hashlib
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, Request

from chainwise.config import settings
from chainwise.services.rate_limiter import RateLimiter, RateLimitResult, api_rate_limiter

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Whether a request may proceed, plus headers to send either way."""

    allowed: bool
    headers: dict[str, str]


def get_client_id(request: Request) -> str:
    """Opaque per-caller key. Never stores the credential itself."""
    auth_header = request.headers.get("authorization")
    if auth_header:
        digest = hashlib.sha256(auth_header.encode("utf-8")).hexdigest()[:16]
        return f"auth:{digest}"

    forwarded_for = request.headers.get("x-forwarded-for", "")
    ip = forwarded_for.split(",")[0].strip() or request.headers.get("x-real-ip") or "unknown"
    return f"ip:{ip}"


def create_rate_limit_headers(result: RateLimitResult, limit: int, now_ms: int) -> dict[str, str]:
    reset_at = datetime.fromtimestamp(result.reset / 1000, tz=timezone.utc)
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": reset_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }
    if result.is_rate_limited:
        headers["Retry-After"] = str(max(0, math.ceil((result.reset - now_ms) / 1000)))
    return headers


def check_rate_limit(
    request: Request,
    limit: int = 100,
    limiter: RateLimiter = api_rate_limiter,
) -> RateLimitDecision:
    """Count this request against its caller's window."""
    result = limiter.check(limit, get_client_id(request))
    return RateLimitDecision(
        allowed=not result.is_rate_limited,
        headers=create_rate_limit_headers(result, limit, limiter.clock()),
    )


def rate_limit(limit: int | None = None, limiter: RateLimiter = api_rate_limiter):
    """Route dependency that rejects over-limit callers with 429.

    Usage:
        @router.get("/x")
        async def x(rl: RateLimitDecision = Depends(rate_limit(30, strict_rate_limiter))): ...
    """

    async def dependency(request: Request) -> RateLimitDecision:
        effective_limit = settings.api_rate_limit if limit is None else limit
        decision = check_rate_limit(request, effective_limit, limiter)
        if not decision.allowed:
            logger.info("Rate limited %s on %s", get_client_id(request), request.url.path)
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Please try again later.",
                headers=decision.headers,
            )
        return decision

    return dependency
