"""Rate limiting dependency for the auth routes.

A dependency rather than middleware, so each route picks its own
budget and unlisted routes (health, metrics, verification) are never
throttled.

The key is the caller's user id when the request carries a valid
access token, else the client IP.  The signature is checked before the
id is trusted: these routes are reachable without logging in, so an
unverified id would let a client mint a fresh window per request.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response

from app.core.config import SETTINGS
from app.core.errors import RateLimitExceeded
from app.core.metrics import RATE_LIMIT_HITS
from app.core.security_events import security_events
from app.db.redis import redis_pool
from app.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimiter,
)
from app.services.token_service import token_service

logger = logging.getLogger(__name__)

if redis_pool is not None:
    _rate_limiter: RateLimiter = RedisRateLimiter(redis_pool)
else:
    _rate_limiter = InMemoryRateLimiter()


LOGIN_LIMIT = RateLimitConfig(
    name="login",
    window_ms=SETTINGS.rate_limit_window_ms,
    max_requests=SETTINGS.login_rate_limit_max,
)
AUTH_LIMIT = RateLimitConfig(
    name="auth",
    window_ms=SETTINGS.rate_limit_window_ms,
    max_requests=SETTINGS.auth_rate_limit_max,
)


def require_rate_limit(config: RateLimitConfig):
    """Dependency factory.

    Usage: dependencies=[Depends(require_rate_limit(LOGIN_LIMIT))]
    """

    async def _check(request: Request, response: Response) -> None:
        key = _build_key(request)
        result = await _rate_limiter.check(f"{config.name}:{key}", config)

        # Quota headers on every response so clients can self-throttle.
        # Error responses are built fresh by the exception handlers, which
        # read the result back from request.state.
        request.state.rate_limit = result
        response.headers.update(rate_limit_headers(request))

        if not result.allowed:
            key_type = "user" if key.startswith("user:") else "ip"
            RATE_LIMIT_HITS.labels(key_type=key_type).inc()
            security_events.log(
                "rate_limit_exceeded",
                {
                    "key_type": key_type,
                    "ip": request.client.host if request.client else None,
                    "path": request.url.path,
                    "retry_after": result.retry_after,
                },
            )
            raise RateLimitExceeded(
                "Too many requests, please try again later",
                retry_after=result.retry_after,
            )

    return _check


def rate_limit_headers(request: Request) -> dict[str, str]:
    result = getattr(request.state, "rate_limit", None)
    if result is None:
        return {}
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
    }


def _build_key(request: Request) -> str:
    token = token_service.extract_token_from_header(
        request.headers.get("authorization")
    )
    if token is not None:
        claims = token_service.verify_access_token(token)
        if claims is not None:
            return f"user:{claims.id}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
