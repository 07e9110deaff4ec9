"""Optional Redis connection pool.

When REDIS_URL is set, the token revocation registry and the rate
limiter keep their state in Redis so every API instance sees the same
revoked tokens and the same request counters.  When it is unset (local
dev, tests) ``redis_pool`` is None and both fall back to their
in-memory implementations; no Redis server is needed.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

# Consumers check for None and choose their in-memory variant
if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Ping Redis on startup, close the pool on shutdown.

    A failed ping is logged but does not stop the app from starting;
    ``/health`` reports Redis as degraded until it comes back.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, revocation and rate limits are in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
