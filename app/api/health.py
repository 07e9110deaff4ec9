"""Liveness and readiness probes.

/health answers 200 whenever the process can respond; the ``status``
field says whether it is degraded (Redis configured but unreachable).
/ready is always 200 because every Redis-backed store has an in-memory
fallback.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Response

from app.core.config import SETTINGS
from app.db.redis import redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    return {
        "status": overall,
        "checks": checks,
        "environment": SETTINGS.app_env,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
