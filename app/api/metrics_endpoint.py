"""Prometheus scrape endpoint (text exposition format, not JSON).

Besides the HTTP counters this exposes the credential and certificate
counters defined in ``app.core.metrics``: rejected tokens by reason,
revocation lookups, 429s, lifecycle transitions and verification
outcomes.  Restrict access to it at the ingress in production.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
