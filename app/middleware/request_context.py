"""Request context middleware: request ID, client IP and timing.

Every request gets an ID (the caller's ``X-Request-ID`` when it looks
sane, a fresh UUID otherwise).  The ID and the client IP are kept in
context variables, which are per-task under asyncio, so any log line
written while handling the request carries them without the values
being passed around.  The ID is echoed back on the response.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
client_ip_var: ContextVar[str | None] = ContextVar("client_ip", default=None)

# Client-supplied IDs end up in logs; keep them short and printable
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")


class _RequestContextFilter(logging.Filter):
    """Copies the context variables onto every LogRecord.

    A formatter can only read attributes that already exist on the
    record; a filter can add them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if getattr(record, "client_ip", None) is None:
            record.client_ip = client_ip_var.get(None)  # type: ignore[attr-defined]
        return True


# Install on the root logger once, even across module reloads
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


def _incoming_request_id(request: Request) -> str:
    candidate = request.headers.get("x-request-id", "")
    if _REQUEST_ID_RE.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = _incoming_request_id(request)
        client_ip = request.client.host if request.client else None
        request_id_var.set(req_id)
        client_ip_var.set(client_ip)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client_ip": client_ip,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
