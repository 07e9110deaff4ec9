from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.auth import router as auth_router
from app.api.certificates import router as certificates_router
from app.api.envelope import error_body
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.ratelimit import rate_limit_headers
from app.api.users import router as users_router
from app.core.config import SETTINGS
from app.core.errors import (
    AppError,
    AuthenticationError,
    RateLimitExceeded,
    ValidationError,
)
from app.core.logging import setup_logging
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with lifespan_redis():
        yield


app = FastAPI(
    title="pic-certificates-api",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Request-ID",
        "X-Total-Count",
        "X-Offset",
        "X-Limit",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "Retry-After",
    ],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) -> Metrics -> CORS -> route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)


# ---------------------------------------------------------------------------
# Error translation: every failure leaves as {success: false, message, code}
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    extra: dict = {}
    headers = rate_limit_headers(request)

    if isinstance(exc, ValidationError) and exc.errors:
        extra["errors"] = exc.errors
    if isinstance(exc, AuthenticationError):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, RateLimitExceeded):
        extra["retryAfter"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)

    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message, exc_info=exc)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.code, **extra),
        headers=headers or None,
    )


def _describe(err: dict) -> str:
    loc = [str(p) for p in err["loc"] if p not in ("body", "query", "path")]
    return f"{'.'.join(loc)}: {err['msg']}" if loc else err["msg"]


@app.exception_handler(RequestValidationError)
async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [_describe(err) for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=error_body("Validation failed", "VALIDATION_ERROR", errors=errors),
        headers=rate_limit_headers(request) or None,
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(
    _request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = "ROUTE_NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def handle_unexpected(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", "INTERNAL_SERVER_ERROR"),
    )


app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(certificates_router)

logger.info(
    "pic-certificates-api started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
