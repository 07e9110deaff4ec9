from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

# Development fallbacks.  TokenService warns when any of these is in use.
DEFAULT_ACCESS_SECRET = "dev-access-secret-change-me-outside-dev"
DEFAULT_REFRESH_SECRET = "dev-refresh-secret-change-me-outside-dev"
DEFAULT_RESET_SECRET = "dev-reset-secret-change-me-outside-dev"

_DURATION_RE = re.compile(r"^(\d+)\s*([smhd])$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def _getenv(name: str, default: str) -> str:
    # Centralize env access so type casting and validation live in one place
    return os.environ.get(name, default).strip()


def parse_duration(raw: str) -> timedelta:
    """Parse the ``15m`` / ``7d`` / ``1h`` / ``30s`` token lifetime shorthand."""
    match = _DURATION_RE.match(raw.strip().lower())
    if match is None:
        raise ValueError(f"duration must look like 15m, 1h or 7d (got {raw!r})")
    amount, unit = match.groups()
    if int(amount) <= 0:
        raise ValueError(f"duration must be positive (got {raw!r})")
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _getenv_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_duration(name: str, default: str) -> timedelta:
    raw = _getenv(name, default)
    try:
        return parse_duration(raw)
    except ValueError as e:
        raise ValueError(f"{name}: {e}") from None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    cors_origins: tuple[str, ...] = ("http://localhost:4200",)
    frontend_url: str = "http://localhost:4200"

    jwt_access_secret: str = DEFAULT_ACCESS_SECRET
    jwt_refresh_secret: str = DEFAULT_REFRESH_SECRET
    jwt_reset_secret: str = DEFAULT_RESET_SECRET
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    reset_token_ttl: timedelta = timedelta(hours=1)

    encryption_key: str = "dev-encryption-key-change-me"

    rate_limit_window_ms: int = 15 * 60 * 1000
    login_rate_limit_max: int = 5
    auth_rate_limit_max: int = 10
    revocation_max_entries: int = 10_000

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "3000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    redis_url = _getenv("REDIS_URL", "") or None
    cors_origins = tuple(
        origin.strip()
        for origin in _getenv("CORS_ORIGIN", "http://localhost:4200").split(",")
        if origin.strip()
    )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        redis_url=redis_url,
        cors_origins=cors_origins,
        frontend_url=_getenv("FRONTEND_URL", "http://localhost:4200"),
        jwt_access_secret=_getenv("JWT_ACCESS_SECRET", DEFAULT_ACCESS_SECRET),
        jwt_refresh_secret=_getenv("JWT_REFRESH_SECRET", DEFAULT_REFRESH_SECRET),
        jwt_reset_secret=_getenv("JWT_RESET_SECRET", DEFAULT_RESET_SECRET),
        access_token_ttl=_getenv_duration("JWT_ACCESS_EXPIRY", "15m"),
        refresh_token_ttl=_getenv_duration("JWT_REFRESH_EXPIRY", "7d"),
        reset_token_ttl=_getenv_duration("JWT_RESET_EXPIRY", "1h"),
        encryption_key=_getenv("ENCRYPTION_KEY", "dev-encryption-key-change-me"),
        rate_limit_window_ms=_getenv_int("RATE_LIMIT_WINDOW_MS", 900_000, minimum=1),
        login_rate_limit_max=_getenv_int("LOGIN_RATE_LIMIT_MAX", 5, minimum=1),
        auth_rate_limit_max=_getenv_int("AUTH_RATE_LIMIT_MAX", 10, minimum=1),
        revocation_max_entries=_getenv_int(
            "REVOCATION_MAX_ENTRIES", 10_000, minimum=1
        ),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
