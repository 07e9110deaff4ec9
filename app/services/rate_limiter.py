"""Fixed-window rate limiting.

Each client key gets a counter and a window end time.  The first
request opens a window of ``window_ms``; requests inside it are
counted until ``max_requests`` is reached, after which the client is
rejected until the window closes.

A fixed window is cheap (two numbers per client) and easy to explain
to API consumers, but it lets a client spend its allowance at the end
of one window and again at the start of the next: up to
``2 * max_requests`` in a short burst across the boundary.  For the
auth endpoints this guards (login, password reset) that bound is good
enough.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """The outcome of a rate limit check.

    allowed:      True if the request may proceed.
    remaining:    Requests left in the current window.
    limit:        The window's maximum.
    retry_after:  Whole seconds until the window closes (0 if allowed).
    reset_at_ms:  Window end, Unix milliseconds.
    """

    allowed: bool
    remaining: int
    limit: int
    retry_after: int
    reset_at_ms: int


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """window_ms:     Window length in milliseconds.
    max_requests:  Requests allowed per window per key.
    name:          Budget name; budgets with different names never share
                   a window, even for the same client.
    """

    window_ms: int = 15 * 60 * 1000
    max_requests: int = 100
    name: str = "default"


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...


class InMemoryRateLimiter:
    """Per-process windows, for dev, tests and single-instance deployments."""

    def __init__(self, clock_ms: Callable[[], int] = _now_ms) -> None:
        self._clock_ms = clock_ms
        self._lock = threading.Lock()
        # key -> (count, reset_time_ms)
        self._windows: dict[str, tuple[int, int]] = {}

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        with self._lock:
            now = self._clock_ms()

            # Drop every closed window so idle clients don't accumulate
            for stale in [k for k, (_, reset) in self._windows.items() if reset < now]:
                del self._windows[stale]

            window = self._windows.get(key)
            if window is None:
                reset_time = now + config.window_ms
                self._windows[key] = (1, reset_time)
                return RateLimitResult(
                    allowed=True,
                    remaining=config.max_requests - 1,
                    limit=config.max_requests,
                    retry_after=0,
                    reset_at_ms=reset_time,
                )

            count, reset_time = window
            if count < config.max_requests:
                count += 1
                self._windows[key] = (count, reset_time)
                return RateLimitResult(
                    allowed=True,
                    remaining=config.max_requests - count,
                    limit=config.max_requests,
                    retry_after=0,
                    reset_at_ms=reset_time,
                )

            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=config.max_requests,
                retry_after=math.ceil((reset_time - now) / 1000),
                reset_at_ms=reset_time,
            )


class RedisRateLimiter:
    """Redis-backed windows shared by every API instance.

    INCR and the PEXPIRE that opens the window run in one Lua script so
    a crash or a concurrent request can never leave a counter without
    an expiry.
    """

    # KEYS[1] = window key, ARGV[1] = window_ms
    # Returns: {count, pttl_ms}
    _LUA_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    local ttl = redis.call('PTTL', KEYS[1])
    return {count, ttl}
    """

    def __init__(self, redis_client, clock_ms: Callable[[], int] = _now_ms) -> None:
        self._redis = redis_client
        self._clock_ms = clock_ms
        self._script = None

    async def _get_script(self):
        if self._script is None:
            self._script = self._redis.register_script(self._LUA_SCRIPT)
        return self._script

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        script = await self._get_script()
        count, ttl_ms = await script(
            keys=[f"ratelimit:{key}"], args=[config.window_ms]
        )
        count, ttl_ms = int(count), max(int(ttl_ms), 0)
        reset_at_ms = self._clock_ms() + ttl_ms
        if count <= config.max_requests:
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - count,
                limit=config.max_requests,
                retry_after=0,
                reset_at_ms=reset_at_ms,
            )
        return RateLimitResult(
            allowed=False,
            remaining=0,
            limit=config.max_requests,
            retry_after=math.ceil(ttl_ms / 1000),
            reset_at_ms=reset_at_ms,
        )
