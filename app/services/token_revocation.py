"""Revocation registry for signed tokens.

A JWT stays valid until it expires.  Logout, refresh rotation and
single-use reset links need to kill a specific token earlier than
that, so every authenticated request checks the presented token
against this registry after its signature has been verified.

Entries only have to live as long as the token they block: once a
token has expired the signature check rejects it anyway.  The
in-memory registry keeps expiries in a min-heap and sweeps lazily on
every call; the Redis registry hands the remaining lifetime to Redis
as a key TTL.

The in-memory registry also has a high-water mark.  Past it the whole
registry is dropped in one go: memory stays bounded even when tokens
are revoked without an expiry, at the cost of un-revoking whatever was
in there.  Deployments that cannot accept that use Redis.
"""

from __future__ import annotations

import hashlib
import heapq
import logging
import math
import threading
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from app.core.config import SETTINGS
from app.core.metrics import TOKEN_REVOCATION_CHECKS
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenRevocationRegistry(Protocol):
    async def add(self, token: str, expires_at: float | None = None) -> None:
        """Revoke *token* until *expires_at* (Unix seconds), or indefinitely."""
        ...

    async def is_blacklisted(self, token: str) -> bool: ...

    async def claim(self, token: str, expires_at: float | None = None) -> bool:
        """Revoke *token* and report whether this call was the one that did.

        Check and insert happen as one step, so of two concurrent callers
        presenting the same single-use token exactly one gets True.
        """
        ...


class InMemoryTokenRevocationRegistry:
    """Per-process registry for dev, tests and single-instance deployments."""

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        # token -> expiry (None = no expiry)
        self._expiry_by_token: dict[str, float | None] = {}
        # (expiry, token); may hold stale pairs for re-added tokens
        self._expiries: list[tuple[float, str]] = []

    def _sweep(self, now: float) -> None:
        while self._expiries and self._expiries[0][0] <= now:
            expiry, token = heapq.heappop(self._expiries)
            # Only drop the token if this heap entry is still its current expiry
            if self._expiry_by_token.get(token) == expiry:
                del self._expiry_by_token[token]

    def _insert(self, token: str, expires_at: float | None, now: float) -> None:
        # Caller holds the lock
        if expires_at is not None and expires_at <= now:
            return  # already expired, signature check rejects it

        self._expiry_by_token[token] = expires_at
        if expires_at is not None:
            heapq.heappush(self._expiries, (expires_at, token))

        if len(self._expiry_by_token) > self._max_entries:
            logger.warning(
                "Revocation registry exceeded %d entries, clearing",
                self._max_entries,
            )
            self._expiry_by_token.clear()
            self._expiries.clear()

    async def add(self, token: str, expires_at: float | None = None) -> None:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._insert(token, expires_at, now)

    async def claim(self, token: str, expires_at: float | None = None) -> bool:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            claimed = token not in self._expiry_by_token and (
                expires_at is None or expires_at > now
            )
            if claimed:
                self._insert(token, expires_at, now)
        TOKEN_REVOCATION_CHECKS.labels(result="valid" if claimed else "revoked").inc()
        return claimed

    async def is_blacklisted(self, token: str) -> bool:
        with self._lock:
            self._sweep(self._clock())
            revoked = token in self._expiry_by_token
        TOKEN_REVOCATION_CHECKS.labels(result="revoked" if revoked else "valid").inc()
        return revoked

    def __len__(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._expiry_by_token)


class RedisTokenRevocationRegistry:
    """Redis-backed registry shared by every API instance.

    Keys are the SHA-256 of the token so raw credentials never sit in
    Redis (and keys stay a fixed size).
    """

    _PREFIX = "revoked:token:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _key(self, token: str) -> str:
        return self._PREFIX + hashlib.sha256(token.encode("utf-8")).hexdigest()

    async def add(self, token: str, expires_at: float | None = None) -> None:
        if expires_at is None:
            await self._redis.set(self._key(token), "1")
            return
        ttl_seconds = math.ceil(expires_at - time.time())
        if ttl_seconds <= 0:
            return
        # SETEX writes value and TTL atomically
        await self._redis.setex(self._key(token), ttl_seconds, "1")

    async def claim(self, token: str, expires_at: float | None = None) -> bool:
        ttl_seconds = None
        if expires_at is not None:
            ttl_seconds = math.ceil(expires_at - time.time())
            if ttl_seconds <= 0:
                return False
        # SET NX: only the first caller writes the key
        claimed = bool(
            await self._redis.set(self._key(token), "1", nx=True, ex=ttl_seconds)
        )
        TOKEN_REVOCATION_CHECKS.labels(result="valid" if claimed else "revoked").inc()
        return claimed

    async def is_blacklisted(self, token: str) -> bool:
        revoked = bool(await self._redis.exists(self._key(token)))
        TOKEN_REVOCATION_CHECKS.labels(result="revoked" if revoked else "valid").inc()
        return revoked


# ---------------------------------------------------------------------------
# Module-level singleton, conditional on Redis availability
# ---------------------------------------------------------------------------

if redis_pool is not None:
    token_registry: TokenRevocationRegistry = RedisTokenRevocationRegistry(redis_pool)
else:
    token_registry = InMemoryTokenRevocationRegistry(
        max_entries=SETTINGS.revocation_max_entries
    )
