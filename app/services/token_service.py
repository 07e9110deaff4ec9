"""JWT creation and validation for access, refresh and reset tokens (HS256).

Each token class is signed with its own secret, so a refresh token can
never pass as an access token (and vice versa) even though all three
share the same issuer, audience and claims schema.

Verification never raises.  A token that fails any check comes back as
``None`` and the failure is reported to the security event sink with a
``reason`` (expired, malformed, invalid_signature, invalid_claims).
Callers translate ``None`` into a 401.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from app.core.config import (
    DEFAULT_ACCESS_SECRET,
    DEFAULT_REFRESH_SECRET,
    DEFAULT_RESET_SECRET,
    SETTINGS,
)
from app.core.metrics import TOKEN_VERIFICATIONS
from app.core.security_events import SecurityEventSink, security_events
from app.models.principal import ClaimsError, ResetClaims, TokenClaims

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ISSUER = "pic-certificates-api"
AUDIENCE = "pic-certificates-client"

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud"]


@dataclass(frozen=True, slots=True)
class TokenPolicy:
    secret: str
    ttl: timedelta


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


class TokenService:
    def __init__(
        self,
        *,
        access: TokenPolicy,
        refresh: TokenPolicy,
        reset: TokenPolicy,
        events: SecurityEventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._access = access
        self._refresh = refresh
        self._reset = reset
        self._events = events or security_events
        self._clock = clock or (lambda: datetime.now(UTC))

        if (
            access.secret == DEFAULT_ACCESS_SECRET
            or refresh.secret == DEFAULT_REFRESH_SECRET
            or reset.secret == DEFAULT_RESET_SECRET
        ):
            logger.warning(
                "Using default JWT secrets. Set JWT_ACCESS_SECRET, "
                "JWT_REFRESH_SECRET and JWT_RESET_SECRET outside development."
            )

    # -- issuance ----------------------------------------------------------

    def _sign(self, claims: dict[str, Any], policy: TokenPolicy) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iss": ISSUER,
            "aud": AUDIENCE,
            "iat": now,
            "exp": now + policy.ttl,
            # Two tokens minted for the same user in the same second
            # must still differ, or revoking one would revoke both.
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, policy.secret, algorithm=ALGORITHM)

    def create_access_token(self, claims: TokenClaims) -> str:
        return self._sign(claims.to_payload(), self._access)

    def create_refresh_token(self, claims: TokenClaims) -> str:
        return self._sign(claims.to_payload(), self._refresh)

    def create_token_pair(self, claims: TokenClaims) -> TokenPair:
        return TokenPair(
            access_token=self.create_access_token(claims),
            refresh_token=self.create_refresh_token(claims),
            expires_in=int(self._access.ttl.total_seconds()),
        )

    def create_reset_token(self, user_id: int) -> str:
        return self._sign({"id": user_id, "type": "reset"}, self._reset)

    # -- verification ------------------------------------------------------

    def _decode(
        self, token: str, policy: TokenPolicy, token_class: str
    ) -> dict[str, Any] | None:
        """Verify signature, algorithm, issuer, audience and expiry."""
        try:
            payload = jwt.decode(
                token,
                policy.secret,
                algorithms=[ALGORITHM],
                issuer=ISSUER,
                audience=AUDIENCE,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            return self._reject(token_class, "expired")
        except jwt.InvalidSignatureError:
            return self._reject(token_class, "invalid_signature")
        except jwt.DecodeError:
            return self._reject(token_class, "malformed")
        except jwt.InvalidTokenError:
            # wrong iss/aud, missing required claim, iat in the future
            return self._reject(token_class, "invalid_claims")
        return payload

    def _reject(self, token_class: str, reason: str) -> None:
        TOKEN_VERIFICATIONS.labels(token_class=token_class, result=reason).inc()
        self._events.log(
            "token_rejected", {"token_class": token_class, "reason": reason}
        )
        return None

    def _verify_identity(
        self, token: str, policy: TokenPolicy, token_class: str
    ) -> TokenClaims | None:
        payload = self._decode(token, policy, token_class)
        if payload is None:
            return None
        try:
            claims = TokenClaims.from_payload(payload)
        except ClaimsError:
            return self._reject(token_class, "invalid_claims")
        TOKEN_VERIFICATIONS.labels(token_class=token_class, result="accepted").inc()
        return claims

    def verify_access_token(self, token: str) -> TokenClaims | None:
        return self._verify_identity(token, self._access, "access")

    def verify_refresh_token(self, token: str) -> TokenClaims | None:
        return self._verify_identity(token, self._refresh, "refresh")

    def verify_reset_token(self, token: str) -> ResetClaims | None:
        payload = self._decode(token, self._reset, "reset")
        if payload is None:
            return None
        user_id = payload.get("id")
        if payload.get("type") != "reset":
            return self._reject("reset", "invalid_claims")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            return self._reject("reset", "invalid_claims")
        TOKEN_VERIFICATIONS.labels(token_class="reset", result="accepted").inc()
        return ResetClaims(id=user_id)

    # -- inspection (no signature check; display only) --------------------

    @staticmethod
    def get_token_expiration(token: str) -> datetime | None:
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return None
        return datetime.fromtimestamp(exp, UTC)

    def is_token_expired(self, token: str) -> bool:
        expiration = self.get_token_expiration(token)
        if expiration is None:
            return True
        return expiration < self._clock()

    @staticmethod
    def extract_token_from_header(header: str | None) -> str | None:
        """``Bearer <token>`` -> ``<token>``; anything else -> None."""
        if not header:
            return None
        parts = header.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
            return None
        return parts[1]


# ---------------------------------------------------------------------------
# Module-level singleton built from settings
# ---------------------------------------------------------------------------

token_service = TokenService(
    access=TokenPolicy(SETTINGS.jwt_access_secret, SETTINGS.access_token_ttl),
    refresh=TokenPolicy(SETTINGS.jwt_refresh_secret, SETTINGS.refresh_token_ttl),
    reset=TokenPolicy(SETTINGS.jwt_reset_secret, SETTINGS.reset_token_ttl),
)
