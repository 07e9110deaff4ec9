from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Request

from app.core.errors import AuthenticationError, AuthorizationError
from app.core.security_events import security_events
from app.models.principal import Principal, Role
from app.services.token_revocation import token_registry
from app.services.token_service import token_service

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _request_details(request: Request) -> dict:
    return {
        "ip": client_ip(request),
        "user_agent": request.headers.get("user-agent", ""),
        "method": request.method,
        "path": request.url.path,
    }


async def require_user(request: Request) -> Principal:
    """Verify the bearer access token and return the caller.

    Checks, in order: header present, signature/claims valid, token not
    revoked.  Each failure is a 401 with its own code.
    """
    token = token_service.extract_token_from_header(
        request.headers.get("authorization")
    )
    if token is None:
        security_events.log("auth_token_missing", _request_details(request))
        raise AuthenticationError("Access token is required", code="TOKEN_REQUIRED")

    claims = token_service.verify_access_token(token)
    if claims is None:
        security_events.log("auth_token_invalid", _request_details(request))
        raise AuthenticationError("Invalid or expired token", code="TOKEN_INVALID")

    if await token_registry.is_blacklisted(token):
        security_events.log(
            "auth_token_revoked", {**_request_details(request), "user_id": claims.id}
        )
        raise AuthenticationError("Token has been revoked", code="TOKEN_REVOKED")

    expiration = token_service.get_token_expiration(token)
    principal = Principal.from_claims(
        claims,
        token=token,
        expires_at=expiration.timestamp() if expiration is not None else None,
    )
    logger.debug(
        "Token validated for user=%s role=%s", principal.user_id, principal.role
    )
    return principal


def require_any_role(roles: set[Role] | frozenset[Role]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({Role.MANAGER, Role.INSPECTOR}))
    """

    def _guard(
        request: Request,
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(set(roles)):
            security_events.log(
                "authorization_denied",
                {
                    **_request_details(request),
                    "user_id": principal.user_id,
                    "role": principal.role.value,
                    "required_roles": sorted(r.value for r in roles),
                },
            )
            raise AuthorizationError("Insufficient permissions")
        return principal

    return _guard


require_admin = require_any_role(ADMIN_ROLES)
