"""Authentication endpoints under /api/auth.

Login, refresh, logout, current user, and the three password flows.
Login and the unauthenticated flows are rate limited per client; the
budgets come from settings (5 logins, 10 other calls per 15 minutes by
default).
"""

from __future__ import annotations

import logging
import os
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import Field, field_validator

from app.api.dependencies import client_ip, require_user
from app.api.envelope import ApiModel, ok
from app.api.ratelimit import AUTH_LIMIT, LOGIN_LIMIT, require_rate_limit
from app.core.config import SETTINGS
from app.core.errors import AuthenticationError, NotFoundError
from app.models.principal import Principal, Role
from app.models.user import User
from app.repos.user_repo import InMemoryUserRepo
from app.services import credential_service
from app.services.auth_service import AuthService, LoginResult
from app.services.email_service import email_notifier
from app.services.token_revocation import token_registry
from app.services.token_service import TokenPair, token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

# --- Module-level singletons (in-memory user store for now) ---
user_repo = InMemoryUserRepo()
auth_service = AuthService(user_repo, token_service, token_registry, email_notifier)


def _seed_dev_admin() -> None:
    password = os.environ.get("DEV_ADMIN_PASSWORD", "Admin@12345")
    auth_service.create_user(
        username="admin",
        email="admin@pic-certificates.local",
        password=password,
        role=Role.SUPER_ADMIN,
        first_name="Platform",
        last_name="Admin",
    )
    logger.info("Seeded development admin user")


if SETTINGS.is_dev:
    _seed_dev_admin()


# --- Schemas ---


class LoginIn(ApiModel):
    username: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=6)


class RefreshIn(ApiModel):
    refresh_token: str = Field(min_length=1)


class LogoutIn(ApiModel):
    refresh_token: str | None = None


class ChangePasswordIn(ApiModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)
    confirm_password: str


class ForgotPasswordIn(ApiModel):
    email: str

    @field_validator("email")
    @classmethod
    def _valid_email(cls, v: str) -> str:
        v = v.strip()
        if not credential_service.is_valid_email(v):
            raise ValueError("Valid email is required")
        return v


class ResetPasswordIn(ApiModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=6)
    confirm_password: str | None = None


class UserOut(ApiModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    display_name: str
    role: Role
    factory_id: str | None = None
    is_active: bool

    @staticmethod
    def from_user(user: User) -> UserOut:
        return UserOut(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            role=user.role,
            factory_id=user.factory_id,
            is_active=user.is_active,
        )


class TokensOut(ApiModel):
    access_token: str
    refresh_token: str
    expires_in: int

    @staticmethod
    def from_pair(pair: TokenPair) -> TokensOut:
        return TokensOut(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
        )


def _session_body(message: str, result: LoginResult) -> dict:
    # access_token at the top level is what the web client reads
    return ok(
        message,
        {
            "user": UserOut.from_user(result.user),
            "tokens": TokensOut.from_pair(result.tokens),
        },
        access_token=result.tokens.access_token,
    )


# --- Routes ---


@router.post("/login", dependencies=[Depends(require_rate_limit(LOGIN_LIMIT))])
def login(body: LoginIn, request: Request) -> dict:
    result = auth_service.login(body.username, body.password, ip=client_ip(request))
    if result is None:
        raise AuthenticationError(
            "Invalid email or password", code="INVALID_CREDENTIALS"
        )
    return _session_body("Login successful", result)


@router.post("/refresh", dependencies=[Depends(require_rate_limit(AUTH_LIMIT))])
async def refresh(body: RefreshIn) -> dict:
    result = await auth_service.refresh(body.refresh_token)
    if result is None:
        raise AuthenticationError(
            "Invalid refresh token", code="REFRESH_TOKEN_INVALID"
        )
    return _session_body("Token refreshed successfully", result)


@router.post("/logout")
async def logout(request: Request, body: LogoutIn | None = None) -> dict:
    """Revoke the presented access token and, if sent, the refresh token.

    Always 200: an invalid or missing token is already unusable.
    """
    access_token = token_service.extract_token_from_header(
        request.headers.get("authorization")
    )
    await auth_service.logout(
        access_token=access_token,
        refresh_token=body.refresh_token if body else None,
    )
    return ok("Logout successful")


@router.get("/me")
def me(principal: Annotated[Principal, Depends(require_user)]) -> dict:
    user = user_repo.get_by_id(principal.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return ok("User retrieved successfully", UserOut.from_user(user))


@router.post("/change-password")
def change_password(
    body: ChangePasswordIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict:
    auth_service.change_password(
        principal.user_id,
        body.current_password,
        body.new_password,
        body.confirm_password,
    )
    return ok("Password changed successfully")


@router.post(
    "/forgot-password", dependencies=[Depends(require_rate_limit(AUTH_LIMIT))]
)
async def forgot_password(body: ForgotPasswordIn) -> dict:
    await auth_service.request_password_reset(body.email)
    return ok(
        "If an account with that email exists, a password reset link has been sent"
    )


@router.post(
    "/reset-password", dependencies=[Depends(require_rate_limit(AUTH_LIMIT))]
)
async def reset_password(body: ResetPasswordIn) -> dict:
    await auth_service.reset_password(
        body.token, body.password, body.confirm_password
    )
    return ok("Password reset successfully")
