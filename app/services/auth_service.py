"""Account flows and user administration: login, refresh rotation, logout,
password changes, and user creation, update, statistics and soft deletion.

Expected failures (unknown user, wrong password, bad token) come back as
``None`` so the HTTP layer can answer with one generic message; the
reason goes to the security event sink instead of the response.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from app.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.core.security_events import SecurityEventSink, security_events
from app.models.principal import Role
from app.models.user import User
from app.repos.user_repo import UserRepo
from app.services import credential_service
from app.services.email_service import EmailNotifier
from app.services.token_revocation import TokenRevocationRegistry
from app.services.token_service import TokenPair, TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LoginResult:
    user: User
    tokens: TokenPair


UPDATABLE_USER_FIELDS = frozenset(
    {"email", "first_name", "last_name", "role", "is_active", "factory_id"}
)


@dataclass(frozen=True, slots=True)
class UserFilters:
    role: Role | None = None
    is_active: bool | None = None
    search: str | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True, slots=True)
class UserPage:
    items: list[User]
    total: int


@dataclass(frozen=True, slots=True)
class UserStatistics:
    total: int
    active: int
    inactive: int
    by_role: dict[Role, int] = field(default_factory=dict)


def _matches(user: User, filters: UserFilters) -> bool:
    if filters.role is not None and user.role != filters.role:
        return False
    if filters.is_active is not None and user.is_active != filters.is_active:
        return False
    if filters.search:
        term = filters.search.lower()
        haystack = (user.username, user.email, user.first_name, user.last_name)
        if not any(term in value.lower() for value in haystack):
            return False
    return True


def _check_new_password(new_password: str, confirm_password: str | None) -> None:
    if confirm_password is not None and confirm_password != new_password:
        raise ValidationError(
            "Password confirmation does not match",
            errors=["Password confirmation does not match"],
        )
    strength = credential_service.validate_password_strength(new_password)
    if not strength.is_valid:
        raise ValidationError(
            "Password does not meet strength requirements", errors=strength.errors
        )


class AuthService:
    def __init__(
        self,
        users: UserRepo,
        tokens: TokenService,
        registry: TokenRevocationRegistry,
        notifier: EmailNotifier,
        events: SecurityEventSink | None = None,
    ) -> None:
        self._users = users
        self._tokens = tokens
        self._registry = registry
        self._notifier = notifier
        self._events = events or security_events
        self._write_lock = threading.Lock()

    def _find(self, identifier: str) -> User | None:
        return self._users.get_by_username(identifier) or self._users.get_by_email(
            identifier
        )

    def authenticate_user(
        self, identifier: str, password: str, *, ip: str | None = None
    ) -> User | None:
        """Look the user up by username or email and check the password.

        Upgrades the stored hash when the hasher's parameters have moved on.
        """
        user = self._find(identifier)
        if user is None:
            self._fail_login("unknown_user", identifier, ip)
            return None
        if not user.is_active:
            self._fail_login("inactive", identifier, ip)
            return None
        if not credential_service.compare_password(password, user.password_hash):
            self._fail_login("bad_password", identifier, ip)
            return None

        if credential_service.needs_rehash(user.password_hash):
            self._users.update_password_hash(
                user.id, credential_service.hash_password(password)
            )
            logger.info("Rehashed password for user=%s", user.id)
        return user

    def _fail_login(self, reason: str, identifier: str, ip: str | None) -> None:
        self._events.log(
            "login_failed",
            {
                "reason": reason,
                "identifier": credential_service.mask_email(identifier),
                "ip": ip,
            },
        )

    def login(
        self, identifier: str, password: str, *, ip: str | None = None
    ) -> LoginResult | None:
        user = self.authenticate_user(identifier, password, ip=ip)
        if user is None:
            return None
        logger.info("User logged in user=%s", user.id)
        return LoginResult(
            user=user, tokens=self._tokens.create_token_pair(user.to_claims())
        )

    def _expiry(self, token: str) -> float | None:
        expiration = self._tokens.get_token_expiration(token)
        return expiration.timestamp() if expiration is not None else None

    async def _revoke(self, token: str) -> None:
        await self._registry.add(token, self._expiry(token))

    async def refresh(self, refresh_token: str) -> LoginResult | None:
        """Exchange a refresh token for a new pair; the old one is revoked.

        Claims are rebuilt from the current user record, so a role change
        takes effect on the next refresh.
        """
        claims = self._tokens.verify_refresh_token(refresh_token)
        if claims is None:
            return None
        # Revoking and checking in one step: of two concurrent refreshes
        # with the same token only one gets a new pair.
        if not await self._registry.claim(refresh_token, self._expiry(refresh_token)):
            self._events.log("refresh_token_reuse", {"user_id": claims.id})
            return None

        user = self._users.get_by_id(claims.id)
        if user is None or not user.is_active:
            self._events.log("refresh_rejected", {"user_id": claims.id})
            return None

        return LoginResult(
            user=user, tokens=self._tokens.create_token_pair(user.to_claims())
        )

    async def logout(
        self, access_token: str | None = None, refresh_token: str | None = None
    ) -> None:
        """Revoke whichever of the two tokens verify.  Never fails."""
        if access_token and self._tokens.verify_access_token(access_token):
            await self._revoke(access_token)
        if refresh_token and self._tokens.verify_refresh_token(refresh_token):
            await self._revoke(refresh_token)

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        confirm_password: str | None = None,
    ) -> None:
        user = self._users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not credential_service.compare_password(
            current_password, user.password_hash
        ):
            self._events.log("password_change_rejected", {"user_id": user_id})
            raise BadRequestError(
                "Current password is incorrect", code="INVALID_CURRENT_PASSWORD"
            )
        _check_new_password(new_password, confirm_password)

        self._users.update_password_hash(
            user_id, credential_service.hash_password(new_password)
        )
        logger.info("Password changed for user=%s", user_id)

    async def request_password_reset(self, email: str) -> None:
        """Mail a reset link if *email* belongs to an active account.

        Returns nothing either way; callers must not be able to tell
        whether the address exists.
        """
        user = self._users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info(
                "Password reset requested for unknown email=%s",
                credential_service.mask_email(email),
            )
            return

        reset_token = self._tokens.create_reset_token(user.id)
        try:
            sent = await self._notifier.send_password_reset_email(
                user.email, reset_token, user.display_name
            )
        except Exception:
            logger.exception("Password reset email failed for user=%s", user.id)
            return
        if not sent:
            logger.warning("Password reset email not delivered for user=%s", user.id)
        else:
            logger.info("Password reset requested for user=%s", user.id)

    async def reset_password(
        self,
        reset_token: str,
        new_password: str,
        confirm_password: str | None = None,
    ) -> None:
        claims = self._tokens.verify_reset_token(reset_token)
        if claims is None or await self._registry.is_blacklisted(reset_token):
            raise BadRequestError(
                "Invalid or expired reset token", code="INVALID_RESET_TOKEN"
            )
        user = self._users.get_by_id(claims.id)
        if user is None:
            raise BadRequestError(
                "Invalid or expired reset token", code="INVALID_RESET_TOKEN"
            )
        _check_new_password(new_password, confirm_password)

        # Reset links work once
        if not await self._registry.claim(reset_token, self._expiry(reset_token)):
            raise BadRequestError(
                "Invalid or expired reset token", code="INVALID_RESET_TOKEN"
            )
        self._users.update_password_hash(
            user.id, credential_service.hash_password(new_password)
        )
        logger.info("Password reset completed for user=%s", user.id)

    def create_user(
        self,
        *,
        username: str,
        email: str,
        password: str,
        role: Role = Role.USER,
        first_name: str = "",
        last_name: str = "",
        factory_id: str | None = None,
    ) -> User:
        email = email.strip().lower()
        if not credential_service.is_valid_email(email):
            raise ValidationError(
                "Valid email is required", errors=["Valid email is required"]
            )
        _check_new_password(password, None)

        with self._write_lock:
            if self._users.get_by_email(email) or self._users.get_by_username(username):
                raise ConflictError("A user with that username or email already exists")
            user = self._users.add(
                User(
                    id=self._users.next_id(),
                    username=username.strip(),
                    email=email,
                    password_hash=credential_service.hash_password(password),
                    role=role,
                    first_name=first_name,
                    last_name=last_name,
                    factory_id=factory_id,
                )
            )
        logger.info("User created user=%s role=%s", user.id, user.role)
        return user

    def set_active(self, user_id: int, is_active: bool) -> User:
        with self._write_lock:
            if self._users.get_by_id(user_id) is None:
                raise NotFoundError("User not found")
            self._users.set_active(user_id, is_active)
        logger.info("User user=%s active=%s", user_id, is_active)
        return self._users.get_by_id(user_id)  # type: ignore[return-value]

    def list_users(self, filters: UserFilters | None = None) -> UserPage:
        filters = filters or UserFilters()
        matched = [u for u in self._users.list_all() if _matches(u, filters)]
        total = len(matched)
        if filters.offset is not None:
            matched = matched[filters.offset :]
        if filters.limit is not None:
            matched = matched[: filters.limit]
        return UserPage(items=matched, total=total)

    def user_statistics(self) -> UserStatistics:
        users = self._users.list_all()
        active = sum(1 for u in users if u.is_active)
        return UserStatistics(
            total=len(users),
            active=active,
            inactive=len(users) - active,
            by_role={role: sum(1 for u in users if u.role == role) for role in Role},
        )

    def update_user(self, user_id: int, changes: Mapping[str, Any]) -> User:
        """Apply the provided *changes*; username and password are not among
        the updatable fields."""
        rejected = sorted(set(changes) - UPDATABLE_USER_FIELDS)
        if rejected:
            raise ValidationError(
                "Fields cannot be updated: " + ", ".join(rejected),
                errors=[f"{name} is not updatable" for name in rejected],
            )
        changes = dict(changes)
        if "email" in changes:
            changes["email"] = changes["email"].strip().lower()
            if not credential_service.is_valid_email(changes["email"]):
                raise ValidationError(
                    "Valid email is required", errors=["Valid email is required"]
                )

        with self._write_lock:
            user = self._users.get_by_id(user_id)
            if user is None:
                raise NotFoundError("User not found")
            email = changes.get("email")
            if email is not None and email != user.email:
                if self._users.get_by_email(email) is not None:
                    raise ConflictError("A user with that email already exists")
            updated = self._users.update(replace(user, **changes))
        logger.info("User updated user=%s fields=%s", user_id, sorted(changes))
        return updated

    def delete_user(self, user_id: int) -> None:
        """Soft delete: the account is deactivated, never removed."""
        self.set_active(user_id, False)
        logger.info("User deleted user=%s", user_id)
