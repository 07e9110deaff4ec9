from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    """Closed set of platform roles.  Values are the strings carried in JWTs."""

    SUPER_ADMIN = "Super Admin"
    ADMIN = "Admin"
    MANAGER = "Manager"
    INSPECTOR = "Inspector"
    USER = "User"

    @property
    def is_admin(self) -> bool:
        return self in (Role.SUPER_ADMIN, Role.ADMIN)


class ClaimsError(ValueError):
    """A decoded payload does not have the shape of our claims."""


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Identity carried by access and refresh tokens.

    Validated once, when a token is decoded; everything past the trust
    boundary works with this type rather than a raw dict.
    """

    id: int
    username: str
    email: str
    role: Role
    factory_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
        }
        if self.factory_id is not None:
            payload["factoryId"] = self.factory_id
        return payload

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> TokenClaims:
        try:
            user_id = payload["id"]
            username = payload["username"]
            email = payload["email"]
            role = Role(payload["role"])
        except KeyError as e:
            raise ClaimsError(f"missing claim {e.args[0]!r}") from None
        except ValueError:
            raise ClaimsError(f"unknown role {payload.get('role')!r}") from None

        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise ClaimsError("claim 'id' must be an integer")
        if not isinstance(username, str) or not isinstance(email, str):
            raise ClaimsError("claims 'username' and 'email' must be strings")

        factory_id = payload.get("factoryId")
        return TokenClaims(
            id=user_id,
            username=username,
            email=email,
            role=role,
            factory_id=str(factory_id) if factory_id is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ResetClaims:
    id: int
    type: str = "reset"


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller, built by ``require_user`` from verified claims.

    ``token`` and ``expires_at`` are kept so logout can revoke the exact
    credential the request arrived with.
    """

    user_id: int
    username: str
    email: str
    role: Role
    factory_id: str | None = None
    token: str | None = None
    expires_at: float | None = None

    @staticmethod
    def from_claims(
        claims: TokenClaims,
        *,
        token: str | None = None,
        expires_at: float | None = None,
    ) -> Principal:
        return Principal(
            user_id=claims.id,
            username=claims.username,
            email=claims.email,
            role=claims.role,
            factory_id=claims.factory_id,
            token=token,
            expires_at=expires_at,
        )

    def has_role(self, role: Role) -> bool:
        return self.role == role

    def has_any_role(self, roles: set[Role]) -> bool:
        return self.role in roles

    def is_admin(self) -> bool:
        return self.role.is_admin

    def owns(self, owner_id: str) -> bool:
        return str(self.user_id) == owner_id
