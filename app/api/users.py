"""User administration under /api/users.

Every route needs a signed-in caller.  Your own profile (``/me``, with
``/profile`` as an alias) is open to everyone; listing, statistics and
lookup are for admins and managers; creating, updating, deactivating
and deleting other accounts is admin-only.  Only a Super Admin may
grant the Super Admin role or touch a Super Admin account.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import ConfigDict, Field

from app.api.auth import UserOut, auth_service, user_repo
from app.api.dependencies import (
    ADMIN_ROLES,
    require_admin,
    require_any_role,
    require_user,
)
from app.api.envelope import ApiModel, ok
from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.models.principal import Principal, Role
from app.models.user import User
from app.services.auth_service import UserFilters

router = APIRouter(prefix="/api/users", tags=["users"])

_require_staff = require_any_role(ADMIN_ROLES | {Role.MANAGER})


class UserCreateIn(ApiModel):
    username: str = Field(min_length=3, max_length=50)
    email: str
    password: str
    role: Role = Role.USER
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    factory_id: str | None = None


class UserStatusIn(ApiModel):
    is_active: bool


class ProfileUpdateIn(ApiModel):
    model_config = ConfigDict(extra="forbid")

    email: str | None = None
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    role: Role | None = None

    def changes(self) -> dict[str, Any]:
        """Only the fields the client actually sent, minus explicit nulls."""
        sent = self.model_dump(exclude_unset=True)
        return {k: v for k, v in sent.items() if v is not None}


class UserUpdateIn(ProfileUpdateIn):
    is_active: bool | None = None
    factory_id: str | None = None


def _guard_super_admin(
    principal: Principal, target: User | None, new_role: Role | None = None
) -> None:
    if principal.role == Role.SUPER_ADMIN:
        return
    if new_role == Role.SUPER_ADMIN:
        raise AuthorizationError("Only a Super Admin can grant the Super Admin role")
    if target is not None and target.role == Role.SUPER_ADMIN:
        raise AuthorizationError("Only a Super Admin can modify Super Admin users")


def _load(user_id: int) -> User:
    user = user_repo.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


# --- Your own account ---


@router.get("/me")
@router.get("/profile")
def get_current_user(principal: Annotated[Principal, Depends(require_user)]) -> dict:
    user = _load(principal.user_id)
    return ok("Current user retrieved successfully", UserOut.from_user(user))


@router.put("/me")
def update_current_user(
    body: ProfileUpdateIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict:
    changes = body.changes()
    # Non-admins cannot change their own role; the field is dropped
    if not principal.is_admin():
        changes.pop("role", None)
    _guard_super_admin(principal, None, changes.get("role"))
    user = auth_service.update_user(principal.user_id, changes)
    return ok("Profile updated successfully", UserOut.from_user(user))


# --- Staff ---


@router.get("")
def list_users(
    response: Response,
    _principal: Annotated[Principal, Depends(_require_staff)],
    role: Role | None = None,
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
    search: Annotated[str | None, Query(min_length=1, max_length=100)] = None,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
    offset: Annotated[int | None, Query(ge=0)] = None,
) -> dict:
    page = auth_service.list_users(
        UserFilters(
            role=role, is_active=is_active, search=search, limit=limit, offset=offset
        )
    )
    response.headers["X-Total-Count"] = str(page.total)
    response.headers["X-Offset"] = str(offset or 0)
    response.headers["X-Limit"] = str(limit or page.total)
    users = [UserOut.from_user(u) for u in page.items]
    return ok("Users retrieved successfully", users)


@router.get("/stats")
def user_statistics(
    _principal: Annotated[Principal, Depends(_require_staff)],
) -> dict:
    stats = auth_service.user_statistics()
    return ok(
        "User statistics retrieved successfully",
        {
            "total": stats.total,
            "active": stats.active,
            "inactive": stats.inactive,
            "byRole": {role.value: count for role, count in stats.by_role.items()},
        },
    )


@router.get("/{user_id}")
def get_user(
    user_id: int,
    _principal: Annotated[Principal, Depends(_require_staff)],
) -> dict:
    return ok("User retrieved successfully", UserOut.from_user(_load(user_id)))


# --- Admin ---


@router.post("", status_code=201)
def create_user(
    body: UserCreateIn,
    principal: Annotated[Principal, Depends(require_admin)],
) -> dict:
    _guard_super_admin(principal, None, body.role)
    user = auth_service.create_user(
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role,
        first_name=body.first_name,
        last_name=body.last_name,
        factory_id=body.factory_id,
    )
    return ok("User created successfully", UserOut.from_user(user))


@router.put("/{user_id}")
def update_user(
    user_id: int,
    body: UserUpdateIn,
    principal: Annotated[Principal, Depends(require_admin)],
) -> dict:
    changes = body.changes()
    if user_id == principal.user_id and changes.get("is_active") is False:
        raise ValidationError(
            "You cannot deactivate your own account",
            errors=["isActive cannot be false for the caller"],
        )
    _guard_super_admin(principal, _load(user_id), changes.get("role"))
    user = auth_service.update_user(user_id, changes)
    return ok("User updated successfully", UserOut.from_user(user))


@router.patch("/{user_id}/status")
def set_user_status(
    user_id: int,
    body: UserStatusIn,
    principal: Annotated[Principal, Depends(require_admin)],
) -> dict:
    if user_id == principal.user_id and not body.is_active:
        raise ValidationError(
            "You cannot deactivate your own account",
            errors=["isActive cannot be false for the caller"],
        )
    _guard_super_admin(principal, _load(user_id))
    user = auth_service.set_active(user_id, body.is_active)
    return ok("User updated successfully", UserOut.from_user(user))


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    principal: Annotated[Principal, Depends(require_admin)],
) -> dict:
    if user_id == principal.user_id:
        raise AuthorizationError("You cannot delete your own account")
    _guard_super_admin(principal, _load(user_id))
    auth_service.delete_user(user_id)
    return ok("User deleted successfully")
