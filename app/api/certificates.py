"""Certificate endpoints under /api/certificates.

Everything except ``GET /verify/{certificate_id}`` needs a bearer
token.  Non-admins only ever see and touch their own certificates;
admins (Super Admin, Admin) see all of them.

The public verification response carries a reduced view of the
certificate: no owner, recipient e-mail or metadata.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, ConfigDict, Field, field_validator

from app.api.dependencies import require_user
from app.api.envelope import ApiModel, ok
from app.core.errors import AuthorizationError, NotFoundError
from app.models.certificate import (
    Certificate,
    CertificateCreate,
    CertificateFilters,
    CertificateStatus,
    CertificateType,
)
from app.models.principal import Principal
from app.repos.certificate_repo import InMemoryCertificateRepo
from app.services import credential_service
from app.services.certificate_service import CertificateService
from app.services.email_service import email_notifier
from app.services.verification_service import VerificationResult, VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/certificates", tags=["certificates"])

# --- Module-level singletons (in-memory store for now) ---
certificate_repo = InMemoryCertificateRepo()
certificate_service = CertificateService(certificate_repo, email_notifier)
verification_service = VerificationService(certificate_repo)


def _as_utc(value: datetime | None) -> datetime | None:
    # Naive timestamps from clients are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# --- Schemas ---


class _CertificateFields(ApiModel):
    @field_validator("type", mode="before", check_fields=False)
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("recipient_email", check_fields=False)
    @classmethod
    def _valid_email(cls, v: str | None) -> str | None:
        if v is not None and not credential_service.is_valid_email(v):
            raise ValueError("Valid recipient email is required")
        return v

    @field_validator("issue_date", "expires_at", check_fields=False)
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class CertificateCreateIn(_CertificateFields):
    name: str = Field(
        min_length=3, max_length=200, validation_alias=AliasChoices("name", "title")
    )
    type: CertificateType = Field(
        default=CertificateType.COMPLETION,
        validation_alias=AliasChoices("type", "certificateType"),
    )
    description: str | None = Field(default=None, max_length=1000)
    recipient_name: str | None = Field(default=None, min_length=2, max_length=100)
    recipient_email: str | None = None
    issue_date: datetime | None = None
    # Both spellings have been used by clients; they mean the same thing
    expires_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "expiresAt", "expiryDate", "validUntil", "expires_at"
        ),
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata", "additionalData"),
    )


class CertificateUpdateIn(_CertificateFields):
    # status, ids and owner are not fields here, so sending them is a 422
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(
        default=None,
        min_length=3,
        max_length=200,
        validation_alias=AliasChoices("name", "title"),
    )
    type: CertificateType | None = Field(
        default=None, validation_alias=AliasChoices("type", "certificateType")
    )
    description: str | None = Field(default=None, max_length=1000)
    recipient_name: str | None = Field(default=None, min_length=2, max_length=100)
    recipient_email: str | None = None
    issue_date: datetime | None = None
    expires_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "expiresAt", "expiryDate", "validUntil", "expires_at"
        ),
    )
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata", "additionalData")
    )

    def changes(self) -> dict[str, Any]:
        """Only the fields the client actually sent."""
        changes = self.model_dump(exclude_unset=True)
        # These cannot be cleared, only replaced
        for required in ("name", "type", "metadata"):
            if required in changes and changes[required] is None:
                del changes[required]
        return changes


class RevokeIn(ApiModel):
    reason: str = Field(min_length=5, max_length=500)


class CertificateOut(ApiModel):
    id: str
    certificate_id: str
    owner_id: str
    name: str
    description: str | None
    type: CertificateType
    status: CertificateStatus
    recipient_name: str | None
    recipient_email: str | None
    issue_date: datetime | None
    expires_at: datetime | None
    issued_at: datetime | None
    revoked_at: datetime | None
    revocation_reason: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    is_expired: bool

    @staticmethod
    def from_model(cert: Certificate) -> CertificateOut:
        return CertificateOut(
            id=cert.id,
            certificate_id=cert.certificate_id,
            owner_id=cert.owner_id,
            name=cert.name,
            description=cert.description,
            type=cert.type,
            status=cert.status,
            recipient_name=cert.recipient_name,
            recipient_email=cert.recipient_email,
            issue_date=cert.issue_date,
            expires_at=cert.expires_at,
            issued_at=cert.issued_at,
            revoked_at=cert.revoked_at,
            revocation_reason=cert.revocation_reason,
            metadata=cert.metadata,
            created_at=cert.created_at,
            updated_at=cert.updated_at,
            is_expired=cert.is_expired(datetime.now(UTC)),
        )


class PublicCertificateOut(ApiModel):
    certificate_id: str
    name: str
    type: CertificateType
    status: CertificateStatus
    recipient_name: str | None
    issue_date: datetime | None
    issued_at: datetime | None
    expires_at: datetime | None
    revoked_at: datetime | None

    @staticmethod
    def from_model(cert: Certificate) -> PublicCertificateOut:
        return PublicCertificateOut(
            certificate_id=cert.certificate_id,
            name=cert.name,
            type=cert.type,
            status=cert.status,
            recipient_name=cert.recipient_name,
            issue_date=cert.issue_date,
            issued_at=cert.issued_at,
            expires_at=cert.expires_at,
            revoked_at=cert.revoked_at,
        )


class VerificationOut(ApiModel):
    is_valid: bool
    error: str | None = None
    certificate: PublicCertificateOut | None = None

    @staticmethod
    def from_result(result: VerificationResult) -> VerificationOut:
        return VerificationOut(
            is_valid=result.is_valid,
            error=result.error,
            certificate=(
                PublicCertificateOut.from_model(result.certificate)
                if result.certificate is not None
                else None
            ),
        )


# --- Helpers ---


def _load_owned(id: str, principal: Principal) -> Certificate:
    cert = certificate_service.get(id)
    if cert is None:
        raise NotFoundError("Certificate not found")
    if not principal.is_admin() and not principal.owns(cert.owner_id):
        logger.warning(
            "Certificate access denied user=%s certificate=%s", principal.user_id, id
        )
        raise AuthorizationError("You do not have access to this certificate")
    return cert


def _owner_scope(principal: Principal, requested_owner: str | None) -> str | None:
    """Admins may look at anyone (or everyone); others only at themselves."""
    if principal.is_admin():
        return requested_owner
    return str(principal.user_id)


# --- Routes ---
# Fixed paths (/statistics, /verify) are declared before /{id}.


@router.post("", status_code=201)
def create_certificate(
    body: CertificateCreateIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict:
    cert = certificate_service.create(
        CertificateCreate(
            owner_id=str(principal.user_id),
            name=body.name,
            type=body.type,
            description=body.description,
            recipient_name=body.recipient_name,
            recipient_email=body.recipient_email,
            issue_date=body.issue_date,
            expires_at=body.expires_at,
            metadata=body.metadata,
        )
    )
    return ok("Certificate created successfully", CertificateOut.from_model(cert))


@router.get("")
def list_certificates(
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
    status: CertificateStatus | None = None,
    owner_id: Annotated[str | None, Query(alias="ownerId")] = None,
    search: Annotated[str | None, Query(min_length=1, max_length=100)] = None,
    date_from: Annotated[datetime | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[datetime | None, Query(alias="dateTo")] = None,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
    offset: Annotated[int | None, Query(ge=0)] = None,
) -> dict:
    filters = CertificateFilters(
        status=status,
        owner_id=_owner_scope(principal, owner_id),
        search=search,
        date_from=_as_utc(date_from),
        date_to=_as_utc(date_to),
        limit=limit,
        offset=offset,
    )
    page = certificate_service.list(filters)

    response.headers["X-Total-Count"] = str(page.total)
    response.headers["X-Offset"] = str(offset or 0)
    response.headers["X-Limit"] = str(limit or page.total)
    return ok(
        "Certificates retrieved successfully",
        [CertificateOut.from_model(c) for c in page.items],
    )


@router.get("/statistics")
def certificate_statistics(
    principal: Annotated[Principal, Depends(require_user)],
    owner_id: Annotated[str | None, Query(alias="ownerId")] = None,
) -> dict:
    stats = certificate_service.statistics(_owner_scope(principal, owner_id))
    return ok(
        "Certificate statistics retrieved successfully",
        {
            "total": stats.total,
            "issued": stats.issued,
            "draft": stats.draft,
            "revoked": stats.revoked,
            "expired": stats.expired,
        },
    )


@router.get("/verify/{certificate_id}")
def verify_certificate(certificate_id: str) -> JSONResponse:
    """Public: is this certificate genuine and currently valid?  200 or 400."""
    result = verification_service.verify(certificate_id)
    body = ok(
        "Certificate is valid"
        if result.is_valid
        else result.error or "Certificate verification failed",
        VerificationOut.from_result(result),
    )
    body["success"] = result.is_valid
    return JSONResponse(status_code=200 if result.is_valid else 400, content=body)


@router.get("/{id}")
def get_certificate(
    id: str, principal: Annotated[Principal, Depends(require_user)]
) -> dict:
    cert = _load_owned(id, principal)
    return ok("Certificate retrieved successfully", CertificateOut.from_model(cert))


@router.put("/{id}")
def update_certificate(
    id: str,
    body: CertificateUpdateIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict:
    _load_owned(id, principal)
    cert = certificate_service.update(id, body.changes())
    if cert is None:
        raise NotFoundError("Certificate not found")
    return ok("Certificate updated successfully", CertificateOut.from_model(cert))


@router.delete("/{id}")
def delete_certificate(
    id: str, principal: Annotated[Principal, Depends(require_user)]
) -> dict:
    _load_owned(id, principal)
    if not certificate_service.delete(id):
        raise NotFoundError("Certificate not found")
    return ok("Certificate deleted successfully")


@router.post("/{id}/issue")
async def issue_certificate(
    id: str, principal: Annotated[Principal, Depends(require_user)]
) -> dict:
    _load_owned(id, principal)
    cert = await certificate_service.issue(id)
    if cert is None:
        raise NotFoundError("Certificate not found")
    return ok("Certificate issued successfully", CertificateOut.from_model(cert))


@router.post("/{id}/revoke")
def revoke_certificate(
    id: str,
    body: RevokeIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> dict:
    _load_owned(id, principal)
    cert = certificate_service.revoke(id, body.reason)
    if cert is None:
        raise NotFoundError("Certificate not found")
    return ok("Certificate revoked successfully", CertificateOut.from_model(cert))
