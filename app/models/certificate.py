from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4


class CertificateType(StrEnum):
    COMPLETION = "completion"
    ACHIEVEMENT = "achievement"
    PARTICIPATION = "participation"
    EXCELLENCE = "excellence"


class CertificateStatus(StrEnum):
    """Stored lifecycle states.

    There is deliberately no EXPIRED member: expiry is computed from
    ``expires_at`` at read time (see ``Certificate.is_expired``).
    """

    DRAFT = "draft"
    ISSUED = "issued"
    REVOKED = "revoked"


@dataclass(frozen=True, slots=True)
class Certificate:
    id: str
    certificate_id: str
    owner_id: str
    name: str
    type: CertificateType
    status: CertificateStatus
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    recipient_name: str | None = None
    recipient_email: str | None = None
    issue_date: datetime | None = None
    expires_at: datetime | None = None
    issued_at: datetime | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        certificate_id: str,
        owner_id: str,
        name: str,
        type: CertificateType,
        now: datetime,
        description: str | None = None,
        recipient_name: str | None = None,
        recipient_email: str | None = None,
        issue_date: datetime | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Certificate:
        return Certificate(
            id=str(uuid4()),
            certificate_id=certificate_id,
            owner_id=owner_id,
            name=name,
            type=type,
            status=CertificateStatus.DRAFT,
            created_at=now,
            updated_at=now,
            description=description,
            recipient_name=recipient_name,
            recipient_email=recipient_email,
            issue_date=issue_date,
            expires_at=expires_at,
            metadata=dict(metadata or {}),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass(frozen=True, slots=True)
class CertificateCreate:
    """Fields a caller supplies when creating a certificate."""

    owner_id: str
    name: str
    type: CertificateType
    description: str | None = None
    recipient_name: str | None = None
    recipient_email: str | None = None
    issue_date: datetime | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# Fields an update may touch.  status, ids, owner and lifecycle
# timestamps are not in this set.
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "type",
        "recipient_name",
        "recipient_email",
        "issue_date",
        "expires_at",
        "metadata",
    }
)


@dataclass(frozen=True, slots=True)
class CertificateFilters:
    status: CertificateStatus | None = None
    owner_id: str | None = None
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True, slots=True)
class CertificatePage:
    items: list[Certificate]
    total: int


@dataclass(frozen=True, slots=True)
class CertificateStatistics:
    total: int
    issued: int
    draft: int
    revoked: int
    expired: int
