"""Certificate lifecycle: create, update, issue, revoke, delete, list.

State lives in an injected ``CertificateRepo``.  Every read-modify-write
runs under one re-entrant lock, so concurrent requests never see a
half-applied transition.  The only I/O (the "certificate issued"
notification) happens after the lock is released, and its failure
never undoes the issue.

Status moves draft -> issued -> revoked, with revoke also allowed
straight from draft and issue allowed again on an issued certificate
(which refreshes ``issued_at``).  Expiry is not a status: it is read
off ``expires_at`` whenever it matters.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from app.core.errors import ValidationError
from app.core.metrics import CERTIFICATE_TRANSITIONS
from app.models.certificate import (
    UPDATABLE_FIELDS,
    Certificate,
    CertificateCreate,
    CertificateFilters,
    CertificatePage,
    CertificateStatistics,
    CertificateStatus,
)
from app.repos.certificate_repo import CertificateRepo
from app.services.email_service import EmailNotifier

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_certificate_id(now: datetime) -> str:
    """``CERT-<base36 epoch millis>-<6 random base36 chars>``, upper-case.

    Not checked for collisions: the random suffix alone gives 36**6
    (about 2.2 billion) values per millisecond.
    """
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"CERT-{_to_base36(millis)}-{suffix}"


def _matches(cert: Certificate, filters: CertificateFilters) -> bool:
    if filters.status is not None and cert.status != filters.status:
        return False
    if filters.owner_id is not None and cert.owner_id != filters.owner_id:
        return False
    if filters.search:
        term = filters.search.lower()
        haystacks = (
            cert.name,
            cert.description,
            cert.recipient_name,
            cert.certificate_id,
        )
        if not any(h and term in h.lower() for h in haystacks):
            return False
    if filters.date_from is not None and cert.created_at < filters.date_from:
        return False
    if filters.date_to is not None and cert.created_at > filters.date_to:
        return False
    return True


class CertificateService:
    def __init__(
        self,
        repo: CertificateRepo,
        notifier: EmailNotifier,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.RLock()

    # -- reads -------------------------------------------------------------

    def get(self, id: str) -> Certificate | None:
        return self._repo.get(id)

    def get_by_certificate_id(self, certificate_id: str) -> Certificate | None:
        return self._repo.get_by_certificate_id(certificate_id)

    def list(self, filters: CertificateFilters | None = None) -> CertificatePage:
        filters = filters or CertificateFilters()
        with self._lock:
            snapshot = self._repo.list_all()

        matched = [c for c in snapshot if _matches(c, filters)]
        matched.sort(key=lambda c: c.created_at, reverse=True)
        total = len(matched)

        if filters.offset is not None:
            matched = matched[filters.offset :]
        if filters.limit is not None:
            matched = matched[: filters.limit]
        return CertificatePage(items=matched, total=total)

    def statistics(self, owner_id: str | None = None) -> CertificateStatistics:
        now = self._clock()
        with self._lock:
            certs = [
                c
                for c in self._repo.list_all()
                if owner_id is None or c.owner_id == owner_id
            ]
        return CertificateStatistics(
            total=len(certs),
            issued=sum(1 for c in certs if c.status == CertificateStatus.ISSUED),
            draft=sum(1 for c in certs if c.status == CertificateStatus.DRAFT),
            revoked=sum(1 for c in certs if c.status == CertificateStatus.REVOKED),
            # Counted regardless of status, so an expired revoked certificate
            # appears in both revoked and expired.
            expired=sum(1 for c in certs if c.is_expired(now)),
        )

    # -- mutations ---------------------------------------------------------

    def create(self, data: CertificateCreate) -> Certificate:
        with self._lock:
            now = self._clock()
            cert = Certificate.new(
                certificate_id=generate_certificate_id(now),
                owner_id=data.owner_id,
                name=data.name,
                type=data.type,
                now=now,
                description=data.description,
                recipient_name=data.recipient_name,
                recipient_email=data.recipient_email,
                issue_date=data.issue_date,
                expires_at=data.expires_at,
                metadata=data.metadata,
            )
            self._repo.put(cert)
        CERTIFICATE_TRANSITIONS.labels(action="create").inc()
        logger.info(
            "Certificate created id=%s certificate_id=%s owner=%s",
            cert.id,
            cert.certificate_id,
            cert.owner_id,
        )
        return cert

    def update(self, id: str, changes: Mapping[str, Any]) -> Certificate | None:
        """Merge the explicitly provided *changes* into certificate *id*.

        Only ``UPDATABLE_FIELDS`` may appear; status goes through
        ``issue``/``revoke``.
        """
        rejected = sorted(set(changes) - UPDATABLE_FIELDS)
        if rejected:
            raise ValidationError(
                "Fields cannot be updated: " + ", ".join(rejected),
                errors=[f"{name} is not updatable" for name in rejected],
            )

        with self._lock:
            cert = self._repo.get(id)
            if cert is None:
                return None
            updated = replace(cert, **changes, updated_at=self._clock())
            self._repo.put(updated)
        CERTIFICATE_TRANSITIONS.labels(action="update").inc()
        logger.info("Certificate updated id=%s fields=%s", id, sorted(changes))
        return updated

    async def issue(self, id: str) -> Certificate | None:
        with self._lock:
            cert = self._repo.get(id)
            if cert is None:
                return None
            now = self._clock()
            issued = replace(
                cert, status=CertificateStatus.ISSUED, issued_at=now, updated_at=now
            )
            self._repo.put(issued)
        CERTIFICATE_TRANSITIONS.labels(action="issue").inc()
        logger.info(
            "Certificate issued id=%s certificate_id=%s", id, issued.certificate_id
        )

        if issued.recipient_email:
            await self._notify_issued(issued)
        return issued

    async def _notify_issued(self, cert: Certificate) -> None:
        try:
            sent = await self._notifier.send_certificate_issued_email(
                cert.recipient_email, cert.certificate_id, cert.name
            )
        except Exception:
            logger.exception(
                "Issued-certificate notification failed certificate_id=%s",
                cert.certificate_id,
            )
            return
        if not sent:
            logger.warning(
                "Issued-certificate notification not delivered certificate_id=%s",
                cert.certificate_id,
            )

    def revoke(self, id: str, reason: str | None = None) -> Certificate | None:
        with self._lock:
            cert = self._repo.get(id)
            if cert is None:
                return None
            now = self._clock()
            revoked = replace(
                cert,
                status=CertificateStatus.REVOKED,
                revoked_at=now,
                revocation_reason=reason,
                updated_at=now,
            )
            self._repo.put(revoked)
        CERTIFICATE_TRANSITIONS.labels(action="revoke").inc()
        logger.info(
            "Certificate revoked id=%s certificate_id=%s", id, revoked.certificate_id
        )
        return revoked

    def delete(self, id: str) -> bool:
        with self._lock:
            deleted = self._repo.delete(id)
        if deleted:
            CERTIFICATE_TRANSITIONS.labels(action="delete").inc()
            logger.info("Certificate deleted id=%s", id)
        return deleted
