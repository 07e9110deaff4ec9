"""Public certificate verification.

Answers "is this certificate genuine and currently valid?" for anyone
holding a certificate ID.  The checks run in a fixed order and the
first failure wins, so a revoked certificate that has also expired is
reported as revoked.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from app.core.metrics import CERTIFICATE_VERIFICATIONS
from app.models.certificate import Certificate, CertificateStatus
from app.repos.certificate_repo import CertificateRepo

logger = logging.getLogger(__name__)

NOT_FOUND = "Certificate not found"
REVOKED = "Certificate has been revoked"
NOT_ISSUED = "Certificate has not been issued yet"
EXPIRED = "Certificate has expired"
FAILED = "Verification failed due to an error"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    is_valid: bool
    certificate: Certificate | None = None
    error: str | None = None


class VerificationService:
    def __init__(
        self,
        repo: CertificateRepo,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock or (lambda: datetime.now(UTC))

    def verify(self, certificate_id: str) -> VerificationResult:
        """Never raises; every outcome is a ``VerificationResult``."""
        try:
            cert = self._repo.get_by_certificate_id(certificate_id)
            result, outcome = self._evaluate(cert)
        except Exception:
            logger.exception("Certificate verification failed id=%s", certificate_id)
            result, outcome = VerificationResult(is_valid=False, error=FAILED), "error"

        CERTIFICATE_VERIFICATIONS.labels(result=outcome).inc()
        return result

    def _evaluate(self, cert: Certificate | None) -> tuple[VerificationResult, str]:
        if cert is None:
            return VerificationResult(is_valid=False, error=NOT_FOUND), "not_found"
        if cert.status == CertificateStatus.REVOKED:
            return (
                VerificationResult(is_valid=False, certificate=cert, error=REVOKED),
                "revoked",
            )
        if cert.status == CertificateStatus.DRAFT:
            return (
                VerificationResult(is_valid=False, certificate=cert, error=NOT_ISSUED),
                "not_issued",
            )
        if cert.is_expired(self._clock()):
            return (
                VerificationResult(is_valid=False, certificate=cert, error=EXPIRED),
                "expired",
            )
        return VerificationResult(is_valid=True, certificate=cert), "valid"
