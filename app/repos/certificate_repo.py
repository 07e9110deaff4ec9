from __future__ import annotations

from typing import Protocol

from app.models.certificate import Certificate


class CertificateRepo(Protocol):
    def get(self, id: str) -> Certificate | None: ...
    def get_by_certificate_id(self, certificate_id: str) -> Certificate | None: ...
    def put(self, certificate: Certificate) -> None: ...
    def delete(self, id: str) -> bool: ...
    def list_all(self) -> list[Certificate]: ...


class InMemoryCertificateRepo:
    """Certificates keyed by internal id, with a secondary index on
    the public certificate_id used by verification."""

    def __init__(self) -> None:
        self._by_id: dict[str, Certificate] = {}
        self._id_by_certificate_id: dict[str, str] = {}

    def get(self, id: str) -> Certificate | None:
        return self._by_id.get(id)

    def get_by_certificate_id(self, certificate_id: str) -> Certificate | None:
        internal_id = self._id_by_certificate_id.get(certificate_id)
        if internal_id is None:
            return None
        return self._by_id.get(internal_id)

    def put(self, certificate: Certificate) -> None:
        existing = self._by_id.get(certificate.id)
        if (
            existing is not None
            and existing.certificate_id != certificate.certificate_id
        ):
            raise ValueError("certificate_id is immutable")
        self._by_id[certificate.id] = certificate
        self._id_by_certificate_id[certificate.certificate_id] = certificate.id

    def delete(self, id: str) -> bool:
        certificate = self._by_id.pop(id, None)
        if certificate is None:
            return False
        self._id_by_certificate_id.pop(certificate.certificate_id, None)
        return True

    def list_all(self) -> list[Certificate]:
        return list(self._by_id.values())
