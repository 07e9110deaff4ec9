"""Application error taxonomy.

Services raise these for conditions the caller cannot recover from
locally; expected failures (wrong password, expired token, unknown
certificate) are returned as ``None``/``False`` instead.  The HTTP
adapter in ``app/main.py`` translates every ``AppError`` into a JSON
body with ``success``, ``message`` and ``code``.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class: carries a stable machine-readable code and an HTTP status."""

    code = "APPLICATION_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.errors = errors or []


class BadRequestError(AppError):
    code = "BAD_REQUEST"
    status_code = 400


class AuthenticationError(AppError):
    code = "TOKEN_INVALID"
    status_code = 401


class AuthorizationError(AppError):
    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(AppError):
    code = "DUPLICATE_ENTRY"
    status_code = 409


class RateLimitExceeded(AppError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, message: str, *, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class CryptoError(AppError):
    """A hashing or encryption primitive failed.  Always fatal to the operation."""

    code = "CRYPTO_ERROR"
    status_code = 500


class HashingError(CryptoError):
    pass


class DecryptionError(CryptoError):
    code = "DECRYPTION_FAILED"
