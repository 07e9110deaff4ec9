"""Password hashing, random secrets, transit encryption and input hygiene.

Passwords use Argon2id (argon2-cffi).  The encoded hash string carries
its own salt and parameters, so ``compare_password`` needs nothing but
the stored string, and ``needs_rehash`` can tell when the parameters
have been raised since the hash was written.

``encrypt``/``decrypt`` are for short-lived values in transit (for
example an opaque value round-tripped through a client).  They are not
a password store and not an at-rest encryption scheme.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import string
from dataclasses import dataclass, field

from argon2 import PasswordHasher
from argon2.exceptions import (
    HashingError as Argon2HashingError,
)
from argon2.exceptions import (
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.errors import DecryptionError, HashingError

logger = logging.getLogger(__name__)

_ph = PasswordHasher()

_DIGITS = string.digits
_ALPHANUMERIC = string.ascii_uppercase + string.ascii_lowercase + string.digits

_NONCE_BYTES = 12
_ENVELOPE_SEPARATOR = ":"

_SPECIAL_CHARS_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(plain_password: str) -> str:
    try:
        return _ph.hash(plain_password)
    except Argon2HashingError as e:
        logger.error("Password hashing primitive failed: %s", e)
        raise HashingError("Failed to hash password") from e


def compare_password(plain_password: str, password_hash: str) -> bool:
    """True iff *plain_password* matches *password_hash*.

    A mismatch is an ordinary ``False``.  A hash that is not a valid
    Argon2 encoding raises ``HashingError``: that is corrupt data, not a
    wrong password.
    """
    try:
        return _ph.verify(password_hash, plain_password)
    except VerifyMismatchError:
        return False
    except VerificationError:
        return False
    except InvalidHashError as e:
        logger.error("Stored password hash is malformed")
        raise HashingError("Malformed password hash") from e


def needs_rehash(password_hash: str) -> bool:
    try:
        return _ph.check_needs_rehash(password_hash)
    except InvalidHashError as e:
        raise HashingError("Malformed password hash") from e


@dataclass(frozen=True, slots=True)
class PasswordStrength:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    score: int = 0


def validate_password_strength(password: str) -> PasswordStrength:
    """Five independent checks, one point each; valid only with all five."""
    checks = (
        (len(password) >= 8, "Password must be at least 8 characters long"),
        (
            re.search(r"[A-Z]", password) is not None,
            "Password must contain at least one uppercase letter",
        ),
        (
            re.search(r"[a-z]", password) is not None,
            "Password must contain at least one lowercase letter",
        ),
        (
            re.search(r"\d", password) is not None,
            "Password must contain at least one number",
        ),
        (
            _SPECIAL_CHARS_RE.search(password) is not None,
            "Password must contain at least one special character",
        ),
    )
    errors = [message for passed, message in checks if not passed]
    return PasswordStrength(
        is_valid=not errors,
        errors=errors,
        score=len(checks) - len(errors),
    )


# ---------------------------------------------------------------------------
# Random values
# ---------------------------------------------------------------------------


def generate_secure_token(byte_length: int = 32) -> str:
    if byte_length < 1:
        raise ValueError("byte_length must be positive")
    return secrets.token_hex(byte_length)


def generate_session_id() -> str:
    return generate_secure_token(64)


def _sample(alphabet: str, length: int) -> str:
    if length < 1:
        raise ValueError("length must be positive")
    # secrets.choice draws uniformly from the alphabet (no modulo bias)
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_numeric_otp(length: int = 6) -> str:
    return _sample(_DIGITS, length)


def generate_alphanumeric_otp(length: int = 8) -> str:
    return _sample(_ALPHANUMERIC, length)


# ---------------------------------------------------------------------------
# Transit encryption (AES-256-GCM)
# ---------------------------------------------------------------------------


def _derive_key(key: str) -> bytes:
    return hashlib.sha256(key.encode("utf-8")).digest()


def encrypt(data: str, key: str) -> str:
    """Encrypt *data* under *key*.  Returns ``hex(iv):hex(ciphertext+tag)``."""
    iv = secrets.token_bytes(_NONCE_BYTES)
    ciphertext = AESGCM(_derive_key(key)).encrypt(iv, data.encode("utf-8"), None)
    return f"{iv.hex()}{_ENVELOPE_SEPARATOR}{ciphertext.hex()}"


def decrypt(payload: str, key: str) -> str:
    """Reverse ``encrypt``.  Any malformed, tampered or wrong-key input
    raises ``DecryptionError``."""
    parts = payload.split(_ENVELOPE_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise DecryptionError("Invalid encrypted data format")

    try:
        iv = bytes.fromhex(parts[0])
        ciphertext = bytes.fromhex(parts[1])
    except ValueError:
        raise DecryptionError("Invalid encrypted data format") from None

    if len(iv) != _NONCE_BYTES:
        raise DecryptionError("Invalid encrypted data format")

    try:
        plaintext = AESGCM(_derive_key(key)).decrypt(iv, ciphertext, None)
    except InvalidTag:
        logger.warning("Decryption rejected: authentication tag mismatch")
        raise DecryptionError("Failed to decrypt data") from None

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionError("Failed to decrypt data") from None


# ---------------------------------------------------------------------------
# Hashing helpers and input hygiene
# ---------------------------------------------------------------------------


def create_hash(data: str, algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, data.encode("utf-8")).hexdigest()


def create_hmac(data: str, key: str, algorithm: str = "sha256") -> str:
    return hmac.new(key.encode("utf-8"), data.encode("utf-8"), algorithm).hexdigest()


def create_request_fingerprint(ip: str, user_agent: str | None = None) -> str:
    """Stable, non-reversible identifier for a client (ip + user agent)."""
    return create_hash(f"{ip}:{user_agent or ''}")


def sanitize_input(text: str | None) -> str:
    if not text:
        return ""
    text = re.sub(r"[<>]", "", text)
    text = re.sub(r"javascript:", "", text, flags=re.IGNORECASE)
    text = re.sub(r"on\w+\s*=", "", text, flags=re.IGNORECASE)
    return text.strip()


def is_valid_email(email: str) -> bool:
    return _EMAIL_RE.match(email) is not None


def mask_email(email: str) -> str:
    """``john.doe@example.com`` -> ``jo******@example.com`` for log lines."""
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    if not local:
        return email
    return f"{local[:2]}{'*' * (len(local) - 2)}@{domain}"
