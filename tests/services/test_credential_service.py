from __future__ import annotations

import re

import pytest
from argon2 import PasswordHasher

from app.core.errors import DecryptionError, HashingError
from app.services import credential_service

# ---- passwords ----


def test_hash_and_compare_password() -> None:
    hashed = credential_service.hash_password("Correct-h0rse")
    assert hashed != "Correct-h0rse"
    assert hashed.startswith("$argon2id$")
    assert credential_service.compare_password("Correct-h0rse", hashed) is True
    assert credential_service.compare_password("wrong", hashed) is False


def test_hash_password_is_salted() -> None:
    assert credential_service.hash_password("same") != credential_service.hash_password(
        "same"
    )


def test_compare_password_malformed_hash_raises() -> None:
    with pytest.raises(HashingError):
        credential_service.compare_password("anything", "not-a-hash")


def test_needs_rehash_for_weaker_parameters() -> None:
    weak = PasswordHasher(time_cost=1, memory_cost=8 * 1024, parallelism=1)
    assert credential_service.needs_rehash(weak.hash("pw")) is True
    fresh = credential_service.hash_password("pw")
    assert credential_service.needs_rehash(fresh) is False


def test_password_strength_all_rules_pass() -> None:
    result = credential_service.validate_password_strength("Str0ng!pass")
    assert result.is_valid is True
    assert result.errors == []
    assert result.score == 5


def test_password_strength_reports_every_failure() -> None:
    result = credential_service.validate_password_strength("abc")
    assert result.is_valid is False
    assert result.score == 1  # only the lowercase rule passes
    assert result.errors == [
        "Password must be at least 8 characters long",
        "Password must contain at least one uppercase letter",
        "Password must contain at least one number",
        "Password must contain at least one special character",
    ]


def test_password_strength_special_character_rule() -> None:
    assert not credential_service.validate_password_strength("Abcdefg1").is_valid
    assert credential_service.validate_password_strength("Abcdefg1?").is_valid


# ---- random values ----


def test_generate_secure_token_length_and_uniqueness() -> None:
    tokens = {credential_service.generate_secure_token() for _ in range(100)}
    assert len(tokens) == 100
    assert all(re.fullmatch(r"[0-9a-f]{64}", t) for t in tokens)
    assert len(credential_service.generate_secure_token(16)) == 32


def test_generate_session_id_is_128_hex_chars() -> None:
    assert re.fullmatch(r"[0-9a-f]{128}", credential_service.generate_session_id())


def test_generate_numeric_otp() -> None:
    for _ in range(50):
        otp = credential_service.generate_numeric_otp()
        assert re.fullmatch(r"\d{6}", otp)
    assert len(credential_service.generate_numeric_otp(4)) == 4


def test_generate_alphanumeric_otp() -> None:
    otp = credential_service.generate_alphanumeric_otp(12)
    assert re.fullmatch(r"[A-Za-z0-9]{12}", otp)


def test_otp_rejects_non_positive_length() -> None:
    with pytest.raises(ValueError):
        credential_service.generate_numeric_otp(0)


# ---- transit encryption ----


def test_encrypt_decrypt() -> None:
    payload = credential_service.encrypt("certificate-42", "k3y")
    iv_hex, ct_hex = payload.split(":")
    assert len(bytes.fromhex(iv_hex)) == 12
    assert ct_hex
    assert credential_service.decrypt(payload, "k3y") == "certificate-42"


def test_encrypt_uses_fresh_iv() -> None:
    assert credential_service.encrypt("x", "k") != credential_service.encrypt("x", "k")


def test_decrypt_wrong_key_fails() -> None:
    payload = credential_service.encrypt("secret", "right")
    with pytest.raises(DecryptionError):
        credential_service.decrypt(payload, "wrong")


def test_decrypt_tampered_ciphertext_fails() -> None:
    iv_hex, ct_hex = credential_service.encrypt("secret", "k").split(":")
    flipped = format(int(ct_hex[0], 16) ^ 1, "x") + ct_hex[1:]
    with pytest.raises(DecryptionError):
        credential_service.decrypt(f"{iv_hex}:{flipped}", "k")


@pytest.mark.parametrize(
    "payload", ["", "no-separator", "a:b:c", ":abcd", "zz:abcd", "abcd:abcd"]
)
def test_decrypt_malformed_envelope_fails(payload: str) -> None:
    with pytest.raises(DecryptionError):
        credential_service.decrypt(payload, "k")


# ---- hashing helpers and hygiene ----


def test_create_hash_and_hmac_are_deterministic() -> None:
    assert credential_service.create_hash("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
    assert credential_service.create_hmac("abc", "k") == credential_service.create_hmac(
        "abc", "k"
    )
    assert credential_service.create_hmac("abc", "k") != credential_service.create_hmac(
        "abc", "other"
    )


def test_request_fingerprint_depends_on_user_agent() -> None:
    a = credential_service.create_request_fingerprint("10.0.0.1", "curl/8")
    b = credential_service.create_request_fingerprint("10.0.0.1", "firefox")
    assert a != b
    assert a == credential_service.create_request_fingerprint("10.0.0.1", "curl/8")


def test_sanitize_input() -> None:
    assert credential_service.sanitize_input("<b>hi</b>") == "bhi/b"
    assert credential_service.sanitize_input(" JavaScript:alert(1) ") == "alert(1)"
    assert credential_service.sanitize_input('x onclick="y"') == 'x "y"'
    assert credential_service.sanitize_input(None) == ""


@pytest.mark.parametrize(
    ("email", "valid"),
    [
        ("user@example.com", True),
        ("first.last+tag@sub.example.org", True),
        ("no-at-sign", False),
        ("two@@example.com", False),
        ("user@nodot", False),
        ("spa ce@example.com", False),
    ],
)
def test_is_valid_email(email: str, valid: bool) -> None:
    assert credential_service.is_valid_email(email) is valid


def test_mask_email() -> None:
    assert credential_service.mask_email("john.doe@example.com") == (
        "jo******@example.com"
    )
    assert credential_service.mask_email("not-an-email") == "not-an-email"
