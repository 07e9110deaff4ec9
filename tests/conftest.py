from __future__ import annotations

import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Must be set before app modules read settings (no dev admin seeding in tests)
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.api.auth import auth_service, user_repo  # noqa: E402
from app.api.certificates import certificate_repo  # noqa: E402
from app.api.ratelimit import _rate_limiter  # noqa: E402
from app.main import app  # noqa: E402
from app.models.principal import Role  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.token_revocation import token_registry  # noqa: E402
from app.services.token_service import token_service  # noqa: E402

TEST_PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True)
def reset_users() -> None:
    user_repo._by_id.clear()
    user_repo._by_email.clear()
    user_repo._by_username.clear()


@pytest.fixture(autouse=True)
def reset_certificates() -> None:
    certificate_repo._by_id.clear()
    certificate_repo._id_by_certificate_id.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit windows between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_windows"):
        _rate_limiter._windows.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_token_registry() -> None:
    """Clear revoked tokens between tests."""
    if hasattr(token_registry, "_expiry_by_token"):
        token_registry._expiry_by_token.clear()  # type: ignore[union-attr]
        token_registry._expiries.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Users and tokens
# ---------------------------------------------------------------------------


def create_test_user(
    username: str = "alice",
    role: Role = Role.USER,
    *,
    email: str | None = None,
    password: str = TEST_PASSWORD,
) -> User:
    """Create and persist a user through the real account flow."""
    return auth_service.create_user(
        username=username,
        email=email or f"{username}@example.com",
        password=password,
        role=role,
        first_name=username.title(),
        last_name="Tester",
    )


def mint_token(user: User) -> str:
    """Signed access token for *user*, as login would issue it."""
    return token_service.create_access_token(user.to_claims())


def bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user)}"}


@pytest.fixture
def alice() -> User:
    return create_test_user("alice")


@pytest.fixture
def bob() -> User:
    return create_test_user("bob")


@pytest.fixture
def admin() -> User:
    return create_test_user("root", Role.ADMIN)


@pytest.fixture
def super_admin() -> User:
    return create_test_user("chief", Role.SUPER_ADMIN)


@pytest.fixture
def manager() -> User:
    return create_test_user("mona", Role.MANAGER)
