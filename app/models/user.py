from __future__ import annotations

from dataclasses import dataclass

from app.models.principal import Role, TokenClaims


@dataclass(frozen=True, slots=True)
class User:
    id: int
    username: str
    email: str
    password_hash: str
    role: Role = Role.USER
    first_name: str = ""
    last_name: str = ""
    factory_id: str | None = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    def to_claims(self) -> TokenClaims:
        # The username claim carries the email; clients sign in with it
        return TokenClaims(
            id=self.id,
            username=self.email,
            email=self.email,
            role=self.role,
            factory_id=self.factory_id,
        )
