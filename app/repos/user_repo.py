from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from app.models.user import User


class UserRepo(Protocol):
    def get_by_id(self, user_id: int) -> User | None: ...
    def get_by_email(self, email: str) -> User | None: ...
    def get_by_username(self, username: str) -> User | None: ...
    def add(self, user: User) -> User: ...
    def update(self, user: User) -> User: ...
    def next_id(self) -> int: ...
    def list_all(self) -> list[User]: ...
    def set_active(self, user_id: int, is_active: bool) -> None: ...
    def update_password_hash(self, user_id: int, password_hash: str) -> None: ...


class InMemoryUserRepo:
    def __init__(self) -> None:
        self._by_id: dict[int, User] = {}
        self._by_email: dict[str, int] = {}
        self._by_username: dict[str, int] = {}

    def get_by_id(self, user_id: int) -> User | None:
        return self._by_id.get(user_id)

    def get_by_email(self, email: str) -> User | None:
        user_id = self._by_email.get(email.strip().lower())
        return self._by_id.get(user_id) if user_id is not None else None

    def get_by_username(self, username: str) -> User | None:
        user_id = self._by_username.get(username.strip().lower())
        return self._by_id.get(user_id) if user_id is not None else None

    def next_id(self) -> int:
        return max(self._by_id, default=0) + 1

    def add(self, user: User) -> User:
        email = user.email.strip().lower()
        username = user.username.strip().lower()
        if email in self._by_email:
            raise ValueError("email already exists")
        if username in self._by_username:
            raise ValueError("username already exists")
        if user.id in self._by_id:
            raise ValueError("id already exists")
        self._by_id[user.id] = user
        self._by_email[email] = user.id
        self._by_username[username] = user.id
        return user

    def update(self, user: User) -> User:
        """Replace the stored record; the email index follows an email change."""
        current = self._by_id.get(user.id)
        if current is None:
            raise KeyError("user not found")
        if user.username != current.username:
            raise ValueError("username is immutable")
        old_email = current.email.strip().lower()
        new_email = user.email.strip().lower()
        if new_email != old_email:
            if new_email in self._by_email:
                raise ValueError("email already exists")
            del self._by_email[old_email]
            self._by_email[new_email] = user.id
        self._by_id[user.id] = user
        return user

    def list_all(self) -> list[User]:
        return sorted(self._by_id.values(), key=lambda u: u.id)

    def set_active(self, user_id: int, is_active: bool) -> None:
        u = self._by_id.get(user_id)
        if u is None:
            raise KeyError("user not found")
        self._by_id[user_id] = replace(u, is_active=is_active)

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        u = self._by_id.get(user_id)
        if u is None:
            raise KeyError("user not found")
        self._by_id[user_id] = replace(u, password_hash=password_hash)
