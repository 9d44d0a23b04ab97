from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from quizportal.domain.models import UserRecord


class IdentityDirectoryPort(ABC):
    """Read/write view of the identity provider's users and custom claims."""

    @abstractmethod
    def get_user(self, uid: str) -> UserRecord | None:
        """Return the user with its current claims, or ``None``."""

    @abstractmethod
    def get_user_by_email(self, email: str) -> UserRecord | None:
        ...

    @abstractmethod
    def list_users(self) -> list[UserRecord]:
        ...

    @abstractmethod
    def set_custom_claims(self, uid: str, claims: dict[str, Any]) -> UserRecord:
        """Replace the user's claims wholesale."""

    @abstractmethod
    def upsert_user(self, *, uid: str, email: str | None, claims: dict[str, Any] | None = None) -> UserRecord:
        ...
