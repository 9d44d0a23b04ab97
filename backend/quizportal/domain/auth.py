from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from quizportal.domain.errors import AuthorizationError
from quizportal.domain.models import UserRecord

ROLE_ADMIN = "admin"
ROLE_OPERATIONAL = "operational"
KNOWN_ROLES: tuple[str, ...] = (ROLE_ADMIN, ROLE_OPERATIONAL)


class ClaimsSource(Protocol):
    def get_user(self, uid: str) -> UserRecord | None:
        ...


@dataclass(frozen=True)
class Identity:
    """Claims snapshot of one authenticated caller.

    Pure function of ``claims``: a role is held only when its claim is
    exactly ``True``. Snapshots go stale when claims change, so anything
    with side effects should work from ``refresh_claims()``.
    """

    uid: str
    email: str | None = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return self.claims.get(role) is True

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return any(self.has_role(role) for role in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_role(ROLE_ADMIN)

    @property
    def is_operational(self) -> bool:
        return self.has_role(ROLE_OPERATIONAL)

    @property
    def can_access_portal(self) -> bool:
        return self.has_any_role(KNOWN_ROLES)

    @property
    def roles(self) -> dict[str, bool]:
        return {role: self.has_role(role) for role in KNOWN_ROLES}

    def refresh_claims(self, source: ClaimsSource) -> Identity:
        user = source.get_user(self.uid)
        if user is None:
            raise AuthorizationError("unknown identity", operation="refresh_claims", identifier=self.uid)
        return Identity(uid=user.uid, email=user.email, claims=dict(user.claims or {}))


def require_portal_access(identity: Identity, operation: str) -> None:
    if not identity.can_access_portal:
        raise AuthorizationError("portal access requires admin or operational role", operation=operation, identifier=identity.uid)


def require_reviewer(identity: Identity, operation: str) -> None:
    if not identity.is_admin:
        raise AuthorizationError("reviewer (admin) role required", operation=operation, identifier=identity.uid)
