from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from quizportal.domain.errors import NotFoundError, TransactionError
from quizportal.domain.models import UserRecord
from quizportal.infra.db.models import PortalUserRow
from quizportal.infra.db.session import get_session_factory
from quizportal.infra.ports.identity import IdentityDirectoryPort


class DatabaseIdentityDirectory(IdentityDirectoryPort):
    """Users and custom claims kept in the portal database."""

    def __init__(self):
        self._session_factory = get_session_factory()

    @staticmethod
    def _to_record(row: PortalUserRow) -> UserRecord:
        return UserRecord(uid=row.uid, email=row.email, claims=dict(row.claims_json or {}))

    def get_user(self, uid: str) -> UserRecord | None:
        with self._session_factory() as db:
            row = db.execute(select(PortalUserRow).where(PortalUserRow.uid == uid)).scalar_one_or_none()
            return self._to_record(row) if row is not None else None

    def get_user_by_email(self, email: str) -> UserRecord | None:
        normalized = email.strip().lower()
        with self._session_factory() as db:
            row = db.execute(
                select(PortalUserRow).where(func.lower(PortalUserRow.email) == normalized)
            ).scalar_one_or_none()
            return self._to_record(row) if row is not None else None

    def list_users(self) -> list[UserRecord]:
        with self._session_factory() as db:
            rows = db.execute(select(PortalUserRow).order_by(PortalUserRow.id.asc())).scalars().all()
            return [self._to_record(row) for row in rows]

    def set_custom_claims(self, uid: str, claims: dict[str, Any]) -> UserRecord:
        try:
            with self._session_factory() as db, db.begin():
                row = db.execute(select(PortalUserRow).where(PortalUserRow.uid == uid)).scalar_one_or_none()
                if row is None:
                    raise NotFoundError("user not found", operation="set_custom_claims", identifier=uid)
                row.claims_json = dict(claims)
                record = self._to_record(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="set_custom_claims", identifier=uid) from exc
        return record

    def upsert_user(self, *, uid: str, email: str | None, claims: dict[str, Any] | None = None) -> UserRecord:
        try:
            with self._session_factory() as db, db.begin():
                row = db.execute(select(PortalUserRow).where(PortalUserRow.uid == uid)).scalar_one_or_none()
                if row is None:
                    row = PortalUserRow(uid=uid, email=email, claims_json=dict(claims or {}))
                    db.add(row)
                else:
                    row.email = email
                    if claims is not None:
                        row.claims_json = dict(claims)
                record = self._to_record(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="upsert_user", identifier=uid) from exc
        return record
