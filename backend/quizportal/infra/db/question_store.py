from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quizportal.domain.errors import NotFoundError, TransactionError, ValidationError
from quizportal.domain.lifecycle import as_aware
from quizportal.domain.models import (
    PublishGroupResult,
    QuestionFields,
    QuestionRecord,
    StagingItemRecord,
    utcnow,
)
from quizportal.domain.validation import merge_question_patch
from quizportal.infra.db.models import QuizQuestionRow
from quizportal.infra.db.session import get_session_factory
from quizportal.infra.events import TOPIC_QUESTIONS, SnapshotHub, Subscription
from quizportal.utils.ids import new_public_id

logger = logging.getLogger(__name__)


def order_questions(records: Iterable[QuestionRecord]) -> list[QuestionRecord]:
    """Newest ``created_at`` first; undated records last in storage order."""
    items = list(records)
    dated = [item for item in items if item.created_at is not None]
    undated = [item for item in items if item.created_at is None]
    dated.sort(key=lambda item: as_aware(item.created_at), reverse=True)
    return dated + undated


def _apply_fields(row: QuizQuestionRow, fields: QuestionFields, *, replace_image: bool) -> None:
    row.question_text = fields.question_text
    row.options_json = list(fields.options)
    row.correct_index = fields.correct_index
    row.level = fields.level
    row.usertype_json = list(fields.usertype)
    row.explanation = fields.explanation
    image_url = (fields.image_url or "").strip() or None
    if replace_image or image_url:
        row.image_url = image_url


class QuestionStore:
    """Live, published question set (``quizQuestions``)."""

    def __init__(self, *, hub: SnapshotHub | None = None, clock: Callable[[], datetime] = utcnow):
        self._session_factory = get_session_factory()
        self._hub = hub
        self._clock = clock

    @staticmethod
    def _to_record(row: QuizQuestionRow) -> QuestionRecord:
        return QuestionRecord(
            question_id=row.public_id,
            question_text=row.question_text,
            options=list(row.options_json or []),
            correct_index=row.correct_index,
            level=row.level,
            usertype=list(row.usertype_json or []),
            explanation=row.explanation or "",
            image_url=row.image_url,
            created_at=as_aware(row.created_at),
            updated_at=as_aware(row.updated_at),
            published_batch_id=row.published_batch_id,
            published_at=as_aware(row.published_at),
        )

    @staticmethod
    def _find(db: Session, question_id: str) -> QuizQuestionRow | None:
        return db.execute(select(QuizQuestionRow).where(QuizQuestionRow.public_id == question_id)).scalar_one_or_none()

    def _notify(self) -> None:
        if self._hub is not None:
            self._hub.publish(TOPIC_QUESTIONS)

    def get(self, question_id: str) -> QuestionRecord | None:
        with self._session_factory() as db:
            row = self._find(db, question_id)
            return self._to_record(row) if row is not None else None

    def list(self) -> list[QuestionRecord]:
        with self._session_factory() as db:
            rows = db.execute(select(QuizQuestionRow).order_by(QuizQuestionRow.id.asc())).scalars().all()
            return order_questions(self._to_record(row) for row in rows)

    def subscribe(self, callback: Callable[[list[QuestionRecord]], None] | None = None) -> Subscription:
        if self._hub is None:
            raise RuntimeError("QuestionStore was created without a SnapshotHub")
        return self._hub.subscribe(TOPIC_QUESTIONS, self.list, callback)

    def create(self, fields: QuestionFields, *, question_id: str | None = None) -> str:
        now = self._clock()
        question_id = question_id or new_public_id("q_")
        try:
            with self._session_factory() as db, db.begin():
                row = QuizQuestionRow(public_id=question_id, created_at=now, updated_at=now)
                _apply_fields(row, fields, replace_image=True)
                db.add(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="create_question") from exc
        logger.info("Created question %s", question_id)
        self._notify()
        return question_id

    def update(self, question_id: str, patch: Mapping[str, Any]) -> QuestionRecord:
        """Field-level merge. ``imageUrl`` in the patch replaces (or clears) the stored value."""
        try:
            with self._session_factory() as db, db.begin():
                row = self._find(db, question_id)
                if row is None:
                    raise NotFoundError("question not found", operation="update_question", identifier=question_id)
                merged = merge_question_patch(self._to_record(row).to_fields(), patch)
                _apply_fields(row, merged, replace_image="imageUrl" in patch)
                row.updated_at = self._clock()
                record = self._to_record(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="update_question", identifier=question_id) from exc
        self._notify()
        return record

    def delete(self, question_id: str) -> bool:
        try:
            with self._session_factory() as db, db.begin():
                row = self._find(db, question_id)
                if row is None:
                    return False
                db.delete(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="delete_question", identifier=question_id) from exc
        logger.info("Deleted question %s", question_id)
        self._notify()
        return True

    def publish_group(self, *, batch_id: str, items: Sequence[StagingItemRecord]) -> PublishGroupResult:
        """Apply one group of staging items in a single transaction."""
        now = self._clock()
        created: list[str] = []
        updated: list[str] = []
        deleted: list[str] = []
        missing: list[str] = []
        try:
            with self._session_factory() as db, db.begin():
                for item in items:
                    if item.action == "delete":
                        row = self._find(db, item.target_id or "")
                        if row is None:
                            missing.append(item.target_id or "")
                            continue
                        db.delete(row)
                        deleted.append(row.public_id)
                        continue

                    if item.fields is None:
                        raise ValidationError(
                            f"{item.action} items require question fields",
                            operation="publish_group",
                            identifier=item.item_id,
                        )
                    if item.action == "update":
                        row = self._find(db, item.target_id or "")
                        if row is None:
                            raise NotFoundError(
                                "update target no longer exists",
                                operation="publish_update",
                                identifier=item.target_id,
                            )
                        updated.append(row.public_id)
                    else:
                        row = QuizQuestionRow(
                            public_id=new_public_id("q_"),
                            created_at=item.created_at or now,
                        )
                        db.add(row)
                        created.append(row.public_id)

                    _apply_fields(row, item.fields, replace_image=False)
                    row.updated_at = now
                    row.published_batch_id = batch_id
                    row.published_at = now
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="publish_group", identifier=batch_id) from exc

        self._notify()
        return PublishGroupResult(
            created=tuple(created),
            updated=tuple(updated),
            deleted=tuple(deleted),
            missing_deletes=tuple(missing),
        )
