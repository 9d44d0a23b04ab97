from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quizportal.domain.errors import InvalidTransitionError, NotFoundError, TransactionError
from quizportal.domain.lifecycle import EDITABLE_STATUSES, as_aware, can_transition
from quizportal.domain.models import (
    BatchStatus,
    BatchTotals,
    QuestionFields,
    StagedChange,
    StagingBatchRecord,
    StagingItemRecord,
    utcnow,
)
from quizportal.infra.db.models import StagingBatchRow, StagingItemRow
from quizportal.infra.db.session import get_session_factory
from quizportal.infra.events import TOPIC_STAGING, SnapshotHub, Subscription
from quizportal.utils.ids import new_public_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchFilter:
    created_by_uid: str | None = None
    status: BatchStatus | None = None


def sort_batches(batches: Sequence[StagingBatchRecord]) -> list[StagingBatchRecord]:
    """``created_at`` descending; ties and undated batches keep their order."""
    dated = [item for item in batches if item.created_at is not None]
    undated = [item for item in batches if item.created_at is None]
    dated.sort(key=lambda item: as_aware(item.created_at), reverse=True)
    return dated + undated


def _item_fields(row: StagingItemRow) -> QuestionFields | None:
    if row.action == "delete" or row.question_text is None:
        return None
    return QuestionFields(
        question_text=row.question_text,
        options=tuple(row.options_json or ()),
        correct_index=row.correct_index if row.correct_index is not None else 0,
        level=row.level if row.level is not None else 0,
        usertype=tuple(row.usertype_json or ()),
        explanation=row.explanation or "",
        image_url=row.image_url,
    )


def _write_item_fields(row: StagingItemRow, fields: QuestionFields | None) -> None:
    if fields is None:
        row.question_text = None
        row.options_json = None
        row.correct_index = None
        row.level = None
        row.usertype_json = None
        row.explanation = None
        row.image_url = None
        return
    row.question_text = fields.question_text
    row.options_json = list(fields.options)
    row.correct_index = fields.correct_index
    row.level = fields.level
    row.usertype_json = list(fields.usertype)
    row.explanation = fields.explanation
    row.image_url = fields.image_url


class StagingStore:
    """Proposed-change batches (``stagingBatches``) and their items."""

    def __init__(self, *, hub: SnapshotHub | None = None, clock: Callable[[], datetime] = utcnow):
        self._session_factory = get_session_factory()
        self._hub = hub
        self._clock = clock

    @staticmethod
    def _to_batch_record(row: StagingBatchRow) -> StagingBatchRecord:
        return StagingBatchRecord(
            batch_id=row.public_id,
            status=row.status,  # type: ignore[arg-type]
            created_at=as_aware(row.created_at),
            updated_at=as_aware(row.updated_at),
            created_by_uid=row.created_by_uid,
            created_by_email=row.created_by_email,
            totals=BatchTotals(success=row.totals_success, error=row.totals_error, total=row.totals_total),
            notes=row.notes,
            approved_at=as_aware(row.approved_at),
            approved_by_uid=row.approved_by_uid,
            approved_by_email=row.approved_by_email,
            rejected_at=as_aware(row.rejected_at),
            rejected_by_uid=row.rejected_by_uid,
            rejected_by_email=row.rejected_by_email,
        )

    @staticmethod
    def _to_item_record(row: StagingItemRow, batch_public_id: str) -> StagingItemRecord:
        return StagingItemRecord(
            item_id=row.public_id,
            batch_id=batch_public_id,
            action=row.action,  # type: ignore[arg-type]
            target_id=row.target_id,
            fields=_item_fields(row),
            published=bool(row.published),
            created_at=as_aware(row.created_at),
            updated_at=as_aware(row.updated_at),
        )

    @staticmethod
    def _find_batch(db: Session, batch_id: str) -> StagingBatchRow | None:
        return db.execute(select(StagingBatchRow).where(StagingBatchRow.public_id == batch_id)).scalar_one_or_none()

    def _notify(self) -> None:
        if self._hub is not None:
            self._hub.publish(TOPIC_STAGING)

    def create_batch(
        self,
        *,
        created_by_uid: str | None,
        created_by_email: str | None,
        changes: Sequence[StagedChange],
        notes: str | None = None,
    ) -> str:
        """Write the batch and all of its items in one transaction.

        ``totals`` is derived from ``changes`` here, so it always matches the
        stored item count.
        """
        now = self._clock()
        batch_id = new_public_id("batch_")
        try:
            with self._session_factory() as db, db.begin():
                batch_row = StagingBatchRow(
                    public_id=batch_id,
                    status="pending",
                    created_at=now,
                    updated_at=now,
                    created_by_uid=created_by_uid,
                    created_by_email=created_by_email,
                    totals_success=len(changes),
                    totals_error=0,
                    totals_total=len(changes),
                    notes=notes,
                )
                db.add(batch_row)
                db.flush()
                for change in changes:
                    self._add_item_row(db, batch_row, change, now)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="create_batch") from exc

        logger.info("Created staging batch %s with %d item(s)", batch_id, len(changes))
        self._notify()
        return batch_id

    @staticmethod
    def _add_item_row(db: Session, batch_row: StagingBatchRow, change: StagedChange, now: datetime) -> StagingItemRow:
        item_row = StagingItemRow(
            public_id=new_public_id("item_"),
            batch_id=batch_row.id,
            action=change.action,
            target_id=change.target_id,
            published=False,
            created_at=now,
            updated_at=now,
        )
        _write_item_fields(item_row, change.fields)
        db.add(item_row)
        return item_row

    def add_item(self, batch_id: str, change: StagedChange) -> str:
        now = self._clock()
        try:
            with self._session_factory() as db, db.begin():
                batch_row = self._find_batch(db, batch_id)
                if batch_row is None:
                    raise NotFoundError("batch not found", operation="add_item", identifier=batch_id)
                if batch_row.status not in EDITABLE_STATUSES:
                    raise InvalidTransitionError(
                        f"items cannot be added to an {batch_row.status} batch",
                        operation="add_item",
                        identifier=batch_id,
                    )
                item_row = self._add_item_row(db, batch_row, change, now)
                batch_row.totals_total += 1
                batch_row.totals_success += 1
                batch_row.updated_at = now
                item_id = item_row.public_id
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="add_item", identifier=batch_id) from exc
        self._notify()
        return item_id

    def get_batch(self, batch_id: str) -> StagingBatchRecord | None:
        with self._session_factory() as db:
            row = self._find_batch(db, batch_id)
            return self._to_batch_record(row) if row is not None else None

    def list_items(self, batch_id: str) -> list[StagingItemRecord]:
        with self._session_factory() as db:
            batch_row = self._find_batch(db, batch_id)
            if batch_row is None:
                return []
            rows = (
                db.execute(
                    select(StagingItemRow)
                    .where(StagingItemRow.batch_id == batch_row.id)
                    .order_by(StagingItemRow.id.asc())
                )
                .scalars()
                .all()
            )
            return [self._to_item_record(row, batch_row.public_id) for row in rows]

    def get_item(self, batch_id: str, item_id: str) -> StagingItemRecord | None:
        for item in self.list_items(batch_id):
            if item.item_id == item_id:
                return item
        return None

    def list_batches(self, batch_filter: BatchFilter | None = None) -> list[StagingBatchRecord]:
        # Single-column filter only; ordering happens here rather than in SQL.
        batch_filter = batch_filter or BatchFilter()
        with self._session_factory() as db:
            stmt = select(StagingBatchRow)
            if batch_filter.created_by_uid is not None:
                stmt = stmt.where(StagingBatchRow.created_by_uid == batch_filter.created_by_uid)
            rows = db.execute(stmt.order_by(StagingBatchRow.id.asc())).scalars().all()
            records = [self._to_batch_record(row) for row in rows]
        if batch_filter.status is not None:
            records = [item for item in records if item.status == batch_filter.status]
        return sort_batches(records)

    def list_batches_by_author(self, author_uid: str) -> list[StagingBatchRecord]:
        return self.list_batches(BatchFilter(created_by_uid=author_uid))

    def list_all_batches(self) -> list[StagingBatchRecord]:
        return self.list_batches()

    def subscribe(
        self,
        batch_filter: BatchFilter | None = None,
        callback: Callable[[list[StagingBatchRecord]], None] | None = None,
    ) -> Subscription:
        if self._hub is None:
            raise RuntimeError("StagingStore was created without a SnapshotHub")
        return self._hub.subscribe(TOPIC_STAGING, lambda: self.list_batches(batch_filter), callback)

    def update_item(self, batch_id: str, item_id: str, change: StagedChange) -> StagingItemRecord:
        now = self._clock()
        try:
            with self._session_factory() as db, db.begin():
                batch_row = self._find_batch(db, batch_id)
                if batch_row is None:
                    raise NotFoundError("batch not found", operation="update_item", identifier=batch_id)
                item_row = db.execute(
                    select(StagingItemRow).where(
                        StagingItemRow.public_id == item_id,
                        StagingItemRow.batch_id == batch_row.id,
                    )
                ).scalar_one_or_none()
                if item_row is None:
                    raise NotFoundError("staging item not found", operation="update_item", identifier=item_id)
                item_row.action = change.action
                item_row.target_id = change.target_id
                _write_item_fields(item_row, change.fields)
                item_row.updated_at = now
                batch_row.updated_at = now
                record = self._to_item_record(item_row, batch_row.public_id)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="update_item", identifier=item_id) from exc
        self._notify()
        return record

    def transition(
        self,
        batch_id: str,
        target: BatchStatus,
        *,
        actor_uid: str | None = None,
        actor_email: str | None = None,
        notes: str | None = None,
        replace_notes: bool = False,
    ) -> StagingBatchRecord:
        """Compare-and-set status change, checked inside the write transaction."""
        now = self._clock()
        try:
            with self._session_factory() as db, db.begin():
                row = self._find_batch(db, batch_id)
                if row is None:
                    raise NotFoundError("batch not found", operation=f"transition:{target}", identifier=batch_id)
                if not can_transition(row.status, target):
                    raise InvalidTransitionError(
                        f"cannot move batch from {row.status} to {target}",
                        operation=f"transition:{target}",
                        identifier=batch_id,
                    )
                row.status = target
                row.updated_at = now
                if target == "approved":
                    row.approved_at = now
                    row.approved_by_uid = actor_uid
                    row.approved_by_email = actor_email
                    for item_row in row.items:
                        item_row.published = True
                elif target == "rejected":
                    row.rejected_at = now
                    row.rejected_by_uid = actor_uid
                    row.rejected_by_email = actor_email
                    row.notes = notes or ""
                else:
                    row.rejected_at = None
                    row.rejected_by_uid = None
                    row.rejected_by_email = None
                    if replace_notes:
                        row.notes = notes
                record = self._to_batch_record(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation=f"transition:{target}", identifier=batch_id) from exc

        logger.info("Batch %s moved to %s by %s", batch_id, target, actor_uid or "-")
        self._notify()
        return record

    def delete_item(self, batch_id: str, item_id: str) -> bool:
        try:
            with self._session_factory() as db, db.begin():
                batch_row = self._find_batch(db, batch_id)
                if batch_row is None:
                    return False
                item_row = db.execute(
                    select(StagingItemRow).where(
                        StagingItemRow.public_id == item_id,
                        StagingItemRow.batch_id == batch_row.id,
                    )
                ).scalar_one_or_none()
                if item_row is None:
                    return False
                db.delete(item_row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="delete_item", identifier=item_id) from exc
        return True

    def delete_batch(self, batch_id: str) -> bool:
        """Remove the batch row. Items must already be gone."""
        try:
            with self._session_factory() as db, db.begin():
                row = self._find_batch(db, batch_id)
                if row is None:
                    return False
                db.delete(row)
        except SQLAlchemyError as exc:
            raise TransactionError(str(exc), operation="delete_batch", identifier=batch_id) from exc
        logger.info("Deleted staging batch %s", batch_id)
        self._notify()
        return True
