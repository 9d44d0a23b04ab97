"""Review and publication of staging batches.

Approval applies a batch's items to the live question set in bounded groups,
one transaction per group. The batch as a whole is not atomic: if group *k*
fails, groups ``1..k-1`` stay published and the batch stays ``pending``, so a
retry re-applies everything (at-least-once).

Concurrent approvals of the same batch within one process are refused while
the first is publishing. Separate processes are not coordinated.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Protocol, TypeVar

from quizportal.core.config import DEFAULT_PUBLISH_GROUP_SIZE, STORE_WRITE_GROUP_LIMIT
from quizportal.domain.auth import ClaimsSource, Identity, require_portal_access, require_reviewer
from quizportal.domain.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    PortalError,
    TransactionError,
)
from quizportal.domain.lifecycle import RETENTION_WINDOW, can_delete, ensure_transition
from quizportal.domain.models import (
    BatchStatus,
    PublicationReport,
    PublishGroupResult,
    StagedChange,
    StagingBatchRecord,
    StagingItemRecord,
    utcnow,
)
from quizportal.domain.validation import check_staged_change

logger = logging.getLogger(__name__)

T = TypeVar("T")

_approvals_lock = threading.Lock()
_approvals_in_flight: set[str] = set()


@contextmanager
def _claim_approval(batch_id: str) -> Iterator[None]:
    with _approvals_lock:
        if batch_id in _approvals_in_flight:
            raise InvalidTransitionError("approval already in progress", operation="approve", identifier=batch_id)
        _approvals_in_flight.add(batch_id)
    try:
        yield
    finally:
        with _approvals_lock:
            _approvals_in_flight.discard(batch_id)


class QuestionPublisherPort(Protocol):
    def publish_group(self, *, batch_id: str, items: Sequence[StagingItemRecord]) -> PublishGroupResult:
        ...


class ReviewStagingPort(Protocol):
    def get_batch(self, batch_id: str) -> StagingBatchRecord | None:
        ...

    def list_items(self, batch_id: str) -> list[StagingItemRecord]:
        ...

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
        ...

    def delete_item(self, batch_id: str, item_id: str) -> bool:
        ...

    def delete_batch(self, batch_id: str) -> bool:
        ...


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError("group size must be positive")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


class ReviewPublicationService:
    def __init__(
        self,
        *,
        staging: ReviewStagingPort,
        questions: QuestionPublisherPort,
        identities: ClaimsSource,
        group_size: int = DEFAULT_PUBLISH_GROUP_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not 1 <= group_size < STORE_WRITE_GROUP_LIMIT:
            raise ValueError(f"group_size must be in [1, {STORE_WRITE_GROUP_LIMIT - 1}]")
        self.staging = staging
        self.questions = questions
        self.identities = identities
        self.group_size = group_size
        self.clock = clock

    def _fresh(self, identity: Identity, operation: str) -> Identity:
        fresh = identity.refresh_claims(self.identities)
        require_portal_access(fresh, operation)
        return fresh

    def _load_batch(self, batch_id: str, operation: str) -> StagingBatchRecord:
        batch = self.staging.get_batch(batch_id)
        if batch is None:
            raise NotFoundError("batch not found", operation=operation, identifier=batch_id)
        return batch

    @staticmethod
    def _require_author_or_reviewer(identity: Identity, batch: StagingBatchRecord, operation: str) -> None:
        if identity.is_admin:
            return
        if batch.created_by_uid and batch.created_by_uid == identity.uid:
            return
        raise AuthorizationError("only the batch author or a reviewer may do this", operation=operation, identifier=batch.batch_id)

    def approve(self, identity: Identity, batch_id: str) -> PublicationReport:
        reviewer = self._fresh(identity, "approve")
        require_reviewer(reviewer, "approve")
        with _claim_approval(batch_id):
            return self._publish(reviewer, batch_id)

    def _publish(self, reviewer: Identity, batch_id: str) -> PublicationReport:
        batch = self._load_batch(batch_id, "approve")
        ensure_transition(batch, "approved")

        items = self.staging.list_items(batch_id)
        for item in items:
            check_staged_change(
                StagedChange(action=item.action, target_id=item.target_id, fields=item.fields),
                identifier=item.item_id,
            )

        groups = partition(items, self.group_size)
        report = PublicationReport(batch_id=batch_id, item_count=len(items), group_count=len(groups))
        for index, group in enumerate(groups):
            try:
                result = self.questions.publish_group(batch_id=batch_id, items=group)
            except (TransactionError, NotFoundError) as exc:
                logger.error(
                    "Approval of %s failed in group %d/%d (%d group(s) already published): %s",
                    batch_id,
                    index + 1,
                    len(groups),
                    index,
                    exc,
                )
                raise type(exc)(
                    f"group {index + 1}/{len(groups)} failed after {index} committed group(s): {exc.detail}",
                    operation="approve",
                    identifier=batch_id,
                ) from exc
            report.created_ids.extend(result.created)
            report.updated_ids.extend(result.updated)
            report.deleted_ids.extend(result.deleted)
            report.missing_deletes.extend(result.missing_deletes)
            logger.info("Published group %d/%d of batch %s (%d item(s))", index + 1, len(groups), batch_id, len(group))

        self.staging.transition(
            batch_id,
            "approved",
            actor_uid=reviewer.uid,
            actor_email=reviewer.email,
        )
        if report.missing_deletes:
            logger.info("Batch %s: %d delete target(s) were already gone", batch_id, len(report.missing_deletes))
        return report

    def reject(self, identity: Identity, batch_id: str, note: str | None = None) -> StagingBatchRecord:
        reviewer = self._fresh(identity, "reject")
        require_reviewer(reviewer, "reject")
        batch = self._load_batch(batch_id, "reject")
        ensure_transition(batch, "rejected")
        return self.staging.transition(
            batch_id,
            "rejected",
            actor_uid=reviewer.uid,
            actor_email=reviewer.email,
            notes=(note or "").strip(),
        )

    def resubmit(self, identity: Identity, batch_id: str, note: str | None = None) -> StagingBatchRecord:
        caller = self._fresh(identity, "resubmit")
        batch = self._load_batch(batch_id, "resubmit")
        self._require_author_or_reviewer(caller, batch, "resubmit")
        ensure_transition(batch, "pending")
        return self.staging.transition(
            batch_id,
            "pending",
            actor_uid=caller.uid,
            actor_email=caller.email,
            notes=note,
            replace_notes=note is not None,
        )

    def can_delete(self, batch: StagingBatchRecord | None) -> bool:
        return can_delete(batch, self.clock())

    def delete(self, identity: Identity, batch_id: str) -> int:
        """Delete every item, then the batch. Returns the number of items removed."""
        caller = self._fresh(identity, "delete_batch")
        # Re-read so the retention check never relies on a caller's copy.
        batch = self._load_batch(batch_id, "delete_batch")
        self._require_author_or_reviewer(caller, batch, "delete_batch")
        if not self.can_delete(batch):
            days = RETENTION_WINDOW.days
            raise InvalidTransitionError(
                f"batch can only be deleted {days} days after approval or rejection",
                operation="delete_batch",
                identifier=batch_id,
            )

        items = self.staging.list_items(batch_id)
        failures: list[str] = []
        removed = 0
        for item in items:
            try:
                if self.staging.delete_item(batch_id, item.item_id):
                    removed += 1
            except PortalError as exc:
                logger.warning("Failed to delete item %s of batch %s: %s", item.item_id, batch_id, exc)
                failures.append(item.item_id)

        if failures:
            raise TransactionError(
                f"{len(failures)} of {len(items)} item deletion(s) failed ({', '.join(failures)}); batch kept",
                operation="delete_batch",
                identifier=batch_id,
            )

        self.staging.delete_batch(batch_id)
        logger.info("Batch %s deleted by %s with %d item(s)", batch_id, caller.uid, removed)
        return removed
