from __future__ import annotations

from datetime import datetime, timedelta, timezone

from quizportal.domain.errors import InvalidTransitionError
from quizportal.domain.models import BatchStatus, StagingBatchRecord

RETENTION_WINDOW = timedelta(days=14)

# rejected -> pending is resubmission; approved is terminal.
_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "rejected": frozenset({"pending"}),
    "approved": frozenset(),
}

EDITABLE_STATUSES = frozenset({"pending", "rejected"})
TERMINAL_STATUSES = frozenset({"approved", "rejected"})


def as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def can_transition(current: str, target: BatchStatus) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def ensure_transition(batch: StagingBatchRecord, target: BatchStatus) -> None:
    if not can_transition(batch.status, target):
        raise InvalidTransitionError(
            f"cannot move batch from {batch.status} to {target}",
            operation=f"transition:{target}",
            identifier=batch.batch_id,
        )


def retention_reference(batch: StagingBatchRecord) -> datetime | None:
    if batch.status == "approved":
        return as_aware(batch.approved_at)
    if batch.status == "rejected":
        return as_aware(batch.rejected_at)
    return None


def can_delete(batch: StagingBatchRecord | None, now: datetime) -> bool:
    if batch is None or batch.status not in TERMINAL_STATUSES:
        return False
    reference = retention_reference(batch)
    if reference is None:
        return False
    return as_aware(now) - reference >= RETENTION_WINDOW
