from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

BatchStatus = Literal["pending", "approved", "rejected"]
QuestionAction = Literal["create", "update", "delete"]
UserType = Literal["practitioner", "patient", "youth"]

USER_TYPES: tuple[str, ...] = ("practitioner", "patient", "youth")
QUESTION_ACTIONS: tuple[str, ...] = ("create", "update", "delete")
MIN_LEVEL = 1
MAX_LEVEL = 4
MIN_OPTIONS = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QuestionFields:
    """Publishable content of a question, already validated."""

    question_text: str
    options: tuple[str, ...]
    correct_index: int
    level: int
    usertype: tuple[str, ...]
    explanation: str = ""
    image_url: str | None = None

    def with_image_url(self, image_url: str | None) -> QuestionFields:
        return replace(self, image_url=image_url)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "questionText": self.question_text,
            "options": list(self.options),
            "correctIndex": self.correct_index,
            "level": self.level,
            "usertype": list(self.usertype),
            "explanation": self.explanation,
        }
        if self.image_url:
            doc["imageUrl"] = self.image_url
        return doc


@dataclass
class QuestionRecord:
    question_id: str
    question_text: str
    options: list[str]
    correct_index: int
    level: int
    usertype: list[str]
    explanation: str = ""
    image_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    published_batch_id: str | None = None
    published_at: datetime | None = None

    def to_fields(self) -> QuestionFields:
        return QuestionFields(
            question_text=self.question_text,
            options=tuple(self.options),
            correct_index=self.correct_index,
            level=self.level,
            usertype=tuple(self.usertype),
            explanation=self.explanation,
            image_url=self.image_url,
        )


@dataclass
class BatchTotals:
    success: int = 0
    error: int = 0
    total: int = 0


@dataclass
class StagingBatchRecord:
    batch_id: str
    status: BatchStatus
    created_at: datetime | None
    created_by_uid: str | None
    created_by_email: str | None
    totals: BatchTotals = field(default_factory=BatchTotals)
    notes: str | None = None
    updated_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by_uid: str | None = None
    approved_by_email: str | None = None
    rejected_at: datetime | None = None
    rejected_by_uid: str | None = None
    rejected_by_email: str | None = None


@dataclass
class StagingItemRecord:
    item_id: str
    batch_id: str
    action: QuestionAction
    target_id: str | None
    fields: QuestionFields | None
    published: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class StagedChange:
    """One proposed change before it is stored as a staging item."""

    action: QuestionAction
    target_id: str | None = None
    fields: QuestionFields | None = None


@dataclass(frozen=True)
class PublishGroupResult:
    created: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()
    missing_deletes: tuple[str, ...] = ()


@dataclass
class PublicationReport:
    batch_id: str
    item_count: int
    group_count: int
    created_ids: list[str] = field(default_factory=list)
    updated_ids: list[str] = field(default_factory=list)
    deleted_ids: list[str] = field(default_factory=list)
    missing_deletes: list[str] = field(default_factory=list)


@dataclass
class UserRecord:
    uid: str
    email: str | None
    claims: dict[str, Any] = field(default_factory=dict)
