"""Turns an editing intent into either a live change or a staging batch.

Reviewers (``admin``) write straight to the question repository, including
image uploads. Everyone else gets a pending batch with one item per affected
question; staged items may reference images by URL only.
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Literal, Protocol

from quizportal.application.generation import GeneratedQuestion
from quizportal.domain.auth import ClaimsSource, Identity, require_portal_access
from quizportal.domain.errors import ExternalServiceError, NotFoundError, ValidationError
from quizportal.domain.models import QuestionFields, QuestionRecord, StagedChange
from quizportal.domain.validation import (
    clean_level,
    clean_usertype,
    merge_question_patch,
    validate_question_document,
)
from quizportal.infra.ports.storage import AssetStoragePort
from quizportal.utils.ids import new_public_id

logger = logging.getLogger(__name__)

GENERATED_BATCH_NOTE = "AI generator submission"

Destination = Literal["live", "staging"]


class QuestionRepositoryPort(Protocol):
    def get(self, question_id: str) -> QuestionRecord | None:
        ...

    def create(self, fields: QuestionFields, *, question_id: str | None = None) -> str:
        ...

    def update(self, question_id: str, patch: Mapping[str, Any]) -> QuestionRecord:
        ...

    def delete(self, question_id: str) -> bool:
        ...


class SubmissionStagingPort(Protocol):
    def create_batch(
        self,
        *,
        created_by_uid: str | None,
        created_by_email: str | None,
        changes: Sequence[StagedChange],
        notes: str | None = None,
    ) -> str:
        ...


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    filename: str | None = None
    content_type: str | None = None


@dataclass
class SubmissionResult:
    destination: Destination
    question_ids: list[str] = field(default_factory=list)
    batch_id: str | None = None
    count: int = 0
    warnings: list[str] = field(default_factory=list)


def _image_extension(upload: ImageUpload) -> str:
    suffix = PurePosixPath(upload.filename or "").suffix.lower().lstrip(".")
    if suffix:
        return suffix
    guessed = mimetypes.guess_extension(upload.content_type or "") or ""
    return guessed.lstrip(".") or "bin"


def image_path(*, category: str, question_id: str, upload: ImageUpload) -> str:
    return f"images/{category}/{question_id}.{_image_extension(upload)}"


class ChangeSubmissionService:
    def __init__(
        self,
        *,
        questions: QuestionRepositoryPort,
        staging: SubmissionStagingPort,
        storage: AssetStoragePort,
        identities: ClaimsSource,
    ):
        self.questions = questions
        self.staging = staging
        self.storage = storage
        self.identities = identities

    def _fresh(self, identity: Identity, operation: str) -> Identity:
        fresh = identity.refresh_claims(self.identities)
        require_portal_access(fresh, operation)
        return fresh

    def _stage(self, caller: Identity, changes: Sequence[StagedChange], notes: str | None) -> SubmissionResult:
        batch_id = self.staging.create_batch(
            created_by_uid=caller.uid,
            created_by_email=caller.email,
            changes=changes,
            notes=notes,
        )
        logger.info("Staged %d change(s) from %s in batch %s", len(changes), caller.uid, batch_id)
        return SubmissionResult(
            destination="staging",
            question_ids=[change.target_id or "" for change in changes if change.target_id],
            batch_id=batch_id,
            count=len(changes),
        )

    def _load(self, question_id: str, operation: str) -> QuestionRecord:
        record = self.questions.get(question_id)
        if record is None:
            raise NotFoundError("question not found", operation=operation, identifier=question_id)
        return record

    @staticmethod
    def _check_upload(upload: ImageUpload) -> None:
        if not upload.data:
            raise ValidationError("image upload is empty", operation="upload_image")
        if upload.content_type and not upload.content_type.startswith("image/"):
            raise ValidationError("image upload must be an image/* file", operation="upload_image")

    def _upload(self, *, fields: QuestionFields, question_id: str, upload: ImageUpload) -> str:
        path = image_path(category=fields.usertype[0], question_id=question_id, upload=upload)
        try:
            return self.storage.upload(path, upload.data, upload.content_type)
        except Exception as exc:
            raise ExternalServiceError(str(exc), operation="upload_image", identifier=question_id) from exc

    def _discard(self, locator: str | None, question_id: str, warnings: list[str]) -> None:
        if not self.storage.owns(locator):
            return
        try:
            self.storage.delete(locator)  # type: ignore[arg-type]
        except Exception as exc:
            logger.warning("Failed to delete image %s of question %s: %s", locator, question_id, exc)
            warnings.append(f"stored image {locator} could not be deleted: {exc}")

    # -- create -----------------------------------------------------------------

    def create_question(
        self,
        identity: Identity,
        payload: Mapping[str, Any],
        *,
        image: ImageUpload | None = None,
    ) -> SubmissionResult:
        caller = self._fresh(identity, "create_question")
        fields = validate_question_document(payload)

        if not caller.is_admin:
            if image is not None:
                raise ValidationError("staged changes accept image URLs only", operation="create_question")
            return self._stage(caller, [StagedChange(action="create", fields=fields)], "Manual create")

        question_id = new_public_id("q_")
        locator = None
        if image is not None:
            self._check_upload(image)
            locator = self._upload(fields=fields, question_id=question_id, upload=image)
            fields = fields.with_image_url(locator)
        try:
            self.questions.create(fields, question_id=question_id)
        except Exception:
            if locator:
                self._discard(locator, question_id, [])
            raise
        return SubmissionResult(destination="live", question_ids=[question_id], count=1)

    # -- update -----------------------------------------------------------------

    def update_question(
        self,
        identity: Identity,
        question_id: str,
        patch: Mapping[str, Any],
        *,
        image: ImageUpload | None = None,
        clear_image: bool = False,
    ) -> SubmissionResult:
        caller = self._fresh(identity, "update_question")
        if image is not None and clear_image:
            raise ValidationError("cannot upload and clear an image at once", operation="update_question")
        current = self._load(question_id, "update_question")
        merged = merge_question_patch(current.to_fields(), patch)

        if not caller.is_admin:
            if image is not None or clear_image:
                raise ValidationError("only reviewers can upload or remove images", operation="update_question")
            change = StagedChange(action="update", target_id=question_id, fields=merged)
            return self._stage(caller, [change], "Manual update")

        live_patch = dict(patch)
        new_locator = None
        if image is not None:
            self._check_upload(image)
            new_locator = self._upload(fields=merged, question_id=question_id, upload=image)
            live_patch["imageUrl"] = new_locator
        elif clear_image:
            live_patch["imageUrl"] = None

        warnings: list[str] = []
        try:
            record = self.questions.update(question_id, live_patch)
        except Exception:
            if new_locator and new_locator != current.image_url:
                self._discard(new_locator, question_id, warnings)
            raise

        if current.image_url and current.image_url != record.image_url:
            self._discard(current.image_url, question_id, warnings)
        return SubmissionResult(destination="live", question_ids=[question_id], count=1, warnings=warnings)

    def set_image(self, identity: Identity, question_id: str, image: ImageUpload) -> SubmissionResult:
        return self.update_question(identity, question_id, {}, image=image)

    def clear_image(self, identity: Identity, question_id: str) -> SubmissionResult:
        return self.update_question(identity, question_id, {}, clear_image=True)

    # -- delete -----------------------------------------------------------------

    def delete_question(self, identity: Identity, question_id: str) -> SubmissionResult:
        caller = self._fresh(identity, "delete_question")
        current = self._load(question_id, "delete_question")

        if not caller.is_admin:
            return self._stage(caller, [StagedChange(action="delete", target_id=question_id)], "Manual delete")

        self.questions.delete(question_id)
        warnings: list[str] = []
        self._discard(current.image_url, question_id, warnings)
        return SubmissionResult(destination="live", question_ids=[question_id], count=1, warnings=warnings)

    # -- generated --------------------------------------------------------------

    def submit_generated(
        self,
        identity: Identity,
        generated: Sequence[GeneratedQuestion],
        *,
        level: int,
        user_types: Sequence[str],
    ) -> SubmissionResult:
        caller = self._fresh(identity, "submit_generated")
        level = clean_level(level)
        types = clean_usertype(user_types)
        all_fields = [item.to_fields(level=level, user_types=types) for item in generated]

        if not all_fields:
            return SubmissionResult(destination="live" if caller.is_admin else "staging")

        if not caller.is_admin:
            changes = [StagedChange(action="create", fields=fields) for fields in all_fields]
            return self._stage(caller, changes, GENERATED_BATCH_NOTE)

        created = [self.questions.create(fields) for fields in all_fields]
        logger.info("Published %d generated question(s) directly for %s", len(created), caller.uid)
        return SubmissionResult(destination="live", question_ids=created, count=len(created))

