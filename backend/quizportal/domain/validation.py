"""Boundary validation for question documents and staging items.

Payloads use the document field names (``questionText``, ``correctIndex``,
``__action`` ...). Unknown keys are rejected rather than carried along, so a
stored record is always one of the closed shapes in ``domain.models``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from quizportal.domain.errors import ValidationError
from quizportal.domain.models import (
    MAX_LEVEL,
    MIN_LEVEL,
    MIN_OPTIONS,
    QUESTION_ACTIONS,
    USER_TYPES,
    QuestionFields,
    StagedChange,
)

QUESTION_KEYS = frozenset(
    {"questionText", "options", "correctIndex", "level", "usertype", "explanation", "imageUrl"}
)
REQUIRED_QUESTION_KEYS = frozenset({"questionText", "options", "correctIndex", "level", "usertype"})
STAGING_KEYS = frozenset({"__action", "__targetId"})


def _fail(message: str, identifier: str | None = None) -> ValidationError:
    return ValidationError(message, operation="validate", identifier=identifier)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def clean_question_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise _fail("questionText must be a non-empty string")
    return value.strip()


def clean_options(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise _fail("options must be a list of strings")
    cleaned: list[str] = []
    for idx, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise _fail(f"options[{idx}] must be a non-empty string")
        cleaned.append(item.strip())
    if len(cleaned) < MIN_OPTIONS:
        raise _fail(f"at least {MIN_OPTIONS} options are required")
    return tuple(cleaned)


def clean_level(value: Any) -> int:
    if not _is_int(value) or not MIN_LEVEL <= value <= MAX_LEVEL:
        raise _fail(f"level must be an integer between {MIN_LEVEL} and {MAX_LEVEL}")
    return value


def clean_usertype(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise _fail("usertype must be a list of user types")
    cleaned: list[str] = []
    for item in value:
        if not isinstance(item, str) or item.strip().lower() not in USER_TYPES:
            raise _fail(f"usertype values must be one of: {', '.join(USER_TYPES)}")
        normalized = item.strip().lower()
        if normalized not in cleaned:
            cleaned.append(normalized)
    if not cleaned:
        raise _fail("usertype must not be empty")
    return tuple(cleaned)


def clean_explanation(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _fail("explanation must be a string")
    return value.strip()


def clean_image_url(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise _fail("imageUrl must be a string")
    return value.strip() or None


def build_question_fields(
    *,
    question_text: Any,
    options: Any,
    correct_index: Any,
    level: Any,
    usertype: Any,
    explanation: Any = "",
    image_url: Any = None,
) -> QuestionFields:
    cleaned_options = clean_options(options)
    if not _is_int(correct_index) or not 0 <= correct_index < len(cleaned_options):
        raise _fail(f"correctIndex must be an integer in [0, {len(cleaned_options)})")
    return QuestionFields(
        question_text=clean_question_text(question_text),
        options=cleaned_options,
        correct_index=correct_index,
        level=clean_level(level),
        usertype=clean_usertype(usertype),
        explanation=clean_explanation(explanation),
        image_url=clean_image_url(image_url),
    )


def validate_question_document(payload: Mapping[str, Any]) -> QuestionFields:
    if not isinstance(payload, Mapping):
        raise _fail("question payload must be an object")
    unknown = set(payload) - QUESTION_KEYS
    if unknown:
        raise _fail(f"unknown question fields: {', '.join(sorted(unknown))}")
    missing = REQUIRED_QUESTION_KEYS - set(payload)
    if missing:
        raise _fail(f"missing question fields: {', '.join(sorted(missing))}")
    return build_question_fields(
        question_text=payload["questionText"],
        options=payload["options"],
        correct_index=payload["correctIndex"],
        level=payload["level"],
        usertype=payload["usertype"],
        explanation=payload.get("explanation", ""),
        image_url=payload.get("imageUrl"),
    )


def merge_question_patch(current: QuestionFields, patch: Mapping[str, Any]) -> QuestionFields:
    """Field-level merge of ``patch`` over ``current``, validated as a whole."""
    if not isinstance(patch, Mapping):
        raise _fail("question patch must be an object")
    unknown = set(patch) - QUESTION_KEYS
    if unknown:
        raise _fail(f"unknown question fields: {', '.join(sorted(unknown))}")
    merged = current.to_document()
    merged.update(patch)
    return validate_question_document(merged)


def validate_staging_item(payload: Mapping[str, Any]) -> StagedChange:
    if not isinstance(payload, Mapping):
        raise _fail("staging item must be an object")
    action = payload.get("__action") or "create"
    if action not in QUESTION_ACTIONS:
        raise _fail(f"__action must be one of: {', '.join(QUESTION_ACTIONS)}")
    target_id = payload.get("__targetId")
    if target_id is not None and (not isinstance(target_id, str) or not target_id.strip()):
        raise _fail("__targetId must be a non-empty string")

    if action == "delete":
        extra = set(payload) - STAGING_KEYS
        if extra:
            raise _fail(f"delete items carry only __action and __targetId, got: {', '.join(sorted(extra))}")
        if not target_id:
            raise _fail("__targetId is required for delete items")
        return StagedChange(action="delete", target_id=target_id.strip())

    if action == "update" and not target_id:
        raise _fail("__targetId is required for update items")

    document = {key: value for key, value in payload.items() if key not in STAGING_KEYS}
    fields = validate_question_document(document)
    return StagedChange(
        action=action,
        target_id=target_id.strip() if action == "update" else None,
        fields=fields,
    )


def check_staged_change(change: StagedChange, identifier: str | None = None) -> StagedChange:
    """Re-check an already-typed change (e.g. loaded back from the store)."""
    if change.action not in QUESTION_ACTIONS:
        raise _fail(f"unknown action {change.action!r}", identifier)
    if change.action in ("update", "delete") and not change.target_id:
        raise _fail(f"__targetId is required for {change.action} items", identifier)
    if change.action == "delete":
        if change.fields is not None:
            raise _fail("delete items must not carry question fields", identifier)
        return change
    if change.fields is None:
        raise _fail(f"{change.action} items require question fields", identifier)
    try:
        validate_question_document(change.fields.to_document())
    except ValidationError as exc:
        raise _fail(exc.detail, identifier) from exc
    return change
