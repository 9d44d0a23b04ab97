from datetime import datetime, timedelta, timezone

import pytest

from quizportal.domain.errors import NotFoundError, ValidationError
from quizportal.domain.models import QuestionFields, QuestionRecord, StagingItemRecord
from quizportal.infra.db.question_store import QuestionStore, order_questions

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _record(question_id, created_at):
    return QuestionRecord(
        question_id=question_id,
        question_text=question_id,
        options=["a", "b"],
        correct_index=0,
        level=1,
        usertype=["youth"],
        created_at=created_at,
    )


def _fields(**overrides):
    values = dict(
        question_text="Q",
        options=("a", "b", "c"),
        correct_index=2,
        level=1,
        usertype=("patient",),
        explanation="why",
        image_url="https://cdn.example.com/q.png",
    )
    values.update(overrides)
    return QuestionFields(**values)


def test_order_puts_undated_last_in_storage_order():
    records = [
        _record("undated-1", None),
        _record("old", BASE),
        _record("undated-2", None),
        _record("new", BASE + timedelta(days=1)),
        _record("naive", (BASE + timedelta(hours=1)).replace(tzinfo=None)),
    ]
    assert [item.question_id for item in order_questions(records)] == ["new", "naive", "old", "undated-1", "undated-2"]


def test_update_merges_fields():
    clock_values = iter([BASE, BASE + timedelta(minutes=5)])
    store = QuestionStore(clock=lambda: next(clock_values))
    question_id = store.create(_fields())

    updated = store.update(question_id, {"level": 3})
    assert updated.level == 3
    assert updated.explanation == "why"
    assert updated.image_url == "https://cdn.example.com/q.png"
    assert updated.created_at == BASE
    assert updated.updated_at == BASE + timedelta(minutes=5)


def test_update_validates_merged_record():
    store = QuestionStore()
    question_id = store.create(_fields())
    with pytest.raises(ValidationError):
        store.update(question_id, {"options": ["a", "b"]})
    assert store.get(question_id).options == ["a", "b", "c"]


def test_update_missing_and_delete_missing():
    store = QuestionStore()
    with pytest.raises(NotFoundError):
        store.update("q_missing", {"level": 2})
    assert store.delete("q_missing") is False


def test_publish_group_rejects_item_without_fields():
    store = QuestionStore()
    items = [
        StagingItemRecord(item_id="item_ok", batch_id="batch_1", action="create", target_id=None, fields=_fields()),
        StagingItemRecord(item_id="item_empty", batch_id="batch_1", action="create", target_id=None, fields=None),
    ]

    with pytest.raises(ValidationError, match="require question fields") as exc_info:
        store.publish_group(batch_id="batch_1", items=items)

    assert exc_info.value.identifier == "item_empty"
    assert store.list() == []
