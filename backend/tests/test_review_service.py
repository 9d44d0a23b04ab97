import math
from datetime import datetime, timedelta, timezone

import pytest

from quizportal.application.review import ReviewPublicationService, partition
from quizportal.domain.auth import Identity
from quizportal.domain.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from quizportal.domain.models import (
    PublishGroupResult,
    QuestionFields,
    StagedChange,
    StagingBatchRecord,
    StagingItemRecord,
    UserRecord,
)
from quizportal.infra.db.question_store import QuestionStore
from quizportal.infra.db.staging_store import StagingStore

ADMIN = Identity(uid="u_admin", email="admin@example.com", claims={"admin": True})


def _fields(text="Q"):
    return QuestionFields(
        question_text=text,
        options=("a", "b", "c"),
        correct_index=1,
        level=2,
        usertype=("practitioner",),
    )


class _Directory:
    def __init__(self, *identities):
        self.users = {
            identity.uid: UserRecord(uid=identity.uid, email=identity.email, claims=dict(identity.claims))
            for identity in identities
        }

    def get_user(self, uid):
        return self.users.get(uid)


class _StubStaging:
    def __init__(self, item_count):
        self.batch = StagingBatchRecord(
            batch_id="batch_1",
            status="pending",
            created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            created_by_uid="u_ops",
            created_by_email="ops@example.com",
        )
        self.items = [
            StagingItemRecord(
                item_id=f"item_{idx}",
                batch_id="batch_1",
                action="create",
                target_id=None,
                fields=_fields(f"Q{idx}"),
            )
            for idx in range(item_count)
        ]
        self.transitions = []

    def get_batch(self, batch_id):
        return self.batch if batch_id == self.batch.batch_id else None

    def list_items(self, batch_id):
        return list(self.items)

    def transition(self, batch_id, target, **kwargs):
        self.transitions.append(target)
        self.batch.status = target
        return self.batch

    def delete_item(self, batch_id, item_id):
        return True

    def delete_batch(self, batch_id):
        return True


class _RecordingPublisher:
    def __init__(self, fail_at=None):
        self.group_sizes = []
        self.fail_at = fail_at

    def publish_group(self, *, batch_id, items):
        if self.fail_at is not None and len(self.group_sizes) == self.fail_at:
            raise TransactionError("write rejected", operation="publish_group", identifier=batch_id)
        self.group_sizes.append(len(items))
        return PublishGroupResult(created=tuple(f"q_{item.item_id}" for item in items))


def test_partition():
    assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert partition([], 3) == []
    with pytest.raises(ValueError):
        partition([1], 0)


@pytest.mark.parametrize("item_count,group_size", [(0, 450), (1, 450), (450, 450), (451, 450), (1000, 450), (7, 3)])
def test_approval_commits_ceil_n_over_g_groups(item_count, group_size):
    staging = _StubStaging(item_count)
    publisher = _RecordingPublisher()
    service = ReviewPublicationService(
        staging=staging,
        questions=publisher,
        identities=_Directory(ADMIN),
        group_size=group_size,
    )

    report = service.approve(ADMIN, "batch_1")

    assert len(publisher.group_sizes) == math.ceil(item_count / group_size)
    assert all(size <= group_size for size in publisher.group_sizes)
    assert sum(publisher.group_sizes) == item_count
    assert report.group_count == len(publisher.group_sizes)
    assert staging.transitions == ["approved"]


def test_group_size_must_stay_below_store_limit():
    with pytest.raises(ValueError):
        ReviewPublicationService(staging=_StubStaging(0), questions=_RecordingPublisher(), identities=_Directory(), group_size=500)


def test_partial_publish_is_reported_and_batch_stays_pending():
    staging = _StubStaging(10)
    publisher = _RecordingPublisher(fail_at=2)
    service = ReviewPublicationService(staging=staging, questions=publisher, identities=_Directory(ADMIN), group_size=3)

    with pytest.raises(TransactionError) as exc_info:
        service.approve(ADMIN, "batch_1")

    assert "group 3/4" in str(exc_info.value)
    assert "after 2 committed group(s)" in str(exc_info.value)
    assert publisher.group_sizes == [3, 3]
    assert staging.transitions == []
    assert staging.batch.status == "pending"


def test_invalid_item_blocks_approval_before_any_write():
    staging = _StubStaging(2)
    staging.items.append(
        StagingItemRecord(item_id="item_bad", batch_id="batch_1", action="update", target_id=None, fields=_fields())
    )
    publisher = _RecordingPublisher()
    service = ReviewPublicationService(staging=staging, questions=publisher, identities=_Directory(ADMIN))

    with pytest.raises(ValidationError, match="item_bad"):
        service.approve(ADMIN, "batch_1")
    assert publisher.group_sizes == []


def test_approval_requires_fresh_reviewer_claim():
    demoted = UserRecord(uid="u_admin", email="admin@example.com", claims={"operational": True})
    directory = _Directory()
    directory.users["u_admin"] = demoted
    service = ReviewPublicationService(staging=_StubStaging(1), questions=_RecordingPublisher(), identities=directory)

    with pytest.raises(AuthorizationError):
        service.approve(ADMIN, "batch_1")


def test_second_approval_is_refused_while_first_is_publishing():
    staging = _StubStaging(4)
    refused = []

    class _ReentrantPublisher(_RecordingPublisher):
        def publish_group(self, *, batch_id, items):
            if not refused:
                with pytest.raises(InvalidTransitionError, match="already in progress") as exc_info:
                    service.approve(ADMIN, batch_id)
                refused.append(exc_info.value)
            return super().publish_group(batch_id=batch_id, items=items)

    publisher = _ReentrantPublisher()
    service = ReviewPublicationService(staging=staging, questions=publisher, identities=_Directory(ADMIN), group_size=2)

    report = service.approve(ADMIN, "batch_1")

    assert len(refused) == 1
    assert publisher.group_sizes == [2, 2]
    assert report.created_ids == [f"q_item_{idx}" for idx in range(4)]
    assert staging.transitions == ["approved"]

    # The slot is released; a later attempt fails on status, not on the guard.
    with pytest.raises(InvalidTransitionError) as exc_info:
        service.approve(ADMIN, "batch_1")
    assert "already in progress" not in str(exc_info.value)


def test_failed_approval_releases_the_batch():
    staging = _StubStaging(3)
    publisher = _RecordingPublisher(fail_at=0)
    service = ReviewPublicationService(staging=staging, questions=publisher, identities=_Directory(ADMIN))

    with pytest.raises(TransactionError):
        service.approve(ADMIN, "batch_1")

    publisher.fail_at = None
    report = service.approve(ADMIN, "batch_1")
    assert report.item_count == 3
    assert staging.transitions == ["approved"]


# -- against the SQLite stores ----------------------------------------------------


def _service(directory, **kwargs):
    return ReviewPublicationService(
        staging=StagingStore(**kwargs),
        questions=QuestionStore(**kwargs),
        identities=directory,
    )


def test_approve_create_and_delete_scenario(directory, reviewer, operator):
    questions = QuestionStore()
    staging = StagingStore()
    old_id = questions.create(_fields("Q-old"))
    q1 = QuestionFields(
        question_text="Q1",
        options=("A", "B"),
        correct_index=0,
        level=1,
        usertype=("patient",),
        explanation="A is right",
        image_url="https://cdn.example.com/q1.png",
    )

    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[
            StagedChange(action="create", fields=q1),
            StagedChange(action="delete", target_id=old_id),
        ],
        notes="Manual create",
    )

    report = _service(directory).approve(reviewer, batch_id)

    live = questions.list()
    assert [record.question_text for record in live] == ["Q1"]
    assert live[0].to_fields() == q1
    assert live[0].published_batch_id == batch_id
    assert live[0].published_at is not None
    assert report.deleted_ids == [old_id]
    assert report.created_ids == [live[0].question_id]

    batch = staging.get_batch(batch_id)
    assert batch.status == "approved"
    assert batch.approved_by_uid == reviewer.uid
    assert batch.approved_at is not None
    assert all(item.published for item in staging.list_items(batch_id))


def test_delete_of_missing_target_is_idempotent(directory, reviewer, operator):
    staging = StagingStore()
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="delete", target_id="q_gone")],
    )

    report = _service(directory).approve(reviewer, batch_id)

    assert report.missing_deletes == ["q_gone"]
    assert staging.get_batch(batch_id).status == "approved"


def test_update_with_missing_target_aborts(directory, reviewer, operator):
    staging = StagingStore()
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="update", target_id="q_gone", fields=_fields())],
    )

    with pytest.raises(NotFoundError):
        _service(directory).approve(reviewer, batch_id)
    assert staging.get_batch(batch_id).status == "pending"


def test_approved_update_keeps_created_at(directory, reviewer, operator):
    questions = QuestionStore()
    staging = StagingStore()
    question_id = questions.create(_fields("before"))
    created_at = questions.get(question_id).created_at

    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="update", target_id=question_id, fields=_fields("after"))],
    )
    _service(directory).approve(reviewer, batch_id)

    record = questions.get(question_id)
    assert record.question_text == "after"
    assert record.created_at == created_at
    assert record.published_batch_id == batch_id


def test_reject_resubmit_cycle(directory, reviewer, operator):
    staging = StagingStore()
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="create", fields=_fields())],
        notes="Manual create",
    )
    service = _service(directory)

    with pytest.raises(AuthorizationError):
        service.reject(operator, batch_id, "nope")

    rejected = service.reject(reviewer, batch_id, "  fix option b  ")
    assert rejected.status == "rejected"
    assert rejected.notes == "fix option b"
    assert rejected.rejected_by_uid == reviewer.uid

    with pytest.raises(InvalidTransitionError):
        service.approve(reviewer, batch_id)

    resubmitted = service.resubmit(operator, batch_id, "fixed")
    assert resubmitted.status == "pending"
    assert resubmitted.notes == "fixed"
    assert resubmitted.rejected_at is None
    assert resubmitted.rejected_by_uid is None

    service.approve(reviewer, batch_id)
    with pytest.raises(InvalidTransitionError):
        service.resubmit(operator, batch_id)


def test_resubmit_by_other_author_rejected(directory, reviewer, operator):
    other = directory.upsert_user(uid="u_ops2", email="ops2@example.com", claims={"operational": True})
    staging = StagingStore()
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="delete", target_id="q_1")],
    )
    service = _service(directory)
    service.reject(reviewer, batch_id)

    with pytest.raises(AuthorizationError):
        service.resubmit(Identity(uid=other.uid, email=other.email, claims=other.claims), batch_id)


def test_delete_honours_retention_window(directory, reviewer, operator):
    long_ago = datetime.now(timezone.utc) - timedelta(days=30)
    staging = StagingStore(clock=lambda: long_ago)
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="delete", target_id="q_1"), StagedChange(action="delete", target_id="q_2")],
    )
    fresh_id = StagingStore().create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="delete", target_id="q_3")],
    )
    service = ReviewPublicationService(staging=staging, questions=QuestionStore(), identities=directory)
    service.reject(reviewer, batch_id)

    with pytest.raises(InvalidTransitionError):
        service.delete(operator, fresh_id)

    assert service.delete(operator, batch_id) == 2
    assert staging.get_batch(batch_id) is None
    assert staging.list_items(batch_id) == []


def test_blank_image_url_is_dropped_on_publish(directory, reviewer, operator):
    questions = QuestionStore()
    staging = StagingStore()
    illustrated = QuestionFields(
        question_text="with image",
        options=("a", "b"),
        correct_index=0,
        level=1,
        usertype=("youth",),
        image_url="https://cdn.example.com/kept.png",
    )
    target_id = questions.create(illustrated)

    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[
            StagedChange(action="create", fields=_fields("blank").with_image_url("   ")),
            StagedChange(
                action="update",
                target_id=target_id,
                fields=QuestionFields(
                    question_text="reworded",
                    options=("a", "b"),
                    correct_index=1,
                    level=1,
                    usertype=("youth",),
                    image_url="  ",
                ),
            ),
        ],
    )
    report = _service(directory).approve(reviewer, batch_id)

    created = questions.get(report.created_ids[0])
    assert created.question_text == "blank"
    assert created.image_url is None
    updated = questions.get(target_id)
    assert updated.question_text == "reworded"
    assert updated.correct_index == 1
    assert updated.image_url == "https://cdn.example.com/kept.png"


def test_add_item_counts_toward_totals_until_approved(directory, reviewer, operator):
    staging = StagingStore()
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="create", fields=_fields("Q1"))],
    )

    staging.add_item(batch_id, StagedChange(action="create", fields=_fields("Q2")))
    batch = staging.get_batch(batch_id)
    assert (batch.totals.total, batch.totals.success, batch.totals.error) == (2, 2, 0)
    assert len(staging.list_items(batch_id)) == 2

    _service(directory).approve(reviewer, batch_id)

    with pytest.raises(InvalidTransitionError):
        staging.add_item(batch_id, StagedChange(action="create", fields=_fields("Q3")))
    batch = staging.get_batch(batch_id)
    assert (batch.totals.total, batch.totals.success) == (2, 2)
    assert [item.fields.question_text for item in staging.list_items(batch_id)] == ["Q1", "Q2"]


def test_add_item_allowed_on_rejected_batch(directory, reviewer, operator):
    staging = StagingStore()
    batch_id = staging.create_batch(
        created_by_uid=operator.uid,
        created_by_email=operator.email,
        changes=[StagedChange(action="delete", target_id="q_1")],
    )
    _service(directory).reject(reviewer, batch_id, "needs more")

    staging.add_item(batch_id, StagedChange(action="delete", target_id="q_2"))

    batch = staging.get_batch(batch_id)
    assert batch.status == "rejected"
    assert batch.totals.total == 2


def test_add_item_to_missing_batch():
    with pytest.raises(NotFoundError):
        StagingStore().add_item("batch_missing", StagedChange(action="delete", target_id="q_1"))
