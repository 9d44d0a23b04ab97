from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, UploadFile

from quizportal.api.v2.dependencies import (
    provide_caller,
    provide_generation_service,
    provide_identity,
    provide_question_store,
    provide_review_service,
    provide_staging_service,
    provide_storage,
    provide_submission_service,
)
from quizportal.api.v2.schemas.generation import (
    GeneratedQuestionModel,
    GeneratedSubmitRequest,
    GenerateRequest,
    GenerateResponse,
)
from quizportal.api.v2.schemas.identity import MeResponse
from quizportal.api.v2.schemas.question import (
    QuestionCreateRequest,
    QuestionItem,
    QuestionListResponse,
    QuestionPatchRequest,
    SubmissionResponse,
)
from quizportal.api.v2.schemas.staging import (
    ApproveResponse,
    BatchDeleteResponse,
    BatchTotalsModel,
    ReviewNoteRequest,
    StagingBatchItem,
    StagingBatchListResponse,
    StagingItemListResponse,
    StagingItemModel,
)
from quizportal.application.generation import GeneratedQuestion, QuestionGenerationService
from quizportal.application.review import ReviewPublicationService
from quizportal.application.staging import StagingService
from quizportal.application.submission import ChangeSubmissionService, ImageUpload, SubmissionResult
from quizportal.domain.auth import Identity
from quizportal.domain.errors import (
    AuthorizationError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PortalError,
    TransactionError,
    ValidationError,
)
from quizportal.domain.lifecycle import can_delete
from quizportal.domain.models import QuestionRecord, StagingBatchRecord, StagingItemRecord, utcnow
from quizportal.infra.db.question_store import QuestionStore
from quizportal.infra.ports.storage import AssetStoragePort

router = APIRouter(prefix="/v2", tags=["v2"])

_STATUS_BY_ERROR: tuple[tuple[type[PortalError], int], ...] = (
    (ValidationError, 422),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (TransactionError, 500),
    (ExternalServiceError, 502),
)


def _http_error(exc: PortalError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _question_item(record: QuestionRecord, storage: AssetStoragePort) -> QuestionItem:
    href = record.image_url
    if record.image_url and storage.owns(record.image_url):
        href = storage.build_url(record.image_url)
    return QuestionItem(
        questionId=record.question_id,
        questionText=record.question_text,
        options=record.options,
        correctIndex=record.correct_index,
        level=record.level,
        usertype=record.usertype,
        explanation=record.explanation,
        imageUrl=record.image_url,
        imageHref=href,
        createdAt=record.created_at,
        updatedAt=record.updated_at,
        publishedBatchId=record.published_batch_id,
        publishedAt=record.published_at,
    )


def _batch_item(batch: StagingBatchRecord) -> StagingBatchItem:
    return StagingBatchItem(
        batchId=batch.batch_id,
        status=batch.status,
        createdAt=batch.created_at,
        updatedAt=batch.updated_at,
        createdByUid=batch.created_by_uid,
        createdByEmail=batch.created_by_email,
        totals=BatchTotalsModel(
            success=batch.totals.success,
            error=batch.totals.error,
            total=batch.totals.total,
        ),
        notes=batch.notes,
        approvedAt=batch.approved_at,
        approvedByUid=batch.approved_by_uid,
        approvedByEmail=batch.approved_by_email,
        rejectedAt=batch.rejected_at,
        rejectedByUid=batch.rejected_by_uid,
        rejectedByEmail=batch.rejected_by_email,
        canDelete=can_delete(batch, utcnow()),
    )


def _staging_item(item: StagingItemRecord) -> StagingItemModel:
    data: dict[str, Any] = {
        "itemId": item.item_id,
        "batchId": item.batch_id,
        "action": item.action,
        "targetId": item.target_id,
        "published": item.published,
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
    }
    if item.fields is not None:
        data.update(
            questionText=item.fields.question_text,
            options=list(item.fields.options),
            correctIndex=item.fields.correct_index,
            level=item.fields.level,
            usertype=list(item.fields.usertype),
            explanation=item.fields.explanation,
            imageUrl=item.fields.image_url,
        )
    return StagingItemModel(**data)


def _submission(result: SubmissionResult) -> SubmissionResponse:
    return SubmissionResponse(
        destination=result.destination,
        questionIds=result.question_ids,
        batchId=result.batch_id,
        count=result.count,
        warnings=result.warnings,
    )


@router.get("/me", response_model=MeResponse)
def get_me(identity: Identity = Depends(provide_caller)):
    return MeResponse(
        uid=identity.uid,
        email=identity.email,
        roles=identity.roles,
        isAdmin=identity.is_admin,
        isOperational=identity.is_operational,
        canAccessPortal=identity.can_access_portal,
    )


@router.get("/questions", response_model=QuestionListResponse)
def list_questions(
    _identity: Identity = Depends(provide_identity),
    store: QuestionStore = Depends(provide_question_store),
    storage: AssetStoragePort = Depends(provide_storage),
):
    records = store.list()
    return QuestionListResponse(
        questions=[_question_item(record, storage) for record in records],
        count=len(records),
    )


@router.get("/questions/{questionId}", response_model=QuestionItem)
def get_question(
    questionId: str,
    _identity: Identity = Depends(provide_identity),
    store: QuestionStore = Depends(provide_question_store),
    storage: AssetStoragePort = Depends(provide_storage),
):
    record = store.get(questionId)
    if record is None:
        raise HTTPException(status_code=404, detail="Question not found")
    return _question_item(record, storage)


@router.post("/questions", response_model=SubmissionResponse)
def create_question(
    payload: QuestionCreateRequest,
    identity: Identity = Depends(provide_identity),
    service: ChangeSubmissionService = Depends(provide_submission_service),
):
    document = payload.model_dump(exclude_none=True)
    try:
        result = service.create_question(identity, document)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _submission(result)


@router.patch("/questions/{questionId}", response_model=SubmissionResponse)
def update_question(
    questionId: str,
    payload: QuestionPatchRequest,
    identity: Identity = Depends(provide_identity),
    service: ChangeSubmissionService = Depends(provide_submission_service),
):
    patch = payload.model_dump(exclude_unset=True)
    for key in [key for key, value in patch.items() if value is None and key != "imageUrl"]:
        patch.pop(key)
    if not patch:
        raise HTTPException(status_code=422, detail="No updatable fields provided")
    try:
        result = service.update_question(identity, questionId, patch)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _submission(result)


@router.delete("/questions/{questionId}", response_model=SubmissionResponse)
def delete_question(
    questionId: str,
    identity: Identity = Depends(provide_identity),
    service: ChangeSubmissionService = Depends(provide_submission_service),
):
    try:
        result = service.delete_question(identity, questionId)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _submission(result)


@router.put("/questions/{questionId}/image", response_model=SubmissionResponse)
async def upload_question_image(
    questionId: str,
    file: UploadFile = File(...),
    identity: Identity = Depends(provide_identity),
    service: ChangeSubmissionService = Depends(provide_submission_service),
):
    upload = ImageUpload(data=await file.read(), filename=file.filename, content_type=file.content_type)
    try:
        result = service.set_image(identity, questionId, upload)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _submission(result)


@router.delete("/questions/{questionId}/image", response_model=SubmissionResponse)
def delete_question_image(
    questionId: str,
    identity: Identity = Depends(provide_identity),
    service: ChangeSubmissionService = Depends(provide_submission_service),
):
    try:
        result = service.clear_image(identity, questionId)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _submission(result)


@router.post("/generation/questions", response_model=GenerateResponse)
def generate_questions(
    payload: GenerateRequest,
    _identity: Identity = Depends(provide_identity),
    service: QuestionGenerationService = Depends(provide_generation_service),
):
    try:
        generated = service.generate(
            prompt=payload.prompt,
            count=payload.count,
            level=payload.level,
            user_types=payload.userTypes,
        )
    except PortalError as exc:
        raise _http_error(exc) from exc
    return GenerateResponse(
        questions=[
            GeneratedQuestionModel(
                questionText=item.question_text,
                options=list(item.options),
                correctIndex=item.correct_index,
                explanation=item.explanation,
            )
            for item in generated
        ],
        count=len(generated),
        model=service.llm.model_name,
    )


@router.post("/generation/questions/submit", response_model=SubmissionResponse)
def submit_generated_questions(
    payload: GeneratedSubmitRequest,
    identity: Identity = Depends(provide_identity),
    service: ChangeSubmissionService = Depends(provide_submission_service),
):
    generated = [
        GeneratedQuestion(
            question_text=item.questionText,
            options=tuple(item.options),
            correct_index=item.correctIndex,
            explanation=item.explanation,
        )
        for item in payload.questions
    ]
    try:
        result = service.submit_generated(identity, generated, level=payload.level, user_types=payload.userTypes)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _submission(result)


@router.get("/staging/batches", response_model=StagingBatchListResponse)
def list_staging_batches(
    mine: bool = Query(default=False),
    identity: Identity = Depends(provide_identity),
    service: StagingService = Depends(provide_staging_service),
):
    try:
        batches = service.list_batches(identity, mine=mine)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return StagingBatchListResponse(batches=[_batch_item(batch) for batch in batches], count=len(batches))


@router.get("/staging/batches/{batchId}", response_model=StagingBatchItem)
def get_staging_batch(
    batchId: str,
    identity: Identity = Depends(provide_identity),
    service: StagingService = Depends(provide_staging_service),
):
    try:
        batch = service.get_batch(identity, batchId)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _batch_item(batch)


@router.get("/staging/batches/{batchId}/items", response_model=StagingItemListResponse)
def list_staging_items(
    batchId: str,
    identity: Identity = Depends(provide_identity),
    service: StagingService = Depends(provide_staging_service),
):
    try:
        items = service.list_items(identity, batchId)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return StagingItemListResponse(batchId=batchId, items=[_staging_item(item) for item in items], count=len(items))


@router.patch("/staging/batches/{batchId}/items/{itemId}", response_model=StagingItemModel)
def update_staging_item(
    batchId: str,
    itemId: str,
    payload: dict[str, Any] = Body(...),
    identity: Identity = Depends(provide_identity),
    service: StagingService = Depends(provide_staging_service),
):
    try:
        item = service.update_item(identity, batchId, itemId, payload)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _staging_item(item)


@router.post("/staging/batches/{batchId}/approve", response_model=ApproveResponse)
def approve_staging_batch(
    batchId: str,
    identity: Identity = Depends(provide_identity),
    service: ReviewPublicationService = Depends(provide_review_service),
):
    try:
        report = service.approve(identity, batchId)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return ApproveResponse(
        batchId=report.batch_id,
        itemCount=report.item_count,
        groupCount=report.group_count,
        createdIds=report.created_ids,
        updatedIds=report.updated_ids,
        deletedIds=report.deleted_ids,
        missingDeletes=report.missing_deletes,
    )


@router.post("/staging/batches/{batchId}/reject", response_model=StagingBatchItem)
def reject_staging_batch(
    batchId: str,
    payload: ReviewNoteRequest | None = None,
    identity: Identity = Depends(provide_identity),
    service: ReviewPublicationService = Depends(provide_review_service),
):
    try:
        batch = service.reject(identity, batchId, payload.note if payload else None)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _batch_item(batch)


@router.post("/staging/batches/{batchId}/resubmit", response_model=StagingBatchItem)
def resubmit_staging_batch(
    batchId: str,
    payload: ReviewNoteRequest | None = None,
    identity: Identity = Depends(provide_identity),
    service: ReviewPublicationService = Depends(provide_review_service),
):
    try:
        batch = service.resubmit(identity, batchId, payload.note if payload else None)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return _batch_item(batch)


@router.delete("/staging/batches/{batchId}", response_model=BatchDeleteResponse)
def delete_staging_batch(
    batchId: str,
    identity: Identity = Depends(provide_identity),
    service: ReviewPublicationService = Depends(provide_review_service),
):
    try:
        removed = service.delete(identity, batchId)
    except PortalError as exc:
        raise _http_error(exc) from exc
    return BatchDeleteResponse(batchId=batchId, deletedItems=removed)
