from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

BatchStatus = Literal["pending", "approved", "rejected"]


class BatchTotalsModel(BaseModel):
    success: int = 0
    error: int = 0
    total: int = 0


class StagingBatchItem(BaseModel):
    batchId: str
    status: BatchStatus
    createdAt: datetime | None = None
    updatedAt: datetime | None = None
    createdByUid: str | None = None
    createdByEmail: str | None = None
    totals: BatchTotalsModel
    notes: str | None = None
    approvedAt: datetime | None = None
    approvedByUid: str | None = None
    approvedByEmail: str | None = None
    rejectedAt: datetime | None = None
    rejectedByUid: str | None = None
    rejectedByEmail: str | None = None
    canDelete: bool = False


class StagingBatchListResponse(BaseModel):
    batches: list[StagingBatchItem]
    count: int


class StagingItemModel(BaseModel):
    itemId: str
    batchId: str
    action: Literal["create", "update", "delete"]
    targetId: str | None = None
    published: bool = False
    questionText: str | None = None
    options: list[str] | None = None
    correctIndex: int | None = None
    level: int | None = None
    usertype: list[str] | None = None
    explanation: str | None = None
    imageUrl: str | None = None
    createdAt: datetime | None = None
    updatedAt: datetime | None = None


class StagingItemListResponse(BaseModel):
    batchId: str
    items: list[StagingItemModel]
    count: int


class ReviewNoteRequest(BaseModel):
    note: str | None = None


class ApproveResponse(BaseModel):
    batchId: str
    status: BatchStatus = "approved"
    itemCount: int
    groupCount: int
    createdIds: list[str] = Field(default_factory=list)
    updatedIds: list[str] = Field(default_factory=list)
    deletedIds: list[str] = Field(default_factory=list)
    missingDeletes: list[str] = Field(default_factory=list)


class BatchDeleteResponse(BaseModel):
    ok: bool = True
    batchId: str
    deletedItems: int
