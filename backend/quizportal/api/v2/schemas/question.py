from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class QuestionItem(BaseModel):
    questionId: str
    questionText: str
    options: list[str]
    correctIndex: int
    level: int
    usertype: list[str]
    explanation: str = ""
    imageUrl: str | None = None
    imageHref: str | None = None
    createdAt: datetime | None = None
    updatedAt: datetime | None = None
    publishedBatchId: str | None = None
    publishedAt: datetime | None = None


class QuestionListResponse(BaseModel):
    questions: list[QuestionItem]
    count: int


class QuestionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    questionText: str
    options: list[str]
    correctIndex: int
    level: int
    usertype: list[str]
    explanation: str = ""
    imageUrl: str | None = None


class QuestionPatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    questionText: str | None = None
    options: list[str] | None = None
    correctIndex: int | None = None
    level: int | None = None
    usertype: list[str] | None = None
    explanation: str | None = None
    imageUrl: str | None = None


class SubmissionResponse(BaseModel):
    destination: Literal["live", "staging"]
    questionIds: list[str] = Field(default_factory=list)
    batchId: str | None = None
    count: int = 0
    warnings: list[str] = Field(default_factory=list)
