from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quizportal.infra.db.base import Base


class QuizQuestionRow(Base):
    __tablename__ = "quiz_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    question_text: Mapped[str] = mapped_column(Text)
    options_json: Mapped[list] = mapped_column("options", JSON, default=list)
    correct_index: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1, index=True)
    usertype_json: Mapped[list] = mapped_column("usertype", JSON, default=list)
    explanation: Mapped[str] = mapped_column(Text, default="")
    image_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    published_batch_id: Mapped[str | None] = mapped_column(String(64), index=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class StagingBatchRow(Base):
    __tablename__ = "staging_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by_uid: Mapped[str | None] = mapped_column(String(128), index=True)
    created_by_email: Mapped[str | None] = mapped_column(String(320))
    totals_success: Mapped[int] = mapped_column(Integer, default=0)
    totals_error: Mapped[int] = mapped_column(Integer, default=0)
    totals_total: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(Text)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by_uid: Mapped[str | None] = mapped_column(String(128))
    approved_by_email: Mapped[str | None] = mapped_column(String(320))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by_uid: Mapped[str | None] = mapped_column(String(128))
    rejected_by_email: Mapped[str | None] = mapped_column(String(320))

    items: Mapped[list[StagingItemRow]] = relationship(back_populates="batch")


class StagingItemRow(Base):
    __tablename__ = "staging_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("staging_batches.id"), index=True)
    action: Mapped[str] = mapped_column(String(16), default="create")
    target_id: Mapped[str | None] = mapped_column(String(64))
    question_text: Mapped[str | None] = mapped_column(Text)
    options_json: Mapped[list | None] = mapped_column("options", JSON)
    correct_index: Mapped[int | None] = mapped_column(Integer)
    level: Mapped[int | None] = mapped_column(Integer)
    usertype_json: Mapped[list | None] = mapped_column("usertype", JSON)
    explanation: Mapped[str | None] = mapped_column(Text)
    image_url: Mapped[str | None] = mapped_column(Text)
    published: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    batch: Mapped[StagingBatchRow] = relationship(back_populates="items")


class PortalUserRow(Base):
    __tablename__ = "portal_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, index=True)
    claims_json: Mapped[dict] = mapped_column("claims", JSON, default=dict)
