from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from quizportal.application.generation import QuestionGenerationService
from quizportal.application.review import ReviewPublicationService
from quizportal.application.staging import StagingService
from quizportal.application.submission import ChangeSubmissionService
from quizportal.core.config import get_settings
from quizportal.domain.auth import Identity
from quizportal.infra.db.question_store import QuestionStore
from quizportal.infra.db.staging_store import StagingStore
from quizportal.infra.events import SnapshotHub
from quizportal.infra.identity.database import DatabaseIdentityDirectory
from quizportal.infra.llm.gemini import GeminiLLM
from quizportal.infra.llm.mock import MockLLM
from quizportal.infra.ports.identity import IdentityDirectoryPort
from quizportal.infra.ports.llm import LLMPort
from quizportal.infra.ports.storage import AssetStoragePort
from quizportal.infra.storage.local import LocalAssetStorage

IDENTITY_HEADER = "X-Portal-Uid"


@lru_cache(maxsize=1)
def get_hub() -> SnapshotHub:
    return SnapshotHub()


@lru_cache(maxsize=1)
def get_question_store() -> QuestionStore:
    return QuestionStore(hub=get_hub())


@lru_cache(maxsize=1)
def get_staging_store() -> StagingStore:
    return StagingStore(hub=get_hub())


@lru_cache(maxsize=1)
def get_identity_directory() -> IdentityDirectoryPort:
    return DatabaseIdentityDirectory()


@lru_cache(maxsize=1)
def get_storage() -> AssetStoragePort:
    settings = get_settings()
    if settings.storage_backend != "local":
        raise RuntimeError(f"Unsupported QUIZ_STORAGE_BACKEND={settings.storage_backend!r}; only 'local' is available")
    return LocalAssetStorage(base_dir=settings.upload_dir)


@lru_cache(maxsize=1)
def get_llm() -> LLMPort:
    settings = get_settings()
    if settings.llm_backend == "gemini" and settings.gemini_api_key:
        return GeminiLLM(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    return MockLLM()


def get_review_service() -> ReviewPublicationService:
    return ReviewPublicationService(
        staging=get_staging_store(),
        questions=get_question_store(),
        identities=get_identity_directory(),
        group_size=get_settings().publish_group_size,
    )


def get_staging_service() -> StagingService:
    return StagingService(store=get_staging_store(), identities=get_identity_directory())


def get_submission_service() -> ChangeSubmissionService:
    return ChangeSubmissionService(
        questions=get_question_store(),
        staging=get_staging_store(),
        storage=get_storage(),
        identities=get_identity_directory(),
    )


def get_generation_service() -> QuestionGenerationService:
    return QuestionGenerationService(llm=get_llm())


def clear_caches() -> None:
    get_settings.cache_clear()
    for factory in (get_hub, get_question_store, get_staging_store, get_identity_directory, get_storage, get_llm):
        factory.cache_clear()


async def provide_caller(x_portal_uid: str | None = Header(default=None)) -> Identity:
    """Resolve the caller from the identity header with freshly read claims."""
    uid = (x_portal_uid or "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail=f"Missing {IDENTITY_HEADER} header")
    user = get_identity_directory().get_user(uid)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown identity")
    return Identity(uid=user.uid, email=user.email, claims=dict(user.claims))


async def provide_identity(identity: Identity = Depends(provide_caller)) -> Identity:
    if not identity.can_access_portal:
        raise HTTPException(status_code=403, detail="Portal access requires admin or operational role")
    return identity


async def provide_question_store() -> QuestionStore:
    return get_question_store()


async def provide_storage() -> AssetStoragePort:
    return get_storage()


async def provide_review_service() -> ReviewPublicationService:
    return get_review_service()


async def provide_staging_service() -> StagingService:
    return get_staging_service()


async def provide_submission_service() -> ChangeSubmissionService:
    return get_submission_service()


async def provide_generation_service() -> QuestionGenerationService:
    return get_generation_service()
