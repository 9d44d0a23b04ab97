from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

# Storage layer limit on mutations per atomic write group.
STORE_WRITE_GROUP_LIMIT = 500
DEFAULT_PUBLISH_GROUP_SIZE = 450


def _load_dotenv() -> None:
    if os.getenv("QUIZ_SKIP_DOTENV") == "1":
        return

    env_path = Path(__file__).resolve().parents[2] / ".env"
    if not env_path.exists():
        return

    from dotenv import load_dotenv

    load_dotenv(env_path, override=True)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_non_negative_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    raw = value.strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


def _parse_group_size(value: str | None) -> int:
    size = _parse_non_negative_int(value, default=DEFAULT_PUBLISH_GROUP_SIZE) or DEFAULT_PUBLISH_GROUP_SIZE
    return min(size, STORE_WRITE_GROUP_LIMIT - 1)


@dataclass(frozen=True)
class Settings:
    env: str
    app_name: str
    cors_origins: list[str]
    upload_dir: Path
    database_url: str | None
    storage_backend: str
    llm_backend: str
    gemini_api_key: str | None
    gemini_model: str
    llm_timeout_seconds: int
    llm_max_retries: int
    publish_group_size: int
    log_level: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()

    env = os.getenv("QUIZ_ENV", "development")
    cors = os.getenv("QUIZ_CORS_ORIGINS", "http://localhost:5173")
    upload_dir = Path(os.getenv("QUIZ_UPLOAD_DIR", "backend/uploads"))
    storage_backend = os.getenv("QUIZ_STORAGE_BACKEND", "local").strip().lower() or "local"
    llm_backend = os.getenv("QUIZ_LLM_BACKEND", "mock").strip().lower() or "mock"
    llm_timeout_seconds = _parse_non_negative_int(os.getenv("QUIZ_LLM_TIMEOUT_SECONDS"), default=90) or 90
    llm_max_retries = _parse_non_negative_int(os.getenv("QUIZ_LLM_MAX_RETRIES"), default=1)
    log_level = os.getenv("QUIZ_LOG_LEVEL", "INFO").strip().upper() or "INFO"

    return Settings(
        env=env,
        app_name="Quiz Portal API",
        cors_origins=_split_csv(cors),
        upload_dir=upload_dir,
        database_url=os.getenv("DATABASE_URL") or None,
        storage_backend=storage_backend,
        llm_backend=llm_backend,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        llm_timeout_seconds=llm_timeout_seconds,
        llm_max_retries=llm_max_retries,
        publish_group_size=_parse_group_size(os.getenv("QUIZ_PUBLISH_GROUP_SIZE")),
        log_level=log_level,
    )
