import os
import sys
from pathlib import Path

import pytest


# Keep tests deterministic and local-only.
os.environ["QUIZ_SKIP_DOTENV"] = "1"
os.environ["QUIZ_STORAGE_BACKEND"] = "local"
os.environ["QUIZ_LLM_BACKEND"] = "mock"
os.environ["QUIZ_LLM_TIMEOUT_SECONDS"] = "5"
os.environ["QUIZ_LLM_MAX_RETRIES"] = "0"
os.environ["QUIZ_PUBLISH_GROUP_SIZE"] = "450"
os.environ["GEMINI_API_KEY"] = ""

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ["QUIZ_UPLOAD_DIR"] = str(BACKEND_ROOT / "test_uploads")

TEST_DB_PATH = BACKEND_ROOT / "test_quiz_portal.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()


@pytest.fixture(autouse=True)
def clean_database():
    from quizportal.api.v2.dependencies import clear_caches
    from quizportal.infra.db import models as _models  # noqa: F401
    from quizportal.infra.db.base import Base
    from quizportal.infra.db.session import get_engine

    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    clear_caches()
    yield
    clear_caches()


@pytest.fixture
def directory():
    from quizportal.infra.identity.database import DatabaseIdentityDirectory

    return DatabaseIdentityDirectory()


@pytest.fixture
def reviewer(directory):
    from quizportal.domain.auth import Identity

    user = directory.upsert_user(uid="u_admin", email="admin@example.com", claims={"admin": True})
    return Identity(uid=user.uid, email=user.email, claims=user.claims)


@pytest.fixture
def operator(directory):
    from quizportal.domain.auth import Identity

    user = directory.upsert_user(uid="u_ops", email="ops@example.com", claims={"operational": True})
    return Identity(uid=user.uid, email=user.email, claims=user.claims)


@pytest.fixture
def outsider(directory):
    from quizportal.domain.auth import Identity

    user = directory.upsert_user(uid="u_guest", email="guest@example.com", claims={})
    return Identity(uid=user.uid, email=user.email, claims=user.claims)
