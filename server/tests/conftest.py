# pyright: reportUnusedFunction=false
from __future__ import annotations

from collections.abc import Callable, Iterator
import os
from pathlib import Path
import sys
import tempfile

import pytest
from _pytest.monkeypatch import MonkeyPatch


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read once at import time, so the environment must be final here.
_DB_DIR = tempfile.mkdtemp(prefix="mindhit-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/mindhit.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
for _key in ("OPENAI_API_KEY", "GEMINI_API_KEY", "ANTHROPIC_API_KEY"):
    _ = os.environ.pop(_key, None)


def _ensure_test_schema() -> None:
    from mindhit.db.session import init_db

    init_db()


_ensure_test_schema()


@pytest.fixture(autouse=True)
def _isolate_db() -> None:
    from mindhit.db.base import Base
    from mindhit.db.session import engine

    tables = list(Base.metadata.sorted_tables)
    if not tables:
        return

    with engine.begin() as conn:
        for t in reversed(tables):
            _ = conn.execute(t.delete())


@pytest.fixture(autouse=True)
def _reset_ai() -> Iterator[None]:
    from mindhit.ai.dispatcher import set_dispatcher
    from mindhit.services.aiconfig_service import get_config_service

    get_config_service().invalidate_cache()
    yield
    _ = set_dispatcher(None)
    get_config_service().invalidate_cache()


@pytest.fixture(autouse=True)
def enqueued(monkeypatch: MonkeyPatch) -> list[tuple[str, dict[str, object]]]:
    """Jobs submitted through the bus during the test, in order."""
    from mindhit.workers import bus

    jobs: list[tuple[str, dict[str, object]]] = []

    def _capture(job_type: str, payload: dict[str, object], **_: object) -> str:
        if job_type not in bus.JOB_DEFAULTS:
            raise ValueError(f"unknown job type {job_type!r}")
        jobs.append((job_type, dict(payload)))
        return f"test-task-{len(jobs)}"

    monkeypatch.setattr(bus, "enqueue", _capture)
    return jobs


@pytest.fixture()
def make_user() -> Callable[..., str]:
    from mindhit.db.models import User
    from mindhit.db.session import SessionLocal

    counter = {"n": 0}

    def _make(*, email: str | None = None, status: str = "active") -> str:
        counter["n"] += 1
        with SessionLocal() as db:
            user = User(email=email or f"user{counter['n']}@example.com", status=status)
            db.add(user)
            db.commit()
            return user.id

    return _make


@pytest.fixture()
def user_id(make_user: Callable[..., str]) -> str:
    return make_user()


@pytest.fixture()
def auth_for() -> Callable[[str], dict[str, str]]:
    from mindhit.core.config import settings
    from mindhit.core.security import issue_user_token

    def _headers(uid: str) -> dict[str, str]:
        token = issue_user_token(uid, settings.auth_access_token_secret, 900)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def auth(user_id: str, auth_for: Callable[[str], dict[str, str]]) -> dict[str, str]:
    return auth_for(user_id)


@pytest.fixture()
def client():
    from fastapi.testclient import TestClient

    from mindhit.main import app

    return TestClient(app)


@pytest.fixture()
def ai_configs() -> None:
    from mindhit.services.aiconfig_service import get_config_service

    _ = get_config_service().seed_defaults()
