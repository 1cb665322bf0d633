# pyright: reportMissingImports=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUntypedFunctionDecorator=false

from __future__ import annotations

import logging

from celery import Task
from sqlalchemy.orm import Session

from mindhit.core.config import settings
from mindhit.db.session import engine
from mindhit.services import session_service
from mindhit.workers.celery_app import celery_app
from mindhit.workers.errors import NonRetryableJobError
from mindhit.workers.jobs import run_job


logger = logging.getLogger(__name__)


def handle_session_cleanup(payload: dict[str, object]) -> None:
    raw = payload.get("max_age_hours", settings.session_cleanup_max_age_hours)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise NonRetryableJobError(f"invalid max_age_hours {raw!r}")

    logger.info("starting session cleanup max_age_hours=%s", raw)
    with Session(engine) as db:
        count = session_service.fail_stale(db, max_age_hours=raw)
    logger.info("session cleanup completed cleaned_count=%s", count)


@celery_app.task(name="session:cleanup", bind=True)
def session_cleanup(self: Task, *, max_age_hours: int = 24) -> dict[str, object]:
    return run_job(
        self,
        job_type="session:cleanup",
        payload={"max_age_hours": max_age_hours},
        handler=handle_session_cleanup,
    )
