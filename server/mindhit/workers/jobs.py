# pyright: reportMissingImports=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
"""Retry and dead-letter policy shared by every Celery task.

Handlers are plain functions over the payload dict. They raise
RetryableJobError (or anything unexpected) for transient failures and
NonRetryableJobError for permanent ones.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import time
from typing import Protocol

from sqlalchemy.orm import Session

from mindhit.db.models import DeadJob
from mindhit.db.session import engine
from mindhit.metrics.prometheus import record_job
from mindhit.workers.bus import JOB_DEFAULTS
from mindhit.workers.errors import NonRetryableJobError


logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 600

METRIC_LABELS: dict[str, str] = {
    "url:tag_extraction": "tag_extraction",
    "mindmap:generate": "mindmap",
    "session:cleanup": "cleanup",
}

Handler = Callable[[dict[str, object]], None]
DeadCallback = Callable[[dict[str, object], str], None]


class BoundTask(Protocol):
    request: object

    def retry(self, *, exc: BaseException, countdown: float, max_retries: int) -> BaseException: ...


def backoff_seconds(retries: int) -> int:
    return min(MAX_BACKOFF_SECONDS, (2**retries) * 10)


def max_retry_for(request: object, job_type: str) -> int:
    raw = getattr(request, "max_retry", None)
    if raw is None:
        headers = getattr(request, "headers", None) or {}
        if isinstance(headers, dict):
            raw = headers.get("max_retry")
    if raw is None:
        defaults = JOB_DEFAULTS.get(job_type)
        return defaults.max_retry if defaults is not None else 0
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return 0


def dead_letter(
    *,
    task_id: str | None,
    job_type: str,
    payload: dict[str, object],
    error: str,
    retries: int,
    on_dead: DeadCallback | None = None,
) -> None:
    with Session(engine) as db:
        db.add(
            DeadJob(
                task_id=task_id,
                job_type=job_type,
                payload=dict(payload),
                error=error[:4000],
                retries=retries,
            )
        )
        db.commit()
    logger.error(
        "job moved to dead set job_type=%s task_id=%s retries=%s err=%s",
        job_type,
        task_id,
        retries,
        error,
    )
    if on_dead is not None:
        on_dead(payload, error)


def run_job(
    task: BoundTask,
    *,
    job_type: str,
    payload: dict[str, object],
    handler: Handler,
    on_dead: DeadCallback | None = None,
) -> dict[str, object]:
    request = task.request
    task_id = getattr(request, "id", None)
    retries = int(getattr(request, "retries", 0) or 0)
    label = METRIC_LABELS.get(job_type, job_type)
    started = time.perf_counter()

    try:
        handler(payload)
    except NonRetryableJobError as e:
        record_job(job_type=label, status="failed", duration_seconds=time.perf_counter() - started)
        dead_letter(
            task_id=task_id,
            job_type=job_type,
            payload=payload,
            error=str(e),
            retries=retries,
            on_dead=on_dead,
        )
        return {"ok": False, "dead": True}
    except Exception as e:  # SoftTimeLimitExceeded included
        elapsed = time.perf_counter() - started
        limit = max_retry_for(request, job_type)
        if retries >= limit:
            record_job(job_type=label, status="failed", duration_seconds=elapsed)
            dead_letter(
                task_id=task_id,
                job_type=job_type,
                payload=payload,
                error=str(e) or type(e).__name__,
                retries=retries,
                on_dead=on_dead,
            )
            return {"ok": False, "dead": True}

        record_job(job_type=label, status="retry", duration_seconds=elapsed)
        countdown = backoff_seconds(retries)
        logger.warning(
            "job failed, retrying job_type=%s task_id=%s attempt=%s countdown=%s err=%s",
            job_type,
            task_id,
            retries + 1,
            countdown,
            e,
        )
        raise task.retry(exc=e, countdown=countdown, max_retries=limit)

    record_job(job_type=label, status="success", duration_seconds=time.perf_counter() - started)
    return {"ok": True}
