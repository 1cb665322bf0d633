# pyright: reportMissingImports=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOptions:
    queue: str
    max_retry: int
    timeout: int | None = None


JOB_DEFAULTS: dict[str, JobOptions] = {
    "mindmap:generate": JobOptions(queue="critical", max_retry=3, timeout=300),
    "url:tag_extraction": JobOptions(queue="default", max_retry=3, timeout=120),
    "session:cleanup": JobOptions(queue="low", max_retry=1),
}


def enqueue(
    job_type: str,
    payload: dict[str, object],
    *,
    max_retry: int | None = None,
    queue: str | None = None,
    timeout: int | None = None,
    process_at: datetime | None = None,
    process_in: float | None = None,
) -> str:
    """Submit a job to the worker; returns the task id."""
    defaults = JOB_DEFAULTS.get(job_type)
    if defaults is None:
        raise ValueError(f"unknown job type {job_type!r}")
    if process_at is not None and process_in is not None:
        raise ValueError("process_at and process_in are mutually exclusive")

    from mindhit.workers.celery_app import celery_app

    if job_type not in celery_app.tasks:
        celery_app.loader.import_default_modules()
    task = celery_app.tasks[job_type]

    retries = defaults.max_retry if max_retry is None else max(0, max_retry)
    limit = timeout if timeout is not None else defaults.timeout
    options: dict[str, object] = {
        "kwargs": dict(payload),
        "queue": queue or defaults.queue,
        "headers": {"max_retry": retries},
    }
    if limit is not None:
        # Soft limit fires first so the handler can be retried cleanly.
        options["soft_time_limit"] = limit
        options["time_limit"] = limit + 30
    if process_at is not None:
        options["eta"] = process_at
    elif process_in is not None:
        options["countdown"] = process_in

    result = task.apply_async(**options)
    logger.info(
        "job enqueued job_type=%s task_id=%s queue=%s max_retry=%s",
        job_type,
        result.id,
        options["queue"],
        retries,
    )
    return str(result.id)
