# pyright: reportMissingImports=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownParameterType=false
from __future__ import annotations

import logging
import os

from celery import Celery
from celery.signals import setup_logging, worker_init, worker_shutdown
from kombu import Queue

from mindhit.core.config import settings
from mindhit.core.logging import configure_logging


logger = logging.getLogger(__name__)


TASK_MODULES = (
    "mindhit.workers.tasks.sessions",
    "mindhit.workers.tasks.urls",
    "mindhit.workers.tasks.mindmaps",
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val in {"1", "true", "yes", "on"}:
        return True
    if val in {"0", "false", "no", "off"}:
        return False
    return default


def queues_by_weight(weights: dict[str, int]) -> tuple[Queue, ...]:
    # Celery consumes declared queues in order; heavier queues go first.
    ordered = sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))
    return tuple(Queue(name, routing_key=name) for name, _ in ordered)


def create_celery_app() -> Celery:
    broker_url = os.getenv("CELERY_BROKER_URL", settings.redis_url)
    result_backend = os.getenv("CELERY_RESULT_BACKEND", broker_url)

    app = Celery("mindhit", broker=broker_url, backend=result_backend, include=list(TASK_MODULES))

    app.conf.task_always_eager = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
    app.conf.task_eager_propagates = _env_bool("CELERY_TASK_EAGER_PROPAGATES", True)

    app.conf.timezone = os.getenv("CELERY_TIMEZONE", "UTC")
    app.conf.enable_utc = True
    app.conf.accept_content = ["json"]
    app.conf.task_serializer = "json"
    app.conf.result_serializer = "json"

    app.conf.task_queues = queues_by_weight(settings.job_queues)
    app.conf.task_default_queue = "default" if "default" in settings.job_queues else app.conf.task_queues[0].name
    app.conf.worker_concurrency = settings.worker_concurrency
    app.conf.worker_prefetch_multiplier = 1
    app.conf.task_acks_late = True
    app.conf.task_reject_on_worker_lost = True
    app.conf.worker_soft_shutdown_timeout = float(settings.worker_shutdown_timeout_seconds)

    app.conf.beat_schedule = {
        "session-cleanup": {
            "task": "session:cleanup",
            "schedule": float(settings.session_cleanup_interval_seconds),
            "kwargs": {"max_age_hours": settings.session_cleanup_max_age_hours},
            "options": {"queue": "low", "headers": {"max_retry": 1}},
        }
    }

    return app


celery_app = create_celery_app()


@setup_logging.connect
def _setup_worker_logging(**_: object) -> None:
    configure_logging(settings.log_level)


@worker_init.connect
def _on_worker_init(**_: object) -> None:
    if settings.is_prod_env():
        return
    from mindhit.db.session import init_db
    from mindhit.services.aiconfig_service import get_config_service

    init_db()
    seeded = get_config_service().seed_defaults()
    logger.info("worker bootstrap complete seeded_ai_configs=%s", seeded)


@worker_shutdown.connect
def _on_worker_shutdown(**_: object) -> None:
    from mindhit.ai.dispatcher import close_dispatcher
    from mindhit.db.session import engine

    close_dispatcher()
    engine.dispose()
    logger.info("worker resources released")
