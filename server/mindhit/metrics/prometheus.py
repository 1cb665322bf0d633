from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest


_SESSIONS_CREATED = Counter(
    "mindhit_sessions_created_total",
    "Total recording sessions started.",
)
_SESSIONS_COMPLETED = Counter(
    "mindhit_sessions_completed_total",
    "Total sessions that reached a terminal state.",
    labelnames=("status",),
)

_EVENTS_RECEIVED = Counter(
    "mindhit_events_received_total",
    "Total client events received, by event type.",
    labelnames=("event_type",),
)
_EVENT_BATCH_SIZE = Histogram(
    "mindhit_event_batch_size",
    "Number of events per ingested batch.",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
)

_AI_REQUESTS = Counter(
    "mindhit_ai_requests_total",
    "Total AI provider calls.",
    labelnames=("provider", "task", "status"),
)
_AI_LATENCY = Histogram(
    "mindhit_ai_request_latency_seconds",
    "AI provider call latency in seconds.",
    labelnames=("provider", "task"),
    buckets=(0.25, 0.5, 1, 2, 5, 10, 20, 40, 60, 120),
)
_AI_TOKENS = Counter(
    "mindhit_ai_tokens_total",
    "Total tokens consumed by AI provider calls.",
    labelnames=("provider", "task"),
)

_JOB_DURATION = Histogram(
    "mindhit_worker_job_duration_seconds",
    "Worker job handler duration in seconds.",
    labelnames=("job_type",),
)
_JOBS_PROCESSED = Counter(
    "mindhit_worker_jobs_processed_total",
    "Total worker jobs processed, by outcome.",
    labelnames=("job_type", "status"),
)


def record_session_created() -> None:
    _SESSIONS_CREATED.inc()


def record_session_completed(*, status: str) -> None:
    _SESSIONS_COMPLETED.labels(status).inc()


def record_event_batch(*, event_types: list[str]) -> None:
    _EVENT_BATCH_SIZE.observe(float(len(event_types)))
    for event_type in event_types:
        _EVENTS_RECEIVED.labels(event_type or "unknown").inc()


def record_ai_request(
    *,
    provider: str,
    task: str,
    status: str,
    latency_ms: int,
    total_tokens: int | None,
) -> None:
    _AI_REQUESTS.labels(provider, task, status).inc()
    if latency_ms >= 0:
        _AI_LATENCY.labels(provider, task).observe(float(latency_ms) / 1000.0)
    if total_tokens is not None and total_tokens > 0:
        _AI_TOKENS.labels(provider, task).inc(total_tokens)


def record_job(*, job_type: str, status: str, duration_seconds: float) -> None:
    _JOBS_PROCESSED.labels(job_type, status).inc()
    if duration_seconds >= 0:
        _JOB_DURATION.labels(job_type).observe(duration_seconds)


def metrics_payload() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), str(CONTENT_TYPE_LATEST)
