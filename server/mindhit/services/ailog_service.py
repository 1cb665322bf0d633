from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mindhit.ai.errors import ProviderError
from mindhit.ai.types import ChatRequest, ChatResponse
from mindhit.db.models import AILog


logger = logging.getLogger(__name__)


# Cents per million tokens (input, output).
COST_RATES_CENTS: dict[str, tuple[int, int]] = {
    "openai": (250, 1000),
    "claude": (300, 1500),
    "gemini": (35, 105),
}


def estimate_cost_cents(provider: str, input_tokens: int, output_tokens: int) -> int:
    rates = COST_RATES_CENTS.get(provider)
    if rates is None:
        return 0
    in_rate, out_rate = rates
    return (input_tokens * in_rate + output_tokens * out_rate) // 1_000_000


def _parse_uuid(raw: str | None) -> str | None:
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return None


@dataclass(frozen=True)
class UsageStats:
    provider: str
    request_count: int
    total_tokens: int
    total_cost_cents: int


class AILogWriter:
    """Persists one ai_logs row per provider attempt in its own transaction."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory: Callable[[], Session] = session_factory

    def __call__(
        self,
        *,
        task: str,
        provider: str,
        model: str,
        request: ChatRequest,
        response: ChatResponse | None,
        error: Exception | None,
        latency_ms: int,
    ) -> None:
        status = "success"
        error_message: str | None = None
        if error is not None:
            status = "timeout" if isinstance(error, ProviderError) and error.timeout else "error"
            error_message = str(error)[:4000]

        row = AILog(
            user_id=_parse_uuid(request.metadata.get("user_id")),
            session_id=_parse_uuid(request.metadata.get("session_id")),
            task_type=task,
            provider=provider,
            model=(response.model if response is not None else model) or model,
            system_prompt=request.system_prompt or None,
            user_prompt=request.user_prompt or None,
            status=status,
            error_message=error_message,
            latency_ms=max(0, latency_ms),
        )
        if response is not None:
            row.content = response.content
            row.thinking = response.thinking or None
            row.input_tokens = response.input_tokens
            row.output_tokens = response.output_tokens
            row.thinking_tokens = response.thinking_tokens
            row.total_tokens = response.total_tokens
            row.latency_ms = max(0, response.latency_ms)
            row.request_id = response.request_id
            row.estimated_cost_cents = estimate_cost_cents(
                provider, response.input_tokens, response.output_tokens
            )

        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
        except Exception:
            # A failed audit write must not fail the AI call itself.
            logger.exception("failed to log ai request task=%s provider=%s", task, provider)


def list_by_user(db: Session, user_id: str, *, limit: int = 50, offset: int = 0) -> list[AILog]:
    stmt = (
        select(AILog)
        .where(AILog.user_id == user_id)
        .order_by(AILog.created_at.desc())
        .limit(max(1, min(limit, 200)))
        .offset(max(0, offset))
    )
    return list(db.execute(stmt).scalars().all())


def list_by_session(db: Session, session_id: str) -> list[AILog]:
    stmt = select(AILog).where(AILog.session_id == session_id).order_by(AILog.created_at.asc())
    return list(db.execute(stmt).scalars().all())


def usage_summary(db: Session, user_id: str, *, since: datetime | None = None) -> list[UsageStats]:
    stmt = select(
        AILog.provider,
        func.count(AILog.id),
        func.coalesce(func.sum(AILog.total_tokens), 0),
        func.coalesce(func.sum(AILog.estimated_cost_cents), 0),
    ).where(AILog.user_id == user_id)
    if since is not None:
        stmt = stmt.where(AILog.created_at >= since)
    stmt = stmt.group_by(AILog.provider).order_by(AILog.provider.asc())

    return [
        UsageStats(
            provider=str(provider),
            request_count=int(count or 0),
            total_tokens=int(tokens or 0),
            total_cost_cents=int(cost or 0),
        )
        for provider, count, tokens, cost in db.execute(stmt).all()
    ]
