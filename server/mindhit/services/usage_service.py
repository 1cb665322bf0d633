from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mindhit.core.config import settings
from mindhit.core.errors import UsageLimitExceeded, ValidationFailure
from mindhit.db.models import USAGE_OPERATIONS, TokenUsage, User, _utcnow_naive


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitStatus:
    tokens_used: int
    token_limit: int
    is_unlimited: bool
    percent_used: float
    can_use_ai: bool


@dataclass(frozen=True)
class UsageSummary:
    period_start: datetime
    period_end: datetime
    tokens_used: int
    token_limit: int
    percent_used: float
    is_unlimited: bool
    can_use_ai: bool
    by_operation: dict[str, int] = field(default_factory=dict)


def _period_days() -> int:
    return max(1, settings.usage_period_days)


def period_start_for(db: Session, user_id: str, at: datetime | None = None) -> datetime:
    """Start of the rolling usage period containing `at`, anchored on signup."""
    at = at or _utcnow_naive()
    user = db.get(User, user_id)
    if user is None:
        return at.replace(hour=0, minute=0, second=0, microsecond=0)

    days = _period_days()
    elapsed_days = (at - user.created_at).days
    if elapsed_days < 0:
        return user.created_at
    periods = elapsed_days // days
    return user.created_at + timedelta(days=periods * days)


def record_usage(
    db: Session,
    *,
    user_id: str,
    operation: str,
    tokens: int,
    session_id: str | None = None,
    ai_model: str | None = None,
) -> TokenUsage | None:
    """Add a usage row to the caller's transaction; caller commits."""
    if operation not in USAGE_OPERATIONS:
        raise ValidationFailure(f"unknown usage operation {operation!r}")
    if tokens <= 0:
        logger.info("usage record skipped user_id=%s operation=%s tokens=%s", user_id, operation, tokens)
        return None

    row = TokenUsage(
        user_id=user_id,
        session_id=session_id,
        operation=operation,
        tokens_used=tokens,
        ai_model=ai_model or None,
        period_start=period_start_for(db, user_id),
    )
    db.add(row)
    db.flush()
    return row


def _tokens_since(db: Session, user_id: str, since: datetime) -> int:
    stmt = select(func.coalesce(func.sum(TokenUsage.tokens_used), 0)).where(
        TokenUsage.user_id == user_id,
        TokenUsage.period_start >= since,
    )
    return int(db.execute(stmt).scalar() or 0)


def check_limit(db: Session, user_id: str) -> LimitStatus:
    limit = settings.usage_token_limit
    is_unlimited = limit <= 0
    used = _tokens_since(db, user_id, period_start_for(db, user_id))

    percent = 0.0
    if not is_unlimited:
        percent = float(used) / float(limit) * 100

    return LimitStatus(
        tokens_used=used,
        token_limit=max(0, limit),
        is_unlimited=is_unlimited,
        percent_used=percent,
        can_use_ai=is_unlimited or used < limit,
    )


def ensure_can_use_ai(db: Session, user_id: str) -> LimitStatus:
    status = check_limit(db, user_id)
    if not status.can_use_ai:
        raise UsageLimitExceeded(tokens_used=status.tokens_used, token_limit=status.token_limit)
    return status


def current_usage(db: Session, user_id: str) -> UsageSummary:
    start = period_start_for(db, user_id)
    rows = db.execute(
        select(TokenUsage.operation, func.sum(TokenUsage.tokens_used))
        .where(TokenUsage.user_id == user_id, TokenUsage.period_start >= start)
        .group_by(TokenUsage.operation)
    ).all()
    by_operation = {str(op): int(total or 0) for op, total in rows}

    status = check_limit(db, user_id)
    return UsageSummary(
        period_start=start,
        period_end=start + timedelta(days=_period_days()),
        tokens_used=sum(by_operation.values()),
        token_limit=status.token_limit,
        percent_used=status.percent_used,
        is_unlimited=status.is_unlimited,
        can_use_ai=status.can_use_ai,
        by_operation=by_operation,
    )
