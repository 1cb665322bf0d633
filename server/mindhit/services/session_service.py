from __future__ import annotations

from datetime import timedelta
import logging
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from mindhit.core.errors import InvalidStateTransition, NotFound, NotOwned
from mindhit.db.models import PageVisit, RecordingSession, _utcnow_naive
from mindhit.metrics.prometheus import record_session_completed, record_session_created
from mindhit.workers import bus


logger = logging.getLogger(__name__)


SessionStatus = Literal["recording", "paused", "processing", "completed", "failed"]
Action = Literal["pause", "resume", "stop", "complete", "fail", "expire", "regenerate"]

ACTIVE = "active"
INACTIVE = "inactive"

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
ENDED_STATUSES: frozenset[str] = frozenset({"processing", "completed", "failed"})
ACCEPTING_EVENTS: frozenset[str] = frozenset({"recording", "paused"})

# (from, action) -> to. Anything not listed is an invalid transition.
TRANSITIONS: dict[tuple[str, str], SessionStatus] = {
    ("recording", "pause"): "paused",
    ("paused", "resume"): "recording",
    ("recording", "stop"): "processing",
    ("paused", "stop"): "processing",
    ("processing", "complete"): "completed",
    ("processing", "fail"): "failed",
    ("recording", "expire"): "failed",
    ("paused", "expire"): "failed",
    ("completed", "regenerate"): "processing",
    ("failed", "regenerate"): "processing",
}


def next_status(current: str, action: str) -> SessionStatus:
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidStateTransition(f"cannot {action} a session in {current} state")
    return target


def transition(sess: RecordingSession, action: Action) -> RecordingSession:
    """Apply a state change to a loaded session; caller commits."""
    target = next_status(sess.session_status, action)
    now = _utcnow_naive()
    sess.session_status = target
    if target in ENDED_STATUSES and sess.ended_at is None:
        sess.ended_at = now
    sess.updated_at = now
    if target in TERMINAL_STATUSES:
        record_session_completed(status=target)
    return sess


def _active_sessions():
    return select(RecordingSession).where(RecordingSession.status != INACTIVE)


def get_owned(db: Session, session_id: str, user_id: str) -> RecordingSession:
    sess = db.execute(_active_sessions().where(RecordingSession.id == session_id)).scalar_one_or_none()
    if sess is None:
        raise NotFound("session not found")
    if sess.user_id != user_id:
        raise NotOwned("session not owned by user")
    return sess


def start(db: Session, user_id: str) -> RecordingSession:
    now = _utcnow_naive()
    sess = RecordingSession(
        user_id=user_id,
        session_status="recording",
        started_at=now,
        status=ACTIVE,
        created_at=now,
        updated_at=now,
    )
    db.add(sess)
    db.commit()
    record_session_created()
    logger.info("session started session_id=%s user_id=%s", sess.id, user_id)
    return sess


def get(db: Session, session_id: str, user_id: str) -> RecordingSession:
    return get_owned(db, session_id, user_id)


def get_with_details(db: Session, session_id: str, user_id: str) -> RecordingSession:
    stmt = (
        _active_sessions()
        .where(RecordingSession.id == session_id)
        .options(
            selectinload(RecordingSession.user),
            selectinload(RecordingSession.page_visits).selectinload(PageVisit.url),
            selectinload(RecordingSession.highlights),
            selectinload(RecordingSession.mindmap),
        )
    )
    sess = db.execute(stmt).scalar_one_or_none()
    if sess is None:
        raise NotFound("session not found")
    if sess.user_id != user_id:
        raise NotOwned("session not owned by user")
    return sess


def list_by_user(db: Session, user_id: str, *, limit: int = 20, offset: int = 0) -> list[RecordingSession]:
    stmt = (
        _active_sessions()
        .where(RecordingSession.user_id == user_id)
        .order_by(RecordingSession.created_at.desc(), RecordingSession.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.execute(stmt).scalars().all())


def update_details(
    db: Session,
    session_id: str,
    user_id: str,
    *,
    title: str | None = None,
    description: str | None = None,
) -> RecordingSession:
    sess = get_owned(db, session_id, user_id)
    if title is not None:
        sess.title = title
    if description is not None:
        sess.description = description
    sess.updated_at = _utcnow_naive()
    db.commit()
    return sess


def pause(db: Session, session_id: str, user_id: str) -> RecordingSession:
    sess = get_owned(db, session_id, user_id)
    _ = transition(sess, "pause")
    db.commit()
    return sess


def resume(db: Session, session_id: str, user_id: str) -> RecordingSession:
    sess = get_owned(db, session_id, user_id)
    _ = transition(sess, "resume")
    db.commit()
    return sess


def stop(db: Session, session_id: str, user_id: str) -> RecordingSession:
    sess = get_owned(db, session_id, user_id)
    if sess.session_status in ENDED_STATUSES:
        # Replayed stop: report current state, do not enqueue again.
        logger.info(
            "session stop replayed session_id=%s status=%s", sess.id, sess.session_status
        )
        return sess

    _ = transition(sess, "stop")
    db.commit()

    _ = bus.enqueue("mindmap:generate", {"session_id": sess.id})
    logger.info("session stopped session_id=%s mindmap job enqueued", sess.id)
    return sess


def delete(db: Session, session_id: str, user_id: str) -> None:
    sess = get_owned(db, session_id, user_id)
    now = _utcnow_naive()
    sess.status = INACTIVE
    sess.deleted_at = now
    sess.updated_at = now
    db.commit()
    logger.info("session soft-deleted session_id=%s", sess.id)


def fail_stale(db: Session, *, max_age_hours: int) -> int:
    """Mark recording/paused sessions idle for longer than max_age_hours as failed."""
    now = _utcnow_naive()
    cutoff = now - timedelta(hours=max_age_hours)
    stale_from = [src for (src, action) in TRANSITIONS if action == "expire"]
    stmt = (
        update(RecordingSession)
        .where(
            RecordingSession.session_status.in_(stale_from),
            RecordingSession.updated_at < cutoff,
        )
        .values(session_status="failed", ended_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    count = int(result.rowcount or 0)
    for _ in range(count):
        record_session_completed(status="failed")
    return count
