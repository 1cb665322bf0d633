from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mindhit.core.errors import InvalidStateTransition, NotFound
from mindhit.db.models import MindmapGraph, RecordingSession, _utcnow_naive
from mindhit.services import session_service
from mindhit.services.mindmap_layout import MindmapData
from mindhit.workers import bus


logger = logging.getLogger(__name__)

READY_STATUSES: frozenset[str] = frozenset({"processing", "completed", "failed"})
IN_FLIGHT_STATUSES: frozenset[str] = frozenset({"pending", "running"})


def _for_session(db: Session, session_id: str) -> MindmapGraph | None:
    return db.execute(
        select(MindmapGraph).where(MindmapGraph.session_id == session_id)
    ).scalar_one_or_none()


def get_by_session(db: Session, session_id: str, user_id: str) -> MindmapGraph:
    _ = session_service.get_owned(db, session_id, user_id)
    row = _for_session(db, session_id)
    if row is None:
        raise NotFound("mindmap not found")
    return row


def get_or_create_for_session(
    db: Session, session_id: str, user_id: str
) -> tuple[MindmapGraph, bool]:
    sess = session_service.get_owned(db, session_id, user_id)
    if sess.session_status not in READY_STATUSES:
        raise InvalidStateTransition("session not ready for mindmap generation")

    row = _for_session(db, session_id)
    if row is not None:
        return row, False

    row = MindmapGraph(session_id=session_id, status="pending", nodes=[], graph_edges=[], layout={})
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # The worker committed the graph first.
        db.rollback()
        existing = _for_session(db, session_id)
        if existing is None:
            raise
        return existing, False
    return row, True


def reset_for_regeneration(
    db: Session, sess: RecordingSession, row: MindmapGraph, *, bump_version: bool = True
) -> MindmapGraph:
    """Clear the graph, put the session back into processing and enqueue a new run."""
    if sess.session_status != "processing":
        _ = session_service.transition(sess, "regenerate")
    row.status = "pending"
    row.error_message = None
    row.nodes = []
    row.graph_edges = []
    row.layout = {}
    if bump_version:
        row.version = (row.version or 0) + 1
    row.updated_at = _utcnow_naive()
    db.commit()

    _ = bus.enqueue("mindmap:generate", {"session_id": sess.id})
    logger.info("mindmap regeneration requested session_id=%s version=%s", sess.id, row.version)
    return row


def request_generation(
    db: Session, session_id: str, user_id: str, *, force: bool = False
) -> MindmapGraph:
    row, created = get_or_create_for_session(db, session_id, user_id)
    sess = session_service.get_owned(db, session_id, user_id)

    if not force:
        if row.status == "completed":
            return row
        if sess.session_status == "processing" and (created or row.status in IN_FLIGHT_STATUSES):
            # stop() already enqueued the job for this run.
            return row

    return reset_for_regeneration(db, sess, row, bump_version=not created)


def complete_generation(
    db: Session, sess: RecordingSession, data: MindmapData
) -> MindmapGraph:
    """Store the finished graph and complete the session in one commit."""
    row = _for_session(db, sess.id)
    if row is None:
        row = MindmapGraph(session_id=sess.id, version=1)
        db.add(row)
    now = _utcnow_naive()
    row.status = "completed"
    row.error_message = None
    row.nodes = data.nodes
    row.graph_edges = data.edges
    row.layout = data.layout
    row.generated_at = now
    row.updated_at = now
    _ = session_service.transition(sess, "complete")
    db.commit()
    return row


def mark_failed(db: Session, session_id: str, error_message: str) -> None:
    """Final failure of a generation run: session -> failed, mindmap -> failed."""
    sess = db.get(RecordingSession, session_id)
    if sess is None:
        logger.warning("mindmap failure for missing session session_id=%s", session_id)
        return
    if sess.session_status != "processing":
        logger.info(
            "mindmap failure ignored session_id=%s status=%s", session_id, sess.session_status
        )
        return

    _ = session_service.transition(sess, "fail")
    row = _for_session(db, session_id)
    if row is None:
        row = MindmapGraph(session_id=session_id, version=1)
        db.add(row)
    row.status = "failed"
    row.error_message = error_message[:4000]
    row.nodes = []
    row.graph_edges = []
    row.layout = {}
    row.updated_at = _utcnow_naive()
    db.commit()
    logger.warning("mindmap generation failed session_id=%s err=%s", session_id, error_message)
