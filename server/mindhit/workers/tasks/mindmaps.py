# pyright: reportMissingImports=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUntypedFunctionDecorator=false

from __future__ import annotations

import logging

from celery import Task
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from mindhit.ai.dispatcher import get_dispatcher
from mindhit.ai.errors import AIError, InvalidJSON
from mindhit.ai.types import ChatOptions, ChatRequest
from mindhit.core.errors import UsageLimitExceeded
from mindhit.db.models import PageVisit, RecordingSession
from mindhit.db.session import engine
from mindhit.services import mindmap_service, usage_service
from mindhit.services.mindmap_layout import PageContext, build_layout, build_prompt, parse_graph
from mindhit.workers.celery_app import celery_app
from mindhit.workers.errors import NonRetryableJobError, RetryableJobError
from mindhit.workers.jobs import run_job


logger = logging.getLogger(__name__)


def _load_session(db: Session, session_id: str) -> RecordingSession | None:
    stmt = (
        select(RecordingSession)
        .where(RecordingSession.id == session_id)
        .options(
            selectinload(RecordingSession.page_visits).selectinload(PageVisit.url),
            selectinload(RecordingSession.highlights),
            selectinload(RecordingSession.user),
        )
    )
    return db.execute(stmt).scalar_one_or_none()


def collect_context(sess: RecordingSession) -> tuple[list[PageContext], dict[str, int], list[str]]:
    pages: list[PageContext] = []
    durations: dict[str, int] = {}
    for pv in sess.page_visits:
        url = pv.url
        if url is None:
            continue
        duration_ms = pv.duration_ms or 0
        if pv.duration_ms is not None:
            durations[url.id] = durations.get(url.id, 0) + pv.duration_ms
        pages.append(
            PageContext(
                url_id=url.id,
                title=url.title or "",
                url=url.url,
                keywords=tuple(url.keywords or ()),
                summary=url.summary or "",
                duration_ms=duration_ms,
            )
        )
    highlights = [h.text for h in sess.highlights if h.text]
    return pages, durations, highlights


def handle_mindmap_generate(payload: dict[str, object]) -> None:
    session_id = payload.get("session_id")
    if not isinstance(session_id, str) or session_id == "":
        raise NonRetryableJobError("payload missing session_id")
    logger.info("generating mindmap session_id=%s", session_id)

    with Session(engine) as db:
        sess = _load_session(db, session_id)
        if sess is None:
            logger.warning("mindmap job for missing session session_id=%s", session_id)
            return
        if sess.session_status != "processing":
            logger.info(
                "mindmap job skipped session_id=%s status=%s", session_id, sess.session_status
            )
            return

        user_id = sess.user_id
        pages, durations, highlights = collect_context(sess)
        try:
            _ = usage_service.ensure_can_use_ai(db, user_id)
        except UsageLimitExceeded as e:
            logger.warning(
                "user token limit exceeded user_id=%s tokens_used=%s token_limit=%s",
                user_id,
                e.tokens_used,
                e.token_limit,
            )
            raise RetryableJobError(f"token limit exceeded: used {e.tokens_used}/{e.token_limit}") from e

    req = ChatRequest(
        user_prompt=build_prompt(pages, highlights),
        options=ChatOptions(max_tokens=4096, json_mode=True),
        metadata={"session_id": session_id, "user_id": user_id},
    )
    try:
        resp = get_dispatcher().chat("mindmap", req)
    except AIError as e:
        raise RetryableJobError(f"ai generate mindmap: {e}") from e

    with Session(engine) as db:
        _ = usage_service.record_usage(
            db,
            user_id=user_id,
            operation="mindmap",
            tokens=resp.total_tokens,
            session_id=session_id,
            ai_model=resp.model,
        )
        db.commit()

    try:
        graph = parse_graph(resp.content)
    except InvalidJSON as e:
        raise NonRetryableJobError(str(e)) from e
    data = build_layout(graph, durations)

    with Session(engine) as db:
        # Re-read: a duplicate delivery may have completed the session meanwhile.
        sess = db.get(RecordingSession, session_id)
        if sess is None or sess.session_status != "processing":
            logger.info("mindmap result discarded session_id=%s", session_id)
            return
        _ = mindmap_service.complete_generation(db, sess, data)

    logger.info(
        "mindmap generated session_id=%s topics=%s connections=%s provider=%s tokens=%s",
        session_id,
        len(graph.topics),
        len(graph.connections),
        resp.provider,
        resp.total_tokens,
    )


def on_mindmap_dead(payload: dict[str, object], error: str) -> None:
    session_id = payload.get("session_id")
    if not isinstance(session_id, str) or session_id == "":
        return
    with Session(engine) as db:
        mindmap_service.mark_failed(db, session_id, error)


@celery_app.task(name="mindmap:generate", bind=True)
def mindmap_generate(self: Task, *, session_id: str) -> dict[str, object]:
    return run_job(
        self,
        job_type="mindmap:generate",
        payload={"session_id": session_id},
        handler=handle_mindmap_generate,
        on_dead=on_mindmap_dead,
    )
