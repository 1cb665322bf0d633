# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from mindhit.api.v1.deps import require_user_id
from mindhit.db.models import Highlight, PageVisit, RecordingSession
from mindhit.db.session import get_db
from mindhit.services import session_service


router = APIRouter(prefix="/sessions", tags=["sessions"])


class SessionOut(BaseModel):
    id: str
    user_id: str
    title: str | None
    description: str | None
    session_status: str
    started_at: datetime
    ended_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, sess: RecordingSession) -> "SessionOut":
        return cls(
            id=sess.id,
            user_id=sess.user_id,
            title=sess.title,
            description=sess.description,
            session_status=sess.session_status,
            started_at=sess.started_at,
            ended_at=sess.ended_at,
            created_at=sess.created_at,
            updated_at=sess.updated_at,
        )


class PageVisitOut(BaseModel):
    id: str
    url_id: str
    url: str
    title: str | None
    entered_at: datetime
    left_at: datetime | None
    duration_ms: int | None
    max_scroll_depth: float

    @classmethod
    def from_row(cls, pv: PageVisit) -> "PageVisitOut":
        return cls(
            id=pv.id,
            url_id=pv.url_id,
            url=pv.url.url,
            title=pv.url.title,
            entered_at=pv.entered_at,
            left_at=pv.left_at,
            duration_ms=pv.duration_ms,
            max_scroll_depth=pv.max_scroll_depth,
        )


class HighlightOut(BaseModel):
    id: str
    text: str
    selector: str | None
    color: str
    note: str | None
    created_at: datetime

    @classmethod
    def from_row(cls, h: Highlight) -> "HighlightOut":
        return cls(
            id=h.id,
            text=h.text,
            selector=h.selector,
            color=h.color,
            note=h.note,
            created_at=h.created_at,
        )


class SessionDetailOut(SessionOut):
    page_visits: list[PageVisitOut] = Field(default_factory=list)
    highlights: list[HighlightOut] = Field(default_factory=list)
    mindmap_status: str | None = None


class SessionEnvelope(BaseModel):
    session: SessionOut


class SessionDetailEnvelope(BaseModel):
    session: SessionDetailOut


class SessionListEnvelope(BaseModel):
    sessions: list[SessionOut]


class SessionUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None


@router.post(
    "/start",
    response_model=SessionEnvelope,
    status_code=status.HTTP_201_CREATED,
    operation_id="sessions_start",
)
async def sessions_start(
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionEnvelope:
    sess = session_service.start(db, user_id)
    return SessionEnvelope(session=SessionOut.from_row(sess))


@router.get("", response_model=SessionListEnvelope, operation_id="sessions_list")
async def sessions_list(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionListEnvelope:
    rows = session_service.list_by_user(db, user_id, limit=limit, offset=offset)
    return SessionListEnvelope(sessions=[SessionOut.from_row(s) for s in rows])


@router.get("/{session_id}", response_model=SessionDetailEnvelope, operation_id="sessions_get")
async def sessions_get(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionDetailEnvelope:
    sess = session_service.get_with_details(db, session_id, user_id)
    base = SessionOut.from_row(sess)
    detail = SessionDetailOut(
        **base.model_dump(),
        page_visits=[PageVisitOut.from_row(pv) for pv in sess.page_visits],
        highlights=[HighlightOut.from_row(h) for h in sess.highlights],
        mindmap_status=sess.mindmap.status if sess.mindmap is not None else None,
    )
    return SessionDetailEnvelope(session=detail)


@router.put("/{session_id}", response_model=SessionEnvelope, operation_id="sessions_update")
async def sessions_update(
    session_id: str,
    payload: SessionUpdateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionEnvelope:
    sess = session_service.update_details(
        db, session_id, user_id, title=payload.title, description=payload.description
    )
    return SessionEnvelope(session=SessionOut.from_row(sess))


@router.patch("/{session_id}/pause", response_model=SessionEnvelope, operation_id="sessions_pause")
async def sessions_pause(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionEnvelope:
    sess = session_service.pause(db, session_id, user_id)
    return SessionEnvelope(session=SessionOut.from_row(sess))


@router.patch("/{session_id}/resume", response_model=SessionEnvelope, operation_id="sessions_resume")
async def sessions_resume(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionEnvelope:
    sess = session_service.resume(db, session_id, user_id)
    return SessionEnvelope(session=SessionOut.from_row(sess))


@router.post("/{session_id}/stop", response_model=SessionEnvelope, operation_id="sessions_stop")
async def sessions_stop(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> SessionEnvelope:
    sess = session_service.stop(db, session_id, user_id)
    return SessionEnvelope(session=SessionOut.from_row(sess))


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    operation_id="sessions_delete",
)
async def sessions_delete(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> Response:
    session_service.delete(db, session_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
