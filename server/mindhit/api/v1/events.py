# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from datetime import datetime
from typing import cast

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from mindhit.api.v1.deps import require_user_id
from mindhit.core.errors import ValidationFailure
from mindhit.db.session import get_db
from mindhit.services import event_service, session_service
from mindhit.services.event_service import DEFAULT_HIGHLIGHT_COLOR, BatchEvent


router = APIRouter(prefix="/sessions", tags=["events"])


# Number.MAX_SAFE_INTEGER on the client.
MAX_TIMESTAMP_MS = 2**53 - 1


class BatchEventIn(BaseModel):
    type: str = Field(min_length=1, max_length=64)
    timestamp: int = Field(ge=-MAX_TIMESTAMP_MS, le=MAX_TIMESTAMP_MS)
    url: str | None = None
    title: str | None = None
    content: str | None = None
    payload: dict[str, object] = Field(default_factory=dict)

    def to_event(self) -> BatchEvent:
        return BatchEvent(
            type=self.type,
            timestamp=self.timestamp,
            url=self.url or "",
            title=self.title or "",
            content=self.content or "",
            payload=dict(self.payload),
        )


class BatchEventsRequest(BaseModel):
    events: list[BatchEventIn] = Field(default_factory=list)


class BatchEventsResponse(BaseModel):
    processed: int
    total: int


class EventPageVisitOut(BaseModel):
    id: str
    url: str
    title: str | None = None
    visited_at: datetime


class EventHighlightOut(BaseModel):
    id: str
    text: str
    color: str
    created_at: datetime


class EventListResponse(BaseModel):
    page_visits: list[EventPageVisitOut]
    highlights: list[EventHighlightOut]
    total: int


class EventStatsResponse(BaseModel):
    total_events: int
    page_visits: int
    highlights: int
    unique_urls: int


def _payload_str(body: dict[str, object], key: str) -> str:
    v = body.get(key)
    return v if isinstance(v, str) else ""


@router.post(
    "/{session_id}/events/batch",
    response_model=BatchEventsResponse,
    operation_id="events_batch",
)
async def events_batch(
    session_id: str,
    payload: BatchEventsRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> BatchEventsResponse:
    # Ownership errors take precedence over an empty batch.
    _ = session_service.get_owned(db, session_id, user_id)
    if not payload.events:
        raise ValidationFailure("no events provided")

    processed, total = event_service.process_batch(
        db, session_id, user_id, [e.to_event() for e in payload.events]
    )
    return BatchEventsResponse(processed=processed, total=total)


@router.get("/{session_id}/events", response_model=EventListResponse, operation_id="events_list")
async def events_list(
    session_id: str,
    type: str | None = Query(default=None, max_length=64),
    limit: int = Query(default=event_service.DEFAULT_LIST_LIMIT, ge=1, le=event_service.MAX_LIST_LIMIT),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> EventListResponse:
    _ = session_service.get_owned(db, session_id, user_id)
    rows, total = event_service.list_events(
        db, session_id, event_type=type, limit=limit, offset=offset
    )

    page_visits: list[EventPageVisitOut] = []
    highlights: list[EventHighlightOut] = []
    for raw in rows:
        body = event_service.decode_payload(raw)
        if raw.event_type == "page_visit":
            page_visits.append(
                EventPageVisitOut(
                    id=raw.id,
                    url=_payload_str(body, "url"),
                    title=_payload_str(body, "title") or None,
                    visited_at=raw.timestamp,
                )
            )
        elif raw.event_type == "highlight":
            inner = body.get("payload")
            extra = cast(dict[str, object], inner) if isinstance(inner, dict) else {}
            highlights.append(
                EventHighlightOut(
                    id=raw.id,
                    text=_payload_str(extra, "text"),
                    color=_payload_str(extra, "color") or DEFAULT_HIGHLIGHT_COLOR,
                    created_at=raw.timestamp,
                )
            )
    return EventListResponse(page_visits=page_visits, highlights=highlights, total=total)


@router.get(
    "/{session_id}/events/stats",
    response_model=EventStatsResponse,
    operation_id="events_stats",
)
async def events_stats(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> EventStatsResponse:
    _ = session_service.get_owned(db, session_id, user_id)
    stats = event_service.get_stats(db, session_id)
    return EventStatsResponse(
        total_events=stats.total_events,
        page_visits=stats.page_visits,
        highlights=stats.highlights,
        unique_urls=stats.unique_urls,
    )
