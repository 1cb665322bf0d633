from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import json
import logging
from typing import cast

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mindhit.core.errors import MindHitError, SessionNotAcceptingEvents
from mindhit.db.models import Highlight, PageVisit, RawEvent, _utcnow_naive
from mindhit.metrics.prometheus import record_event_batch
from mindhit.services import session_service, url_service
from mindhit.workers import bus


logger = logging.getLogger(__name__)

DEFAULT_HIGHLIGHT_COLOR = "#FFFF00"
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

_EPOCH = datetime(1970, 1, 1)


@dataclass
class BatchEvent:
    type: str
    timestamp: int
    url: str = ""
    title: str = ""
    content: str = ""
    payload: dict[str, object] = field(default_factory=dict)

    def canonical_json(self) -> str:
        body: dict[str, object] = {"type": self.type, "timestamp": self.timestamp}
        if self.url:
            body["url"] = self.url
        if self.title:
            body["title"] = self.title
        if self.content:
            body["content"] = self.content
        if self.payload:
            body["payload"] = self.payload
        return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class EventStats:
    total_events: int
    page_visits: int
    highlights: int
    unique_urls: int


def from_unix_ms(ms: int) -> datetime:
    """Naive UTC datetime for a client millisecond timestamp."""
    return _EPOCH + timedelta(milliseconds=ms)


def _clamp_unit(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(1.0, float(value)))


def _payload_str(payload: dict[str, object], key: str) -> str:
    v = payload.get(key)
    return v if isinstance(v, str) else ""


class _Ingest:
    def __init__(self, db: Session, session_id: str) -> None:
        self.db: Session = db
        self.session_id: str = session_id
        self.enqueued_url_ids: set[str] = set()
        self.next_seq: int = self._max_seq() + 1

    def _max_seq(self) -> int:
        stmt = select(func.max(RawEvent.seq)).where(RawEvent.session_id == self.session_id)
        return int(self.db.execute(stmt).scalar() or 0)

    def persist_raw(self, event: BatchEvent) -> RawEvent:
        raw = RawEvent(
            session_id=self.session_id,
            event_type=event.type,
            timestamp=from_unix_ms(event.timestamp),
            payload=event.canonical_json(),
            processed=False,
            seq=self.next_seq,
        )
        self.db.add(raw)
        self.db.commit()
        self.next_seq += 1
        return raw

    def project(self, event: BatchEvent) -> list[str]:
        """Write typed rows for the event; returns url ids needing tag extraction."""
        if event.type == "page_visit":
            return self._page_visit(event)
        if event.type == "highlight":
            self._highlight(event)
        elif event.type == "page_leave":
            self._page_leave(event)
        elif event.type == "scroll":
            self._scroll(event)
        return []

    def _page_visit(self, event: BatchEvent) -> list[str]:
        if not event.url:
            return []
        url = url_service.get_or_create(
            self.db, event.url, title=event.title or None, content=event.content or None
        )
        self.db.add(
            PageVisit(
                session_id=self.session_id,
                url_id=url.id,
                entered_at=from_unix_ms(event.timestamp),
            )
        )
        if url.keywords:
            return []
        return [url.id]

    def _highlight(self, event: BatchEvent) -> None:
        text = _payload_str(event.payload, "text")
        if text == "":
            return
        selector = _payload_str(event.payload, "selector")
        self.db.add(
            Highlight(
                session_id=self.session_id,
                text=text,
                selector=selector or None,
                color=_payload_str(event.payload, "color") or DEFAULT_HIGHLIGHT_COLOR,
                note=_payload_str(event.payload, "note") or None,
            )
        )

    def _latest_open_visit(self, raw_url: str) -> PageVisit | None:
        stmt = select(PageVisit).where(
            PageVisit.session_id == self.session_id,
            PageVisit.left_at.is_(None),
        )
        if raw_url:
            existing = url_service.get_by_hash(
                self.db, url_service.hash_url(url_service.normalize_url(raw_url))
            )
            if existing is None:
                return None
            stmt = stmt.where(PageVisit.url_id == existing.id)
        stmt = stmt.order_by(PageVisit.entered_at.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def _page_leave(self, event: BatchEvent) -> None:
        if not event.url:
            return
        visit = self._latest_open_visit(event.url)
        if visit is None:
            return
        left_at = max(from_unix_ms(event.timestamp), visit.entered_at)
        visit.left_at = left_at
        visit.duration_ms = int((left_at - visit.entered_at).total_seconds() * 1000)
        depth = _clamp_unit(event.payload.get("max_scroll_depth"))
        if depth is not None:
            visit.max_scroll_depth = max(visit.max_scroll_depth or 0.0, depth)

    def _scroll(self, event: BatchEvent) -> None:
        depth = _clamp_unit(event.payload.get("depth"))
        if depth is None:
            return
        visit = self._latest_open_visit(event.url)
        if visit is None:
            return
        visit.max_scroll_depth = max(visit.max_scroll_depth or 0.0, depth)


def process_batch(
    db: Session,
    session_id: str,
    user_id: str,
    events: list[BatchEvent],
) -> tuple[int, int]:
    sess = session_service.get_owned(db, session_id, user_id)
    if sess.session_status not in session_service.ACCEPTING_EVENTS:
        raise SessionNotAcceptingEvents()

    record_event_batch(event_types=[e.type for e in events])

    ingest = _Ingest(db, session_id)
    processed = 0
    for idx, event in enumerate(events):
        try:
            raw = ingest.persist_raw(event)
        except (OverflowError, ValueError) as e:
            db.rollback()
            logger.warning(
                "event rejected session_id=%s index=%s type=%s timestamp=%s err=%s",
                session_id,
                idx,
                event.type,
                event.timestamp,
                e,
            )
            continue
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "raw event persist failed session_id=%s index=%s type=%s", session_id, idx, event.type
            )
            continue

        try:
            pending_urls = ingest.project(event)
            raw.processed = True
            raw.processed_at = _utcnow_naive()
            db.commit()
        except (SQLAlchemyError, MindHitError, OverflowError, ValueError) as e:
            db.rollback()
            logger.warning(
                "event projection skipped session_id=%s index=%s type=%s err=%s",
                session_id,
                idx,
                event.type,
                e,
            )
            continue

        processed += 1
        for url_id in pending_urls:
            if url_id in ingest.enqueued_url_ids:
                continue
            ingest.enqueued_url_ids.add(url_id)
            _ = bus.enqueue("url:tag_extraction", {"url_id": url_id})

    # Client activity keeps the session out of the stale sweep.
    sess.updated_at = _utcnow_naive()
    db.commit()

    logger.info(
        "event batch processed session_id=%s processed=%s total=%s", session_id, processed, len(events)
    )
    return processed, len(events)


def list_events(
    db: Session,
    session_id: str,
    *,
    event_type: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> tuple[list[RawEvent], int]:
    if limit <= 0:
        limit = DEFAULT_LIST_LIMIT
    limit = min(limit, MAX_LIST_LIMIT)
    offset = max(0, offset)

    base = select(RawEvent).where(RawEvent.session_id == session_id)
    if event_type:
        base = base.where(RawEvent.event_type == event_type)

    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar() or 0)
    rows = db.execute(
        base.order_by(RawEvent.timestamp.desc(), RawEvent.seq.desc()).limit(limit).offset(offset)
    ).scalars().all()
    return list(rows), total


def list_raw_in_order(db: Session, session_id: str) -> list[RawEvent]:
    stmt = select(RawEvent).where(RawEvent.session_id == session_id).order_by(RawEvent.seq.asc())
    return list(db.execute(stmt).scalars().all())


def get_stats(db: Session, session_id: str) -> EventStats:
    total_events = db.execute(
        select(func.count(RawEvent.id)).where(RawEvent.session_id == session_id)
    ).scalar()
    page_visits = db.execute(
        select(func.count(PageVisit.id)).where(PageVisit.session_id == session_id)
    ).scalar()
    highlights = db.execute(
        select(func.count(Highlight.id)).where(Highlight.session_id == session_id)
    ).scalar()
    unique_urls = db.execute(
        select(func.count(func.distinct(PageVisit.url_id))).where(PageVisit.session_id == session_id)
    ).scalar()
    return EventStats(
        total_events=int(total_events or 0),
        page_visits=int(page_visits or 0),
        highlights=int(highlights or 0),
        unique_urls=int(unique_urls or 0),
    )


def decode_payload(raw: RawEvent) -> dict[str, object]:
    try:
        obj = cast(object, json.loads(raw.payload))
    except ValueError:
        return {}
    if isinstance(obj, dict):
        return cast(dict[str, object], obj)
    return {}
