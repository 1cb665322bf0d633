from __future__ import annotations

import hashlib
import logging
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mindhit.core.errors import StorageFailure
from mindhit.db.models import URL, _utcnow_naive, _uuid_str


logger = logging.getLogger(__name__)


def normalize_url(raw_url: str) -> str:
    """Canonical form used for dedup: no fragment, lower scheme/host, stable path."""
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return raw_url

    path = parts.path
    if path == "":
        path = "/"
    elif path != "/" and path.endswith("/"):
        path = path[:-1]

    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


def hash_url(normalized: str) -> str:
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def get_by_hash(db: Session, url_hash: str) -> URL | None:
    return db.execute(select(URL).where(URL.url_hash == url_hash)).scalar_one_or_none()


def get_by_id(db: Session, url_id: str) -> URL | None:
    return db.get(URL, url_id)


def _insert_ignore(db: Session, values: dict[str, object]) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(URL).values(**values).on_conflict_do_nothing(
            index_elements=[URL.url_hash]
        )
    elif dialect == "sqlite":
        stmt = sqlite.insert(URL).values(**values).on_conflict_do_nothing(
            index_elements=[URL.url_hash]
        )
    else:
        existing = get_by_hash(db, str(values["url_hash"]))
        if existing is None:
            db.add(URL(**values))
            db.flush()
        return
    _ = db.execute(stmt)


def get_or_create(
    db: Session,
    raw_url: str,
    *,
    title: str | None = None,
    content: str | None = None,
) -> URL:
    normalized = normalize_url(raw_url)
    url_hash = hash_url(normalized)

    try:
        existing = get_by_hash(db, url_hash)
        if existing is not None:
            if content and not existing.content:
                existing.content = content
                db.flush()
            return existing

        now = _utcnow_naive()
        _insert_ignore(
            db,
            {
                "id": _uuid_str(),
                "url": normalized,
                "url_hash": url_hash,
                "title": title or None,
                "content": content or None,
                "created_at": now,
                "updated_at": now,
            },
        )
        # Whoever won the insert race, the row is now addressable by hash.
        row = get_by_hash(db, url_hash)
    except SQLAlchemyError as e:
        logger.exception("url get_or_create failed url_hash=%s", url_hash)
        raise StorageFailure("failed to register url") from e

    if row is None:
        raise StorageFailure("url row missing after insert")
    return row


def update_summary(db: Session, url_id: str, *, summary: str, keywords: list[str]) -> URL:
    try:
        row = db.get(URL, url_id)
        if row is None:
            raise StorageFailure(f"url {url_id} not found")
        row.summary = summary
        row.keywords = list(keywords)
        row.updated_at = _utcnow_naive()
        db.flush()
    except SQLAlchemyError as e:
        raise StorageFailure("failed to update url summary") from e
    return row


def list_without_summary(db: Session, *, limit: int = 100) -> list[URL]:
    stmt = (
        select(URL)
        .where(URL.content.is_not(None), URL.content != "", URL.summary.is_(None))
        .order_by(URL.created_at.asc())
        .limit(max(1, limit))
    )
    return list(db.execute(stmt).scalars().all())
