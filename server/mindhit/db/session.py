from __future__ import annotations

from collections.abc import Generator
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from mindhit.core.config import settings


logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict[str, object]:
    if url.startswith("sqlite"):
        # Worker threads and the test client share one SQLite file.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_engine(
    settings.sqlalchemy_database_uri,
    **_engine_kwargs(settings.sqlalchemy_database_uri),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    from mindhit.db.base import Base

    Base.metadata.create_all(bind=engine)
    logger.info("database schema ensured dialect=%s", engine.dialect.name)
