# pyright: reportMissingImports=false
# pyright: reportImplicitOverride=false
# pyright: reportIncompatibleVariableOverride=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mindhit.db.base import Base


def _uuid_str() -> str:
    return str(uuid4())


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


JSONVariant = JSON().with_variant(JSONB(), "postgresql")


SESSION_STATUSES = ("recording", "paused", "processing", "completed", "failed")
MINDMAP_STATUSES = ("pending", "running", "completed", "failed")
AI_PROVIDERS = ("openai", "gemini", "claude")
AI_TASK_TYPES = ("default", "tag_extraction", "mindmap")
AI_LOG_STATUSES = ("success", "error", "timeout")
USAGE_OPERATIONS = ("summarize", "mindmap", "keywords")


class User(Base):
    __tablename__: str = "users"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("status IN ('active','inactive')", name="ck_users_status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    email: Mapped[str] = mapped_column(String(320), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    sessions: Mapped[list["RecordingSession"]] = relationship(
        "RecordingSession",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class RecordingSession(Base):
    __tablename__: str = "sessions"
    __table_args__: tuple[object, ...] = (
        CheckConstraint(
            "session_status IN ('recording','paused','processing','completed','failed')",
            name="ck_sessions_session_status",
        ),
        CheckConstraint("status IN ('active','inactive')", name="ck_sessions_status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    session_status: Mapped[str] = mapped_column(
        String(16), index=True, nullable=False, default="recording"
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    # Soft delete flag: active | inactive.
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, index=True, nullable=False
    )

    user: Mapped[User] = relationship("User", back_populates="sessions")
    raw_events: Mapped[list["RawEvent"]] = relationship(
        "RawEvent",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    page_visits: Mapped[list["PageVisit"]] = relationship(
        "PageVisit",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PageVisit.entered_at",
    )
    highlights: Mapped[list["Highlight"]] = relationship(
        "Highlight",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Highlight.created_at",
    )
    mindmap: Mapped[Optional["MindmapGraph"]] = relationship(
        "MindmapGraph",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class RawEvent(Base):
    __tablename__: str = "raw_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    # Canonical JSON text of the client event, kept verbatim.
    payload: Mapped[str] = mapped_column(Text(), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    # Insertion order within a session; timestamps are client-supplied.
    seq: Mapped[int] = mapped_column(BigInteger(), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )

    session: Mapped[RecordingSession] = relationship("RecordingSession", back_populates="raw_events")


class URL(Base):
    __tablename__: str = "urls"
    __table_args__: tuple[object, ...] = (
        UniqueConstraint("url_hash", name="uq_urls_url_hash"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    url: Mapped[str] = mapped_column(Text(), nullable=False)
    url_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(Text(), nullable=True)
    content: Mapped[str | None] = mapped_column(Text(), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text(), nullable=True)
    keywords: Mapped[list[str] | None] = mapped_column(JSONVariant, nullable=True)
    crawled_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )

    page_visits: Mapped[list["PageVisit"]] = relationship("PageVisit", back_populates="url")


class PageVisit(Base):
    __tablename__: str = "page_visits"
    __table_args__: tuple[object, ...] = (
        CheckConstraint(
            "max_scroll_depth >= 0 AND max_scroll_depth <= 1",
            name="ck_page_visits_max_scroll_depth_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    url_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("urls.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    entered_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(BigInteger(), nullable=True)
    max_scroll_depth: Mapped[float] = mapped_column(Float(), default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )

    session: Mapped[RecordingSession] = relationship("RecordingSession", back_populates="page_visits")
    url: Mapped[URL] = relationship("URL", back_populates="page_visits")


class Highlight(Base):
    __tablename__: str = "highlights"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    page_visit_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("page_visits.id", ondelete="SET NULL"),
        nullable=True,
    )
    text: Mapped[str] = mapped_column(Text(), nullable=False)
    selector: Mapped[str | None] = mapped_column(Text(), nullable=True)
    color: Mapped[str] = mapped_column(String(16), default="#FFFF00", nullable=False)
    note: Mapped[str | None] = mapped_column(Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )

    session: Mapped[RecordingSession] = relationship("RecordingSession", back_populates="highlights")


class MindmapGraph(Base):
    __tablename__: str = "mindmap_graphs"
    __table_args__: tuple[object, ...] = (
        UniqueConstraint("session_id", name="uq_mindmap_graphs_session_id"),
        CheckConstraint(
            "status IN ('pending','running','completed','failed')",
            name="ck_mindmap_graphs_status",
        ),
        CheckConstraint("version >= 1", name="ck_mindmap_graphs_version_ge_1"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text(), nullable=True)
    nodes: Mapped[list[dict[str, object]]] = mapped_column(
        JSONVariant, nullable=False, default=list
    )
    graph_edges: Mapped[list[dict[str, object]]] = mapped_column(
        JSONVariant, nullable=False, default=list
    )
    layout: Mapped[dict[str, object]] = mapped_column(JSONVariant, nullable=False, default=dict)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer(), nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )

    session: Mapped[RecordingSession] = relationship("RecordingSession", back_populates="mindmap")


class AIConfig(Base):
    __tablename__: str = "ai_configs"
    __table_args__: tuple[object, ...] = (
        UniqueConstraint("task_type", name="uq_ai_configs_task_type"),
        CheckConstraint("provider IN ('openai','gemini','claude')", name="ck_ai_configs_provider"),
        CheckConstraint("max_tokens >= 1", name="ck_ai_configs_max_tokens_ge_1"),
        CheckConstraint("thinking_budget >= 0", name="ck_ai_configs_thinking_budget_ge_0"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    task_type: Mapped[str] = mapped_column(String(32), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    fallback_providers: Mapped[list[str]] = mapped_column(
        JSONVariant, nullable=False, default=list
    )
    temperature: Mapped[float] = mapped_column(Float(), nullable=False, default=0.7)
    max_tokens: Mapped[int] = mapped_column(Integer(), nullable=False, default=4096)
    top_p: Mapped[float | None] = mapped_column(Float(), nullable=True)
    thinking_budget: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    json_mode: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    enabled: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )


class AILog(Base):
    __tablename__: str = "ai_logs"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("status IN ('success','error','timeout')", name="ck_ai_logs_status"),
        CheckConstraint("latency_ms >= 0", name="ck_ai_logs_latency_ms_ge_0"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    session_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        index=True,
        nullable=True,
    )
    task_type: Mapped[str] = mapped_column(String(32), nullable=False)
    provider: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    system_prompt: Mapped[str | None] = mapped_column(Text(), nullable=True)
    user_prompt: Mapped[str | None] = mapped_column(Text(), nullable=True)
    thinking: Mapped[str | None] = mapped_column(Text(), nullable=True)
    content: Mapped[str | None] = mapped_column(Text(), nullable=True)
    input_tokens: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    thinking_tokens: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    latency_ms: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text(), nullable=True)
    estimated_cost_cents: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, index=True, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )


class TokenUsage(Base):
    __tablename__: str = "token_usage"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("tokens_used > 0", name="ck_token_usage_tokens_used_gt_0"),
        CheckConstraint(
            "operation IN ('summarize','mindmap','keywords')", name="ck_token_usage_operation"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    session_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    operation: Mapped[str] = mapped_column(String(16), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer(), nullable=False)
    ai_model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(), index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, onupdate=_utcnow_naive, nullable=False
    )


class DeadJob(Base):
    __tablename__: str = "dead_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    job_type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    payload: Mapped[dict[str, object]] = mapped_column(JSONVariant, nullable=False, default=dict)
    error: Mapped[str] = mapped_column(Text(), nullable=False)
    retries: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=_utcnow_naive, nullable=False
    )
