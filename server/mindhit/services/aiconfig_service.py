from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import threading
import time

from sqlalchemy import delete as sa_delete, select
from sqlalchemy.orm import Session

from mindhit.ai.errors import ConfigNotFound
from mindhit.ai.types import DEFAULT_MODELS, PROVIDER_TYPES, TASK_TYPES
from mindhit.core.errors import ValidationFailure
from mindhit.db.models import AIConfig, _utcnow_naive


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskConfig:
    """Detached snapshot of an ai_configs row, safe to share across threads."""

    task_type: str
    provider: str
    model: str
    fallback_providers: tuple[str, ...]
    temperature: float
    max_tokens: int
    top_p: float | None
    thinking_budget: int
    json_mode: bool
    enabled: bool

    @classmethod
    def from_row(cls, row: AIConfig) -> "TaskConfig":
        return cls(
            task_type=row.task_type,
            provider=row.provider,
            model=row.model,
            fallback_providers=tuple(row.fallback_providers or ()),
            temperature=float(row.temperature),
            max_tokens=int(row.max_tokens),
            top_p=row.top_p,
            thinking_budget=int(row.thinking_budget),
            json_mode=bool(row.json_mode),
            enabled=bool(row.enabled),
        )


@dataclass(frozen=True)
class UpsertAIConfig:
    task_type: str
    provider: str
    model: str
    fallback_providers: tuple[str, ...] = ()
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float | None = None
    thinking_budget: int = 0
    json_mode: bool = False
    enabled: bool = True
    updated_by: str | None = None


DEFAULT_CONFIGS: tuple[UpsertAIConfig, ...] = (
    UpsertAIConfig(
        task_type="default",
        provider="openai",
        model=DEFAULT_MODELS["openai"],
        fallback_providers=("gemini", "claude"),
        temperature=0.7,
        max_tokens=4096,
    ),
    UpsertAIConfig(
        task_type="tag_extraction",
        provider="gemini",
        model=DEFAULT_MODELS["gemini"],
        fallback_providers=("openai",),
        temperature=0.3,
        max_tokens=1024,
        json_mode=True,
    ),
    UpsertAIConfig(
        task_type="mindmap",
        provider="claude",
        model=DEFAULT_MODELS["claude"],
        fallback_providers=("openai",),
        temperature=0.5,
        max_tokens=8192,
        thinking_budget=10000,
        json_mode=True,
    ),
)


def _validate(req: UpsertAIConfig) -> None:
    if req.task_type not in TASK_TYPES:
        raise ValidationFailure(f"unknown task type {req.task_type!r}")
    if req.provider not in PROVIDER_TYPES:
        raise ValidationFailure(f"unknown provider {req.provider!r}")
    for fb in req.fallback_providers:
        if fb not in PROVIDER_TYPES:
            raise ValidationFailure(f"unknown fallback provider {fb!r}")
    if req.model.strip() == "":
        raise ValidationFailure("model must be non-empty")
    if req.max_tokens < 1:
        raise ValidationFailure("max_tokens must be >= 1")
    if req.thinking_budget < 0:
        raise ValidationFailure("thinking_budget must be >= 0")
    if not 0.0 <= req.temperature <= 2.0:
        raise ValidationFailure("temperature must be within [0, 2]")


class AIConfigService:
    """Per-task AI configuration with a process-wide TTL cache.

    Readers take the current snapshot without locking; a reload or a
    mutation swaps in a new (loaded_at, map) tuple under the write lock.
    """

    def __init__(self, session_factory: Callable[[], Session], *, ttl_seconds: float = 300.0) -> None:
        self._session_factory: Callable[[], Session] = session_factory
        self._ttl: float = ttl_seconds
        self._lock: threading.Lock = threading.Lock()
        self._snapshot: tuple[float, dict[str, TaskConfig]] = (0.0, {})

    def _fresh(self, loaded_at: float) -> bool:
        return loaded_at > 0 and (time.monotonic() - loaded_at) < self._ttl

    def _load_enabled(self) -> dict[str, TaskConfig]:
        with self._session_factory() as db:
            rows = db.execute(select(AIConfig).where(AIConfig.enabled.is_(True))).scalars().all()
            return {row.task_type: TaskConfig.from_row(row) for row in rows}

    def _current(self) -> dict[str, TaskConfig]:
        loaded_at, configs = self._snapshot
        if self._fresh(loaded_at):
            return configs
        with self._lock:
            loaded_at, configs = self._snapshot
            if self._fresh(loaded_at):
                return configs
            configs = self._load_enabled()
            self._snapshot = (time.monotonic(), configs)
            logger.debug("ai config cache reloaded tasks=%s", sorted(configs))
            return configs

    def get_config_for_task(self, task_type: str) -> TaskConfig:
        configs = self._current()
        cfg = configs.get(task_type)
        if cfg is None and task_type != "default":
            cfg = configs.get("default")
        if cfg is None:
            raise ConfigNotFound(task_type)
        return cfg

    def invalidate_cache(self) -> None:
        with self._lock:
            self._snapshot = (0.0, {})

    def list_all(self) -> list[AIConfig]:
        with self._session_factory() as db:
            return list(db.execute(select(AIConfig).order_by(AIConfig.task_type.asc())).scalars().all())

    def upsert(self, req: UpsertAIConfig) -> AIConfig:
        _validate(req)
        with self._session_factory() as db:
            row = db.execute(
                select(AIConfig).where(AIConfig.task_type == req.task_type)
            ).scalar_one_or_none()
            if row is None:
                row = AIConfig(task_type=req.task_type)
                db.add(row)
            row.provider = req.provider
            row.model = req.model
            row.fallback_providers = list(req.fallback_providers)
            row.temperature = req.temperature
            row.max_tokens = req.max_tokens
            row.top_p = req.top_p
            row.thinking_budget = req.thinking_budget
            row.json_mode = req.json_mode
            row.enabled = req.enabled
            row.updated_by = req.updated_by
            row.updated_at = _utcnow_naive()
            db.commit()
            db.refresh(row)
        self.invalidate_cache()
        logger.info("ai config upserted task=%s provider=%s model=%s", req.task_type, req.provider, req.model)
        return row

    def delete(self, task_type: str) -> int:
        with self._session_factory() as db:
            result = db.execute(sa_delete(AIConfig).where(AIConfig.task_type == task_type))
            db.commit()
        self.invalidate_cache()
        return int(result.rowcount or 0)

    def seed_defaults(self) -> int:
        with self._session_factory() as db:
            existing = set(db.execute(select(AIConfig.task_type)).scalars().all())
        created = 0
        for cfg in DEFAULT_CONFIGS:
            if cfg.task_type in existing:
                continue
            _ = self.upsert(cfg)
            created += 1
        return created


_service: AIConfigService | None = None
_service_lock = threading.Lock()


def get_config_service() -> AIConfigService:
    global _service
    with _service_lock:
        if _service is None:
            from mindhit.core.config import settings
            from mindhit.db.session import SessionLocal

            _service = AIConfigService(SessionLocal, ttl_seconds=settings.ai_config_cache_ttl_seconds)
        return _service
