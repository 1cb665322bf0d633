# pyright: reportMissingImports=false

from __future__ import annotations

from functools import lru_cache
import json
from typing import Annotated, ClassVar, cast

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


_DEV_TOKEN_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    """Environment-driven settings with local dev defaults."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )

    api_v1_prefix: str = "/v1"
    log_level: str = "INFO"

    environment: str = "development"

    # Access tokens are issued by the auth service; this side only verifies them.
    auth_access_token_secret: str = _DEV_TOKEN_SECRET
    auth_access_token_ttl_seconds: int = 900

    # Prefer DATABASE_URL when provided; otherwise construct from POSTGRES_* vars.
    database_url: str | None = None
    postgres_db: str = "mindhit"
    postgres_user: str = "mindhit"
    postgres_password: str = "mindhit"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    redis_addr: str = "localhost:6379"
    worker_concurrency: int = 10
    worker_shutdown_timeout_seconds: int = 30
    job_queues: Annotated[dict[str, int], NoDecode] = Field(
        default_factory=lambda: {"critical": 6, "default": 3, "low": 1}
    )

    session_cleanup_interval_seconds: int = 3600
    session_cleanup_max_age_hours: int = 24

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    ai_request_timeout_seconds: float = 120.0
    ai_config_cache_ttl_seconds: int = 300

    # <= 0 means unlimited.
    usage_token_limit: int = 50000
    usage_period_days: int = 30

    @field_validator("job_queues", mode="before")
    @classmethod
    def _parse_job_queues_env(cls, v: object) -> dict[str, int]:
        if v is None:
            return {"critical": 6, "default": 3, "low": 1}

        items: dict[str, object] = {}
        if isinstance(v, dict):
            items = {str(k): val for k, val in cast(dict[object, object], v).items()}
        elif isinstance(v, str):
            raw = v.strip()
            if raw == "":
                return {"critical": 6, "default": 3, "low": 1}
            if raw.startswith("{"):
                try:
                    parsed = cast(object, json.loads(raw))
                except Exception as e:
                    raise ValueError("JOB_QUEUES contains invalid JSON") from e
                if not isinstance(parsed, dict):
                    raise ValueError("JOB_QUEUES must be a JSON object")
                items = {str(k): val for k, val in cast(dict[object, object], parsed).items()}
            else:
                # name:weight,name:weight
                for chunk in raw.split(","):
                    s = chunk.strip()
                    if not s:
                        continue
                    if ":" not in s:
                        raise ValueError("JOB_QUEUES must be 'name:weight' pairs")
                    name, weight = s.split(":", 1)
                    items[name.strip()] = weight.strip()
        else:
            raise ValueError("JOB_QUEUES must be a mapping")

        out: dict[str, int] = {}
        for name, weight_obj in items.items():
            if name == "":
                raise ValueError("JOB_QUEUES contains empty queue name")
            try:
                weight = int(str(weight_obj))
            except ValueError as e:
                raise ValueError(f"JOB_QUEUES weight for {name!r} must be an integer") from e
            if weight <= 0:
                raise ValueError(f"JOB_QUEUES weight for {name!r} must be > 0")
            out[name] = weight
        return out

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            url = self.database_url
            # Bare postgres URLs default to the psycopg (v3) driver.
            if url.startswith("postgres://"):
                return "postgresql+psycopg://" + url.removeprefix("postgres://")
            if url.startswith("postgresql://"):
                return "postgresql+psycopg://" + url.removeprefix("postgresql://")
            return url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        addr = self.redis_addr.strip()
        if addr.startswith("redis://") or addr.startswith("rediss://"):
            return addr
        return f"redis://{addr}/0"

    @property
    def ai_api_keys(self) -> dict[str, str]:
        keys: dict[str, str] = {}
        if self.openai_api_key and self.openai_api_key.strip():
            keys["openai"] = self.openai_api_key.strip()
        if self.gemini_api_key and self.gemini_api_key.strip():
            keys["gemini"] = self.gemini_api_key.strip()
        if self.anthropic_api_key and self.anthropic_api_key.strip():
            keys["claude"] = self.anthropic_api_key.strip()
        return keys

    def is_prod_env(self) -> bool:
        return self.environment.strip().lower() in ("prod", "production")

    @model_validator(mode="after")
    def _validate_prod_config(self) -> "Settings":
        if not self.is_prod_env():
            return self

        problems: list[str] = []

        if self.auth_access_token_secret.strip() in ("", _DEV_TOKEN_SECRET):
            problems.append(
                f"AUTH_ACCESS_TOKEN_SECRET must be set in production (cannot use default {_DEV_TOKEN_SECRET!r})."
            )
        if not self.ai_api_keys:
            problems.append(
                "At least one of OPENAI_API_KEY, GEMINI_API_KEY, ANTHROPIC_API_KEY must be set in production."
            )

        if problems:
            details = "\n".join(f"- {p}" for p in problems)
            raise ValueError(
                f"Production settings validation failed (ENVIRONMENT={self.environment!r}). Fix the following before starting the server:\n"
                + details
            )

        return self

    @model_validator(mode="after")
    def _validate_worker_config(self) -> "Settings":
        if self.worker_concurrency <= 0:
            raise ValueError("WORKER_CONCURRENCY must be > 0")
        if self.session_cleanup_interval_seconds <= 0:
            raise ValueError("SESSION_CLEANUP_INTERVAL_SECONDS must be > 0")
        if self.session_cleanup_max_age_hours <= 0:
            raise ValueError("SESSION_CLEANUP_MAX_AGE_HOURS must be > 0")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
