from __future__ import annotations

from collections.abc import Callable, Mapping
import copy
import logging
import threading
import time
from typing import Protocol, cast

from mindhit.ai.errors import AllProvidersFailed, NoProvidersAvailable
from mindhit.ai.types import (
    PROVIDER_TYPES,
    ChatRequest,
    ChatResponse,
    Provider,
    ProviderType,
    StreamHandler,
)
from mindhit.core.config import Settings
from mindhit.metrics.prometheus import record_ai_request
from mindhit.services.aiconfig_service import TaskConfig, get_config_service


logger = logging.getLogger(__name__)


class LogWriter(Protocol):
    def __call__(
        self,
        *,
        task: str,
        provider: str,
        model: str,
        request: ChatRequest,
        response: ChatResponse | None,
        error: Exception | None,
        latency_ms: int,
    ) -> None: ...


class ConfigSource(Protocol):
    def get_config_for_task(self, task_type: str) -> TaskConfig: ...


def _apply_config(req: ChatRequest, cfg: TaskConfig) -> ChatRequest:
    out = copy.deepcopy(req)
    out.options.temperature = cfg.temperature
    out.options.max_tokens = cfg.max_tokens
    out.options.json_mode = cfg.json_mode
    if cfg.top_p is not None:
        out.options.top_p = cfg.top_p
    if cfg.thinking_budget > 0:
        out.options.enable_thinking = True
        out.options.thinking_budget = cfg.thinking_budget
    return out


class AIDispatcher:
    def __init__(
        self,
        providers: Mapping[ProviderType, Provider],
        config_source: ConfigSource,
        log_writer: LogWriter | None = None,
    ) -> None:
        self._providers: dict[ProviderType, Provider] = dict(providers)
        self._configs: ConfigSource = config_source
        self._log: LogWriter | None = log_writer
        self._lock: threading.Lock = threading.Lock()

    def provider_order(self, cfg: TaskConfig) -> list[Provider]:
        ordered: list[Provider] = []
        seen: set[str] = set()
        for name in (cfg.provider, *cfg.fallback_providers):
            if name in seen:
                continue
            seen.add(name)
            p = self._providers.get(cast(ProviderType, name))
            if p is not None:
                ordered.append(p)
        return ordered

    def _write_log(
        self,
        *,
        task: str,
        provider: Provider,
        request: ChatRequest,
        response: ChatResponse | None,
        error: Exception | None,
        latency_ms: int,
    ) -> None:
        record_ai_request(
            provider=provider.type,
            task=task,
            status="success" if error is None else "error",
            latency_ms=latency_ms,
            total_tokens=response.total_tokens if response is not None else None,
        )
        if self._log is None:
            return
        self._log(
            task=task,
            provider=provider.type,
            model=request.options.model or provider.model,
            request=request,
            response=response,
            error=error,
            latency_ms=latency_ms,
        )

    def _run(
        self,
        task: str,
        req: ChatRequest,
        call: Callable[[Provider, ChatRequest], ChatResponse],
    ) -> ChatResponse:
        cfg = self._configs.get_config_for_task(task)
        prepared = _apply_config(req, cfg)

        last_error: Exception | None = None
        for provider in self.provider_order(cfg):
            attempt = copy.deepcopy(prepared)
            # The configured model belongs to the primary provider only.
            attempt.options.model = cfg.model if provider.type == cfg.provider else None

            logger.debug(
                "attempting ai request provider=%s model=%s task=%s",
                provider.type,
                attempt.options.model or provider.model,
                task,
            )
            started = time.perf_counter()
            try:
                resp = call(provider, attempt)
            except Exception as e:
                latency_ms = max(0, int((time.perf_counter() - started) * 1000))
                self._write_log(
                    task=task,
                    provider=provider,
                    request=attempt,
                    response=None,
                    error=e,
                    latency_ms=latency_ms,
                )
                logger.warning(
                    "ai provider failed, trying fallback provider=%s task=%s err=%s",
                    provider.type,
                    task,
                    e,
                )
                last_error = e
                continue

            self._write_log(
                task=task,
                provider=provider,
                request=attempt,
                response=resp,
                error=None,
                latency_ms=resp.latency_ms,
            )
            logger.info(
                "ai request successful provider=%s model=%s task=%s tokens=%s latency_ms=%s",
                resp.provider,
                resp.model,
                task,
                resp.total_tokens,
                resp.latency_ms,
            )
            return resp

        if last_error is None:
            raise NoProvidersAvailable(task)
        raise AllProvidersFailed(last_error)

    def chat(self, task: str, req: ChatRequest) -> ChatResponse:
        return self._run(task, req, lambda p, r: p.chat(r))

    def chat_stream(self, task: str, req: ChatRequest, handler: StreamHandler) -> ChatResponse:
        return self._run(task, req, lambda p, r: p.chat_stream(r, handler))

    def available_providers(self) -> list[ProviderType]:
        with self._lock:
            return [p for p in PROVIDER_TYPES if p in self._providers]

    def has_providers(self) -> bool:
        with self._lock:
            return len(self._providers) > 0

    def close(self) -> None:
        with self._lock:
            for provider in self._providers.values():
                try:
                    provider.close()
                except Exception:
                    logger.warning("failed to close provider provider=%s", provider.type, exc_info=True)


def build_providers(settings: Settings) -> dict[ProviderType, Provider]:
    from mindhit.ai.providers.claude import new_claude_provider
    from mindhit.ai.providers.gemini import new_gemini_provider
    from mindhit.ai.providers.openai import new_openai_provider

    keys = settings.ai_api_keys
    timeout_s = settings.ai_request_timeout_seconds
    providers: dict[ProviderType, Provider] = {}

    if "openai" in keys:
        providers["openai"] = new_openai_provider(
            api_key=keys["openai"], base_url=settings.openai_base_url, timeout_s=timeout_s
        )
        logger.info("initialized ai provider provider=openai")
    if "gemini" in keys:
        providers["gemini"] = new_gemini_provider(
            api_key=keys["gemini"], base_url=settings.gemini_base_url, timeout_s=timeout_s
        )
        logger.info("initialized ai provider provider=gemini")
    if "claude" in keys:
        providers["claude"] = new_claude_provider(
            api_key=keys["claude"], base_url=settings.anthropic_base_url, timeout_s=timeout_s
        )
        logger.info("initialized ai provider provider=claude")

    if not providers:
        logger.warning("no ai providers configured (missing API keys)")
    else:
        logger.info("provider manager initialized available_providers=%s", len(providers))
    return providers


_dispatcher: AIDispatcher | None = None
_dispatcher_lock = threading.Lock()


def get_dispatcher() -> AIDispatcher:
    global _dispatcher
    if _dispatcher is not None:
        return _dispatcher
    with _dispatcher_lock:
        if _dispatcher is None:
            from mindhit.core.config import settings
            from mindhit.db.session import SessionLocal
            from mindhit.services.ailog_service import AILogWriter

            _dispatcher = AIDispatcher(
                build_providers(settings),
                get_config_service(),
                AILogWriter(SessionLocal),
            )
        return _dispatcher


def set_dispatcher(dispatcher: AIDispatcher | None) -> AIDispatcher | None:
    """Swap the process-wide dispatcher; returns the previous one."""
    global _dispatcher
    with _dispatcher_lock:
        previous = _dispatcher
        _dispatcher = dispatcher
        return previous


def close_dispatcher() -> None:
    previous = set_dispatcher(None)
    if previous is not None:
        previous.close()
