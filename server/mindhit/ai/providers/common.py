from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
import json
import logging
import time
from typing import Protocol, cast

import httpx

from mindhit.ai.errors import InvalidJSON, ProviderError
from mindhit.ai.types import ChatOptions, ChatRequest, ChatResponse


logger = logging.getLogger(__name__)


def clamp_timeout_seconds(raw: float | int | None) -> float:
    if raw is None:
        return 120.0
    v = float(raw)
    if v <= 0:
        return 120.0
    return min(v, 600.0)


def new_http_client(
    *,
    base_url: str,
    timeout_s: float,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    timeout_s = clamp_timeout_seconds(timeout_s)
    timeout = httpx.Timeout(timeout_s, connect=min(10.0, timeout_s))
    return httpx.Client(
        base_url=base_url.rstrip("/") + "/",
        timeout=timeout,
        trust_env=False,
        transport=transport,
    )


def as_dict(obj: object) -> dict[str, object]:
    if isinstance(obj, dict):
        return cast(dict[str, object], obj)
    return {}


def as_list(obj: object) -> list[object]:
    if isinstance(obj, list):
        return cast(list[object], obj)
    return []


def as_int(obj: object) -> int:
    if isinstance(obj, bool):
        return 0
    if isinstance(obj, int) and obj >= 0:
        return obj
    return 0


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = as_dict(cast(object, resp.json()))
    except Exception:
        return resp.text[:200]
    err = body.get("error")
    if isinstance(err, dict):
        msg = as_dict(err).get("message")
        if isinstance(msg, str) and msg:
            return msg
    if isinstance(err, str):
        return err
    return resp.text[:200]


def _status_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


@contextmanager
def provider_errors(provider: str) -> Iterator[None]:
    """Map httpx failures onto ProviderError."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise ProviderError(provider, f"request timed out: {e}", timeout=True) from e
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        raise ProviderError(
            provider,
            f"http {status_code}: {_error_detail(e.response)}",
            retryable=_status_retryable(status_code),
            status_code=status_code,
        ) from e
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"network error: {e}") from e


def post_json(
    client: httpx.Client,
    *,
    provider: str,
    path: str,
    headers: dict[str, str],
    payload: dict[str, object],
) -> dict[str, object]:
    with provider_errors(provider):
        resp = client.post(path, headers=headers, json=payload)
        if resp.status_code >= 400:
            # Read the body before raising so the detail is available.
            _ = resp.read()
        _ = resp.raise_for_status()
        try:
            obj = cast(object, resp.json())
        except ValueError as e:
            raise ProviderError(provider, "response body is not json", retryable=True) from e
    if not isinstance(obj, dict):
        raise ProviderError(provider, "unexpected response shape")
    return cast(dict[str, object], obj)


class _SSELineStream(Protocol):
    def iter_lines(self) -> Iterator[str]: ...


def iter_sse_data(resp: _SSELineStream) -> Iterator[str]:
    buf: list[str] = []
    for line in resp.iter_lines():
        line = str(line)

        if line == "":
            if buf:
                yield "\n".join(buf)
                buf = []
            continue

        if line.startswith(":"):
            continue

        if line.startswith("data:"):
            buf.append(line[len("data:") :].lstrip())
            continue

        continue

    if buf:
        yield "\n".join(buf)


def iter_sse_objects(resp: _SSELineStream) -> Iterator[dict[str, object]]:
    for data in iter_sse_data(resp):
        if data.strip() == "[DONE]":
            return
        try:
            obj = cast(object, json.loads(data))
        except Exception:
            continue
        if isinstance(obj, dict):
            yield cast(dict[str, object], obj)


def strip_code_fence(content: str) -> str:
    s = content.strip()
    if not s.startswith("```"):
        return s
    first_nl = s.find("\n")
    if first_nl == -1:
        return s
    body = s[first_nl + 1 :]
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


def validate_json_content(content: str, json_mode: bool) -> str:
    """Return content unchanged, or the bare JSON text when json_mode is on."""
    if not json_mode:
        return content
    text = strip_code_fence(content)
    try:
        _ = json.loads(text)
    except ValueError as e:
        raise InvalidJSON(str(e)) from e
    return text


def finalize_usage(resp: ChatResponse) -> ChatResponse:
    floor = resp.input_tokens + resp.output_tokens
    if resp.total_tokens < floor:
        resp.total_tokens = floor
    if resp.latency_ms < 0:
        resp.latency_ms = 0
    return resp


def elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def health_check(provider: str, chat: Callable[[ChatRequest], ChatResponse]) -> bool:
    try:
        _ = chat(ChatRequest(user_prompt="ping", options=ChatOptions(max_tokens=5)))
    except Exception as e:
        logger.warning("ai provider health check failed provider=%s err=%s", provider, e)
        return False
    return True
