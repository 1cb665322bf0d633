from __future__ import annotations

from functools import partial
import time

import httpx

from mindhit.ai.errors import AIError, ProviderError
from mindhit.ai.providers.common import (
    as_dict,
    as_int,
    as_list,
    elapsed_ms,
    finalize_usage,
    health_check,
    iter_sse_objects,
    new_http_client,
    post_json,
    provider_errors,
    validate_json_content,
)
from mindhit.ai.types import (
    DEFAULT_MODELS,
    ChatRequest,
    ChatResponse,
    Provider,
    StreamHandler,
    build_messages,
)


_PROVIDER = "openai"


def _headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


def _payload(model: str, req: ChatRequest, *, stream: bool) -> dict[str, object]:
    opts = req.options
    payload: dict[str, object] = {
        "model": opts.model or model,
        "messages": [{"role": m.role, "content": m.content} for m in build_messages(req)],
        "temperature": opts.temperature,
        "max_tokens": opts.max_tokens,
    }
    if 0 < opts.top_p < 1:
        payload["top_p"] = opts.top_p
    if opts.stop_sequences:
        payload["stop"] = list(opts.stop_sequences)
    if opts.json_mode:
        payload["response_format"] = {"type": "json_object"}
    if stream:
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}
    return payload


def _apply_usage(resp: ChatResponse, usage: dict[str, object]) -> None:
    resp.input_tokens = as_int(usage.get("prompt_tokens"))
    resp.output_tokens = as_int(usage.get("completion_tokens"))
    resp.total_tokens = as_int(usage.get("total_tokens"))
    details = as_dict(usage.get("completion_tokens_details"))
    resp.thinking_tokens = as_int(details.get("reasoning_tokens"))


def _chat(client: httpx.Client, api_key: str, model: str, req: ChatRequest) -> ChatResponse:
    started = time.perf_counter()
    body = post_json(
        client,
        provider=_PROVIDER,
        path="chat/completions",
        headers=_headers(api_key),
        payload=_payload(model, req, stream=False),
    )

    choices = as_list(body.get("choices"))
    if not choices:
        raise ProviderError(_PROVIDER, "no response from ai provider")
    message = as_dict(as_dict(choices[0]).get("message"))
    content_obj = message.get("content")
    content = content_obj if isinstance(content_obj, str) else ""

    content = validate_json_content(content, req.options.json_mode)

    model_obj = body.get("model")
    id_obj = body.get("id")
    resp = ChatResponse(
        content=content,
        provider=_PROVIDER,
        model=model_obj if isinstance(model_obj, str) and model_obj else (req.options.model or model),
        latency_ms=elapsed_ms(started),
        request_id=id_obj if isinstance(id_obj, str) else None,
    )
    _apply_usage(resp, as_dict(body.get("usage")))
    return finalize_usage(resp)


def _chat_stream(
    client: httpx.Client,
    api_key: str,
    model: str,
    req: ChatRequest,
    handler: StreamHandler,
) -> ChatResponse:
    started = time.perf_counter()
    parts: list[str] = []
    resp = ChatResponse(content="", provider=_PROVIDER, model=req.options.model or model)
    try:
        with provider_errors(_PROVIDER):
            with client.stream(
                "POST",
                "chat/completions",
                headers=_headers(api_key),
                json=_payload(model, req, stream=True),
            ) as http_resp:
                if http_resp.status_code >= 400:
                    _ = http_resp.read()
                _ = http_resp.raise_for_status()
                for obj in iter_sse_objects(http_resp):
                    id_obj = obj.get("id")
                    if isinstance(id_obj, str) and resp.request_id is None:
                        resp.request_id = id_obj
                    usage = obj.get("usage")
                    if isinstance(usage, dict):
                        _apply_usage(resp, as_dict(usage))
                    choices = as_list(obj.get("choices"))
                    if not choices:
                        continue
                    delta = as_dict(as_dict(choices[0]).get("delta")).get("content")
                    if isinstance(delta, str) and delta != "":
                        parts.append(delta)
                        if handler.on_content is not None:
                            handler.on_content(delta)
        resp.content = validate_json_content("".join(parts), req.options.json_mode)
    except AIError as e:
        if handler.on_error is not None:
            handler.on_error(e)
        raise

    resp.latency_ms = elapsed_ms(started)
    resp = finalize_usage(resp)
    if handler.on_done is not None:
        handler.on_done(resp)
    return resp


def new_openai_provider(
    *,
    api_key: str,
    base_url: str = "https://api.openai.com/v1",
    model: str | None = None,
    timeout_s: float = 120.0,
    transport: httpx.BaseTransport | None = None,
) -> Provider:
    model = model or DEFAULT_MODELS["openai"]
    client = new_http_client(base_url=base_url, timeout_s=timeout_s, transport=transport)
    chat = partial(_chat, client, api_key, model)
    return Provider(
        type="openai",
        model=model,
        chat=chat,
        chat_stream=partial(_chat_stream, client, api_key, model),
        is_healthy=partial(health_check, _PROVIDER, chat),
        close=client.close,
    )
