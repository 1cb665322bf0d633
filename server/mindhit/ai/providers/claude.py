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
)


_PROVIDER = "claude"
_ANTHROPIC_VERSION = "2023-06-01"
# Anthropic rejects extended thinking budgets below this.
_MIN_THINKING_BUDGET = 1024

_JSON_INSTRUCTION = "Respond with a single valid JSON object only, without markdown fences."


def _headers(api_key: str) -> dict[str, str]:
    return {
        "x-api-key": api_key,
        "anthropic-version": _ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }


def _payload(model: str, req: ChatRequest, *, stream: bool) -> dict[str, object]:
    opts = req.options

    messages: list[dict[str, object]] = []
    system_parts: list[str] = []
    if req.system_prompt:
        system_parts.append(req.system_prompt)
    for msg in req.messages:
        if msg.role == "system":
            system_parts.append(msg.content)
        else:
            messages.append({"role": msg.role, "content": msg.content})
    if req.user_prompt:
        messages.append({"role": "user", "content": req.user_prompt})
    if opts.json_mode:
        system_parts.append(_JSON_INSTRUCTION)

    payload: dict[str, object] = {
        "model": opts.model or model,
        "max_tokens": opts.max_tokens,
        "messages": messages,
    }
    if system_parts:
        payload["system"] = "\n\n".join(system_parts)
    if opts.stop_sequences:
        payload["stop_sequences"] = list(opts.stop_sequences)

    budget = min(opts.thinking_budget, opts.max_tokens - 1)
    if opts.enable_thinking and budget >= _MIN_THINKING_BUDGET:
        # Sampling knobs are fixed by the API while thinking is enabled.
        payload["thinking"] = {"type": "enabled", "budget_tokens": budget}
    else:
        if opts.temperature > 0:
            payload["temperature"] = opts.temperature
        if 0 < opts.top_p < 1:
            payload["top_p"] = opts.top_p

    if stream:
        payload["stream"] = True
    return payload


def _chat(client: httpx.Client, api_key: str, model: str, req: ChatRequest) -> ChatResponse:
    started = time.perf_counter()
    body = post_json(
        client,
        provider=_PROVIDER,
        path="messages",
        headers=_headers(api_key),
        payload=_payload(model, req, stream=False),
    )

    blocks = as_list(body.get("content"))
    if not blocks:
        raise ProviderError(_PROVIDER, "no response from ai provider")

    thinking = ""
    content_parts: list[str] = []
    for block_obj in blocks:
        block = as_dict(block_obj)
        typ = block.get("type")
        if typ == "thinking":
            text = block.get("thinking")
            if isinstance(text, str):
                thinking = text
        elif typ == "text":
            text = block.get("text")
            if isinstance(text, str):
                content_parts.append(text)

    content = validate_json_content("".join(content_parts), req.options.json_mode)

    usage = as_dict(body.get("usage"))
    model_obj = body.get("model")
    id_obj = body.get("id")
    resp = ChatResponse(
        content=content,
        thinking=thinking,
        provider=_PROVIDER,
        model=model_obj if isinstance(model_obj, str) and model_obj else (req.options.model or model),
        input_tokens=as_int(usage.get("input_tokens")),
        output_tokens=as_int(usage.get("output_tokens")),
        latency_ms=elapsed_ms(started),
        request_id=id_obj if isinstance(id_obj, str) else None,
    )
    resp.total_tokens = resp.input_tokens + resp.output_tokens
    return finalize_usage(resp)


def _chat_stream(
    client: httpx.Client,
    api_key: str,
    model: str,
    req: ChatRequest,
    handler: StreamHandler,
) -> ChatResponse:
    started = time.perf_counter()
    thinking_parts: list[str] = []
    content_parts: list[str] = []
    resp = ChatResponse(content="", provider=_PROVIDER, model=req.options.model or model)
    try:
        with provider_errors(_PROVIDER):
            with client.stream(
                "POST",
                "messages",
                headers=_headers(api_key),
                json=_payload(model, req, stream=True),
            ) as http_resp:
                if http_resp.status_code >= 400:
                    _ = http_resp.read()
                _ = http_resp.raise_for_status()
                for obj in iter_sse_objects(http_resp):
                    typ = obj.get("type")
                    if typ == "message_start":
                        message = as_dict(obj.get("message"))
                        id_obj = message.get("id")
                        if isinstance(id_obj, str):
                            resp.request_id = id_obj
                        resp.input_tokens = as_int(as_dict(message.get("usage")).get("input_tokens"))
                    elif typ == "message_delta":
                        out = as_int(as_dict(obj.get("usage")).get("output_tokens"))
                        if out:
                            resp.output_tokens = out
                    elif typ == "content_block_delta":
                        delta = as_dict(obj.get("delta"))
                        delta_type = delta.get("type")
                        if delta_type == "thinking_delta":
                            text = delta.get("thinking")
                            if isinstance(text, str) and text:
                                thinking_parts.append(text)
                                if handler.on_thinking is not None:
                                    handler.on_thinking(text)
                        elif delta_type == "text_delta":
                            text = delta.get("text")
                            if isinstance(text, str) and text:
                                content_parts.append(text)
                                if handler.on_content is not None:
                                    handler.on_content(text)
                    elif typ == "error":
                        err = as_dict(obj.get("error"))
                        raise ProviderError(_PROVIDER, str(err.get("message") or "stream error"))
        resp.thinking = "".join(thinking_parts)
        resp.content = validate_json_content("".join(content_parts), req.options.json_mode)
    except AIError as e:
        if handler.on_error is not None:
            handler.on_error(e)
        raise

    resp.total_tokens = resp.input_tokens + resp.output_tokens
    resp.latency_ms = elapsed_ms(started)
    resp = finalize_usage(resp)
    if handler.on_done is not None:
        handler.on_done(resp)
    return resp


def new_claude_provider(
    *,
    api_key: str,
    base_url: str = "https://api.anthropic.com/v1",
    model: str | None = None,
    timeout_s: float = 120.0,
    transport: httpx.BaseTransport | None = None,
) -> Provider:
    model = model or DEFAULT_MODELS["claude"]
    client = new_http_client(base_url=base_url, timeout_s=timeout_s, transport=transport)
    chat = partial(_chat, client, api_key, model)
    return Provider(
        type="claude",
        model=model,
        chat=chat,
        chat_stream=partial(_chat_stream, client, api_key, model),
        is_healthy=partial(health_check, _PROVIDER, chat),
        close=client.close,
    )
