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


_PROVIDER = "gemini"


def _headers(api_key: str) -> dict[str, str]:
    return {"x-goog-api-key": api_key, "Content-Type": "application/json"}


def _payload(req: ChatRequest) -> dict[str, object]:
    opts = req.options

    contents: list[dict[str, object]] = []
    for msg in req.messages:
        if msg.role == "system":
            continue
        role = "model" if msg.role == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": msg.content}]})
    if req.user_prompt:
        contents.append({"role": "user", "parts": [{"text": req.user_prompt}]})

    generation: dict[str, object] = {
        "temperature": opts.temperature,
        "maxOutputTokens": opts.max_tokens,
    }
    if 0 < opts.top_p <= 1:
        generation["topP"] = opts.top_p
    if opts.stop_sequences:
        generation["stopSequences"] = list(opts.stop_sequences)
    if opts.json_mode:
        generation["responseMimeType"] = "application/json"
    if opts.enable_thinking and opts.thinking_budget > 0:
        generation["thinkingConfig"] = {
            "thinkingBudget": opts.thinking_budget,
            "includeThoughts": True,
        }

    payload: dict[str, object] = {"contents": contents, "generationConfig": generation}

    system_parts = [m.content for m in req.messages if m.role == "system"]
    if req.system_prompt:
        system_parts.insert(0, req.system_prompt)
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": s} for s in system_parts]}
    return payload


def _split_parts(candidate: dict[str, object]) -> tuple[str, str]:
    thinking: list[str] = []
    content: list[str] = []
    for part_obj in as_list(as_dict(candidate.get("content")).get("parts")):
        part = as_dict(part_obj)
        text = part.get("text")
        if not isinstance(text, str):
            continue
        if part.get("thought") is True:
            thinking.append(text)
        else:
            content.append(text)
    return "".join(thinking), "".join(content)


def _apply_usage(resp: ChatResponse, usage: dict[str, object]) -> None:
    resp.input_tokens = as_int(usage.get("promptTokenCount"))
    resp.output_tokens = as_int(usage.get("candidatesTokenCount"))
    resp.thinking_tokens = as_int(usage.get("thoughtsTokenCount"))
    resp.total_tokens = as_int(usage.get("totalTokenCount"))


def _chat(client: httpx.Client, api_key: str, model: str, req: ChatRequest) -> ChatResponse:
    started = time.perf_counter()
    use_model = req.options.model or model
    body = post_json(
        client,
        provider=_PROVIDER,
        path=f"models/{use_model}:generateContent",
        headers=_headers(api_key),
        payload=_payload(req),
    )

    candidates = as_list(body.get("candidates"))
    if not candidates:
        raise ProviderError(_PROVIDER, "no response from ai provider")
    thinking, content = _split_parts(as_dict(candidates[0]))
    if content == "" and thinking == "":
        raise ProviderError(_PROVIDER, "no response from ai provider")

    content = validate_json_content(content, req.options.json_mode)

    id_obj = body.get("responseId")
    resp = ChatResponse(
        content=content,
        thinking=thinking,
        provider=_PROVIDER,
        model=use_model,
        latency_ms=elapsed_ms(started),
        request_id=id_obj if isinstance(id_obj, str) else None,
    )
    _apply_usage(resp, as_dict(body.get("usageMetadata")))
    return finalize_usage(resp)


def _chat_stream(
    client: httpx.Client,
    api_key: str,
    model: str,
    req: ChatRequest,
    handler: StreamHandler,
) -> ChatResponse:
    started = time.perf_counter()
    use_model = req.options.model or model
    thinking_parts: list[str] = []
    content_parts: list[str] = []
    resp = ChatResponse(content="", provider=_PROVIDER, model=use_model)
    try:
        with provider_errors(_PROVIDER):
            with client.stream(
                "POST",
                f"models/{use_model}:streamGenerateContent",
                params={"alt": "sse"},
                headers=_headers(api_key),
                json=_payload(req),
            ) as http_resp:
                if http_resp.status_code >= 400:
                    _ = http_resp.read()
                _ = http_resp.raise_for_status()
                for obj in iter_sse_objects(http_resp):
                    usage = obj.get("usageMetadata")
                    if isinstance(usage, dict):
                        _apply_usage(resp, as_dict(usage))
                    id_obj = obj.get("responseId")
                    if isinstance(id_obj, str) and resp.request_id is None:
                        resp.request_id = id_obj
                    candidates = as_list(obj.get("candidates"))
                    if not candidates:
                        continue
                    thinking, content = _split_parts(as_dict(candidates[0]))
                    if thinking:
                        thinking_parts.append(thinking)
                        if handler.on_thinking is not None:
                            handler.on_thinking(thinking)
                    if content:
                        content_parts.append(content)
                        if handler.on_content is not None:
                            handler.on_content(content)
        resp.thinking = "".join(thinking_parts)
        resp.content = validate_json_content("".join(content_parts), req.options.json_mode)
    except AIError as e:
        if handler.on_error is not None:
            handler.on_error(e)
        raise

    resp.latency_ms = elapsed_ms(started)
    resp = finalize_usage(resp)
    if handler.on_done is not None:
        handler.on_done(resp)
    return resp


def new_gemini_provider(
    *,
    api_key: str,
    base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    model: str | None = None,
    timeout_s: float = 120.0,
    transport: httpx.BaseTransport | None = None,
) -> Provider:
    model = model or DEFAULT_MODELS["gemini"]
    client = new_http_client(base_url=base_url, timeout_s=timeout_s, transport=transport)
    chat = partial(_chat, client, api_key, model)
    return Provider(
        type="gemini",
        model=model,
        chat=chat,
        chat_stream=partial(_chat_stream, client, api_key, model),
        is_healthy=partial(health_check, _PROVIDER, chat),
        close=client.close,
    )
