from __future__ import annotations

import json
from typing import cast

import httpx
import pytest

from mindhit.ai.errors import InvalidJSON, ProviderError
from mindhit.ai.providers.claude import new_claude_provider
from mindhit.ai.providers.common import strip_code_fence
from mindhit.ai.providers.gemini import new_gemini_provider
from mindhit.ai.providers.openai import new_openai_provider
from mindhit.ai.types import ChatOptions, ChatRequest, StreamHandler


def _body(request: httpx.Request) -> dict[str, object]:
    return cast(dict[str, object], json.loads(request.content))


def test_openai_chat_parses_content_and_usage() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "model": "gpt-4o-2024",
                "choices": [{"message": {"role": "assistant", "content": "hello"}}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
            },
        )

    provider = new_openai_provider(api_key="sk-test-key-123", transport=httpx.MockTransport(handler))
    resp = provider.chat(
        ChatRequest(system_prompt="be brief", user_prompt="hi", options=ChatOptions(max_tokens=50))
    )

    assert resp.content == "hello"
    assert resp.provider == "openai"
    assert resp.model == "gpt-4o-2024"
    assert (resp.input_tokens, resp.output_tokens, resp.total_tokens) == (12, 3, 15)
    assert resp.request_id == "chatcmpl-1"

    request = seen[0]
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test-key-123"
    body = _body(request)
    assert body["model"] == "gpt-4o"
    assert body["max_tokens"] == 50
    assert body["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]
    assert "response_format" not in body


def test_openai_json_mode_strips_fence_and_rejects_invalid() -> None:
    replies = ['```json\n{"a": 1}\n```', "not json"]

    def handler(request: httpx.Request) -> httpx.Response:
        assert _body(request)["response_format"] == {"type": "json_object"}
        return httpx.Response(200, json={"choices": [{"message": {"content": replies.pop(0)}}]})

    provider = new_openai_provider(api_key="k", transport=httpx.MockTransport(handler))
    req = ChatRequest(user_prompt="x", options=ChatOptions(json_mode=True))

    assert provider.chat(req).content == '{"a": 1}'
    with pytest.raises(InvalidJSON):
        _ = provider.chat(req)


def test_http_errors_map_to_provider_error() -> None:
    statuses = [429, 400]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(statuses.pop(0), json={"error": {"message": "slow down"}})

    provider = new_openai_provider(api_key="k", transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderError) as exc_info:
        _ = provider.chat(ChatRequest(user_prompt="x"))
    assert exc_info.value.status_code == 429
    assert exc_info.value.retryable is True
    assert "slow down" in str(exc_info.value)

    with pytest.raises(ProviderError) as exc_info:
        _ = provider.chat(ChatRequest(user_prompt="x"))
    assert exc_info.value.retryable is False


def test_timeout_maps_to_timeout_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    provider = new_gemini_provider(api_key="k", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError) as exc_info:
        _ = provider.chat(ChatRequest(user_prompt="x"))
    assert exc_info.value.timeout is True
    assert exc_info.value.provider == "gemini"


def test_empty_choices_is_provider_error() -> None:
    provider = new_openai_provider(
        api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []}))
    )
    with pytest.raises(ProviderError):
        _ = provider.chat(ChatRequest(user_prompt="x"))


def test_gemini_separates_thoughts_and_uses_model_path() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "responseId": "g-1",
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "pondering", "thought": True},
                                {"text": "answer"},
                            ]
                        }
                    }
                ],
                "usageMetadata": {
                    "promptTokenCount": 7,
                    "candidatesTokenCount": 2,
                    "thoughtsTokenCount": 4,
                    "totalTokenCount": 13,
                },
            },
        )

    provider = new_gemini_provider(api_key="g-key", transport=httpx.MockTransport(handler))
    resp = provider.chat(
        ChatRequest(
            system_prompt="sys",
            user_prompt="q",
            options=ChatOptions(model="gemini-test", enable_thinking=True, thinking_budget=256),
        )
    )

    assert resp.content == "answer"
    assert resp.thinking == "pondering"
    assert resp.model == "gemini-test"
    assert (resp.input_tokens, resp.output_tokens, resp.thinking_tokens, resp.total_tokens) == (7, 2, 4, 13)

    request = seen[0]
    assert request.url.path == "/v1beta/models/gemini-test:generateContent"
    assert request.headers["x-goog-api-key"] == "g-key"
    body = _body(request)
    assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}
    generation = cast(dict[str, object], body["generationConfig"])
    assert generation["thinkingConfig"] == {"thinkingBudget": 256, "includeThoughts": True}


def test_claude_total_is_input_plus_output_and_thinking_disables_temperature() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "id": "msg_1",
                "model": "claude-test",
                "content": [
                    {"type": "thinking", "thinking": "hmm"},
                    {"type": "text", "text": '{"ok": true}'},
                ],
                "usage": {"input_tokens": 20, "output_tokens": 5},
            },
        )

    provider = new_claude_provider(api_key="a-key", transport=httpx.MockTransport(handler))
    resp = provider.chat(
        ChatRequest(
            user_prompt="q",
            options=ChatOptions(json_mode=True, enable_thinking=True, thinking_budget=2048, max_tokens=8192),
        )
    )

    assert resp.content == '{"ok": true}'
    assert resp.thinking == "hmm"
    assert resp.total_tokens == 25

    request = seen[0]
    assert request.url.path == "/v1/messages"
    assert request.headers["x-api-key"] == "a-key"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = _body(request)
    assert body["thinking"] == {"type": "enabled", "budget_tokens": 2048}
    assert "temperature" not in body
    assert "JSON" in cast(str, body["system"])


def test_openai_stream_collects_deltas() -> None:
    chunks = [
        {"id": "c1", "choices": [{"delta": {"content": "Hel"}}]},
        {"id": "c1", "choices": [{"delta": {"content": "lo"}}]},
        {"id": "c1", "choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6}},
    ]
    sse = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert _body(request)["stream"] is True
        return httpx.Response(200, content=sse.encode(), headers={"Content-Type": "text/event-stream"})

    deltas: list[str] = []
    done: list[str] = []
    provider = new_openai_provider(api_key="k", transport=httpx.MockTransport(handler))
    resp = provider.chat_stream(
        ChatRequest(user_prompt="x"),
        StreamHandler(on_content=deltas.append, on_done=lambda r: done.append(r.content)),
    )

    assert deltas == ["Hel", "lo"]
    assert resp.content == "Hello"
    assert done == ["Hello"]
    assert resp.total_tokens == 6
    assert resp.request_id == "c1"


def test_claude_stream_error_event_calls_on_error() -> None:
    events = [
        {"type": "message_start", "message": {"id": "m1", "usage": {"input_tokens": 3}}},
        {"type": "error", "error": {"message": "overloaded"}},
    ]
    sse = "".join(f"event: x\ndata: {json.dumps(e)}\n\n" for e in events)
    provider = new_claude_provider(
        api_key="k",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, content=sse.encode())),
    )

    errors: list[Exception] = []
    with pytest.raises(ProviderError):
        _ = provider.chat_stream(ChatRequest(user_prompt="x"), StreamHandler(on_error=errors.append))
    assert len(errors) == 1


def test_health_check_reports_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="down")

    provider = new_openai_provider(api_key="k", transport=httpx.MockTransport(handler))
    assert provider.is_healthy() is False


def test_strip_code_fence() -> None:
    assert strip_code_fence('```json\n{"a":1}\n```') == '{"a":1}'
    assert strip_code_fence('  {"a":1}  ') == '{"a":1}'
