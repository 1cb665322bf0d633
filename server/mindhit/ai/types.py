from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal


ProviderType = Literal["openai", "gemini", "claude"]
TaskType = Literal["default", "tag_extraction", "mindmap"]
Role = Literal["system", "user", "assistant"]

PROVIDER_TYPES: tuple[ProviderType, ...] = ("openai", "gemini", "claude")
TASK_TYPES: tuple[TaskType, ...] = ("default", "tag_extraction", "mindmap")

DEFAULT_MODELS: dict[ProviderType, str] = {
    "openai": "gpt-4o",
    "gemini": "gemini-2.0-flash",
    "claude": "claude-sonnet-4-20250514",
}


@dataclass(frozen=True)
class Message:
    role: Role
    content: str


@dataclass
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float = 1.0
    stop_sequences: list[str] = field(default_factory=list)
    json_mode: bool = False
    enable_thinking: bool = False
    thinking_budget: int = 0
    # Overrides the provider's default model for this call.
    model: str | None = None


@dataclass
class ChatRequest:
    system_prompt: str = ""
    user_prompt: str = ""
    messages: list[Message] = field(default_factory=list)
    options: ChatOptions = field(default_factory=ChatOptions)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ChatResponse:
    content: str
    provider: ProviderType
    model: str
    thinking: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    request_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class StreamHandler:
    on_thinking: Callable[[str], None] | None = None
    on_content: Callable[[str], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_done: Callable[[ChatResponse], None] | None = None


@dataclass(frozen=True)
class Provider:
    """Capability record for one AI vendor; each vendor module fills in the callables."""

    type: ProviderType
    model: str
    chat: Callable[[ChatRequest], ChatResponse]
    chat_stream: Callable[[ChatRequest, StreamHandler], ChatResponse]
    is_healthy: Callable[[], bool]
    close: Callable[[], None]


def build_messages(req: ChatRequest) -> list[Message]:
    messages: list[Message] = []
    if req.system_prompt:
        messages.append(Message(role="system", content=req.system_prompt))
    messages.extend(req.messages)
    if req.user_prompt:
        messages.append(Message(role="user", content=req.user_prompt))
    return messages
