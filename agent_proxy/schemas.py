"""Request/response models — the OpenAI wire format the proxy speaks."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ContentPart(BaseModel):
    """One part of multimodal message content.

    Only ``text`` parts carry text; image parts and anything else are kept
    as-is (extra fields allowed) so a rewritten request stays faithful.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str
    text: str | None = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    role: str
    content: str | list[ContentPart] | None = None

    def text(self) -> str:
        """Flatten content to plain text (text parts joined, others dropped)."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if part.type == "text" and part.text)


class ChatCompletionRequest(BaseModel):
    """Incoming body of ``POST /v1/chat/completions``."""

    model_config = ConfigDict(extra="allow", frozen=True)

    messages: list[ChatMessage] = Field(min_length=1)
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool | None = False
    n: int | None = None
    stop: str | list[str] | None = None

    def stop_sequences(self) -> list[str] | None:
        if self.stop is None:
            return None
        if isinstance(self.stop, str):
            return [self.stop]
        return list(self.stop)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class Choice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str | None = "stop"


class Usage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatCompletionResponse(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: Usage


class Delta(BaseModel):
    role: str | None = None
    content: str | None = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: Delta
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    """A single SSE event in a streamed completion.

    Every chunk of one response shares ``id`` and ``created``.
    """

    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice]

    def wire(self) -> dict[str, Any]:
        """Dump without unset delta fields (``{"role": "assistant"}``, ``{}``)."""
        return self.model_dump(exclude_none=True) | {
            "choices": [
                {
                    "index": c.index,
                    "delta": c.delta.model_dump(exclude_none=True),
                    "finish_reason": c.finish_reason,
                }
                for c in self.choices
            ]
        }


class ErrorEnvelope(BaseModel):
    """Normalized error body, OpenAI ``{"error": {...}}`` payload."""

    message: str
    type: str
    code: str | None = None
    param: str | None = None


class HealthConfig(BaseModel):
    model: str
    project: str
    location: str


class HealthResponse(BaseModel):
    status: str
    version: str
    config: HealthConfig
