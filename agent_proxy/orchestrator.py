"""Orchestrator — translates OpenAI chat requests to Gemini and back.

Requests become ``generate_content`` calls on Vertex AI: system messages and
the composed system prompt become the system instruction, the remaining
turns become ``Content`` objects (assistant → model). Responses, stream
deltas included, come back as OpenAI completion objects. Gemini "thought"
parts are surfaced inline as ``<think>...</think>`` spans.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import AsyncIterator, Iterable
from typing import Any

from google import genai
from google.genai import types

from agent_proxy.config import AgentConfig
from agent_proxy.schemas import (
    AssistantMessage,
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    Choice,
    ChunkChoice,
    Delta,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = (
    "You are a helpful AI assistant. Provide accurate, helpful, and concise responses."
)
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096
TOP_K = 40
TOP_P = 0.95

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token, rounded up."""
    return math.ceil(len(text) / 4)


def _get_client(config: AgentConfig) -> genai.Client:
    """Create a Vertex AI client for the configured project and region."""
    return genai.Client(
        vertexai=True,
        project=config.vertex_ai_project,
        location=config.vertex_ai_location,
    )


def _response_parts(response: Any) -> Iterable[Any]:
    """Content parts of the first candidate, tolerating missing fields."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return getattr(content, "parts", None) or []


class ThoughtWrapper:
    """Wraps each contiguous run of thought fragments in one think span.

    ``feed`` returns the text to emit for a fragment: the opening tag goes
    with the first fragment of a run, the closing tag with the first
    fragment after it. ``close`` returns whatever is still open.
    """

    def __init__(self) -> None:
        self.in_thought = False

    def feed(self, text: str, thought: bool) -> str:
        prefix = ""
        if thought and not self.in_thought:
            prefix = THINK_OPEN
        elif not thought and self.in_thought:
            prefix = THINK_CLOSE
        self.in_thought = thought
        return prefix + text

    def close(self) -> str:
        if self.in_thought:
            self.in_thought = False
            return THINK_CLOSE
        return ""


class Orchestrator:
    """Owns the backend client; one instance per server process."""

    def __init__(self, config: AgentConfig, client: Any | None = None) -> None:
        self.config = config
        self.model = config.vertex_ai_model
        self.client = client if client is not None else _get_client(config)
        logger.info(
            f"Orchestrator initialized (project={config.vertex_ai_project}, "
            f"location={config.vertex_ai_location}, model={self.model})"
        )

    # ------------------------------------------------------------------
    # Request conversion
    # ------------------------------------------------------------------

    @staticmethod
    def build_contents(messages: Iterable[ChatMessage]) -> list[types.Content]:
        """Non-system messages as Gemini turns; content flattened to text."""
        return [
            types.Content(
                role="model" if message.role == "assistant" else "user",
                parts=[types.Part(text=message.text())],
            )
            for message in messages
            if message.role != "system"
        ]

    @staticmethod
    def build_system_instruction(
        request: ChatCompletionRequest, system_prompt: str | None = None
    ) -> str:
        sections = [system_prompt] if system_prompt and system_prompt.strip() else []
        sections += [m.text() for m in request.messages if m.role == "system" and m.text()]
        if not sections:
            return DEFAULT_INSTRUCTIONS
        return "\n\n".join(sections)

    def build_generation_config(
        self, request: ChatCompletionRequest, system_prompt: str | None = None
    ) -> types.GenerateContentConfig:
        kwargs: dict[str, Any] = {
            "system_instruction": self.build_system_instruction(request, system_prompt),
            "temperature": (
                request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "max_output_tokens": (
                request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS
            ),
            "top_k": TOP_K,
            "top_p": TOP_P,
        }
        stop = request.stop_sequences()
        if stop:
            kwargs["stop_sequences"] = stop
        if self.config.include_thoughts:
            kwargs["thinking_config"] = types.ThinkingConfig(include_thoughts=True)
        return types.GenerateContentConfig(**kwargs)

    def _new_ids(self) -> tuple[str, int]:
        return f"chatcmpl-{uuid.uuid4().hex[:24]}", int(time.time())

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def complete(
        self, request: ChatCompletionRequest, system_prompt: str | None = None
    ) -> ChatCompletionResponse:
        """One backend call, one OpenAI response. Backend errors propagate."""
        logger.debug(
            f"Processing non-streaming request (messages={len(request.messages)}, "
            f"requested model={request.model or self.model})"
        )
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=self.build_contents(request.messages),
            config=self.build_generation_config(request, system_prompt),
        )

        wrapper = ThoughtWrapper()
        content = "".join(
            wrapper.feed(part.text, bool(getattr(part, "thought", False)))
            for part in _response_parts(response)
            if getattr(part, "text", None)
        )
        content += wrapper.close()

        prompt_tokens = estimate_tokens(" ".join(m.text() for m in request.messages))
        completion_tokens = estimate_tokens(content)
        chat_id, created = self._new_ids()

        logger.info(f"Non-streaming request completed (id={chat_id}, chars={len(content)})")
        return ChatCompletionResponse(
            id=chat_id,
            created=created,
            model=self.model,
            choices=[Choice(message=AssistantMessage(content=content), finish_reason="stop")],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self, request: ChatCompletionRequest, system_prompt: str | None = None
    ) -> AsyncIterator[ChatCompletionChunk]:
        """Yield OpenAI chunks as Gemini deltas arrive.

        A role-only chunk comes first, then content chunks, then a terminal
        chunk with an empty delta and ``finish_reason="stop"``. Chunks
        already yielded stand if the backend fails later.
        """
        logger.debug(
            f"Processing streaming request (messages={len(request.messages)}, "
            f"requested model={request.model or self.model})"
        )
        chat_id, created = self._new_ids()

        def chunk(delta: Delta, finish_reason: str | None = None) -> ChatCompletionChunk:
            return ChatCompletionChunk(
                id=chat_id,
                created=created,
                model=self.model,
                choices=[ChunkChoice(delta=delta, finish_reason=finish_reason)],
            )

        backend_stream = await self.client.aio.models.generate_content_stream(
            model=self.model,
            contents=self.build_contents(request.messages),
            config=self.build_generation_config(request, system_prompt),
        )

        wrapper = ThoughtWrapper()
        role_sent = False
        try:
            async for delta in backend_stream:
                for part in _response_parts(delta):
                    text = getattr(part, "text", None)
                    if not text:
                        continue
                    if not role_sent:
                        yield chunk(Delta(role="assistant"))
                        role_sent = True
                    thought = bool(getattr(part, "thought", False))
                    yield chunk(Delta(content=wrapper.feed(text, thought)))
        finally:
            aclose = getattr(backend_stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not role_sent:
            yield chunk(Delta(role="assistant"))
        tail = wrapper.close()
        if tail:
            yield chunk(Delta(content=tail))
        yield chunk(Delta(), finish_reason="stop")

        logger.info(f"Streaming request completed (id={chat_id})")
