from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from google.genai import types

from agent_proxy.config import ENV_FIELDS, AgentConfig


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from ~/.agent-proxy and the caller's environment."""
    monkeypatch.setenv("AGENT_PROXY_HOME", str(tmp_path / "state"))
    for name in ENV_FIELDS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def prompts_dir(tmp_path) -> Path:
    base = tmp_path / "prompts"
    for sub in ("base", "agents", "snippets", "templates"):
        (base / sub).mkdir(parents=True)

    (base / "base" / "system.md").write_text(
        "You are the base assistant.\n{{include:snippets/tone}}", encoding="utf-8"
    )
    (base / "snippets" / "tone.md").write_text("Be concise.", encoding="utf-8")
    (base / "agents" / "researcher.md").write_text(
        "---\nmodel: gemini-2.5-pro\ntemperature: 0.2\n---\n"
        "You are a research specialist.\nTask: {user_request}",
        encoding="utf-8",
    )
    return base


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(
        vertex_ai_project="test-project",
        vertex_ai_location="us-central1",
        vertex_ai_model="gemini-2.5-flash",
    )


@pytest.fixture
def prompt_config(prompts_dir) -> AgentConfig:
    return AgentConfig(
        vertex_ai_project="test-project",
        vertex_ai_location="us-central1",
        vertex_ai_model="gemini-2.5-flash",
        prompts_base_path=prompts_dir,
        system_prompt_path="base/system.md",
    )


# ---------------------------------------------------------------------------
# Fake Gemini client
# ---------------------------------------------------------------------------


def _response(*parts: tuple[str, bool]) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[types.Part(text=text, thought=thought or None) for text, thought in parts],
                )
            )
        ]
    )


class FakeModels:
    """Stands in for ``client.aio.models``; records every call."""

    def __init__(
        self,
        response: Any = None,
        chunks: list[Any] | None = None,
        error: Exception | None = None,
        stream_error: Exception | None = None,
    ) -> None:
        self.response = response
        self.chunks = chunks or []
        self.error = error
        self.stream_error = stream_error
        self.calls: list[dict[str, Any]] = []
        self.stream_closed = False

    async def generate_content(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return self.response

    async def generate_content_stream(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return self._iterate()

    async def _iterate(self):
        try:
            for chunk in self.chunks:
                yield chunk
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.stream_closed = True


@pytest.fixture
def gemini_response():
    """Build a GenerateContentResponse from ``(text, is_thought)`` pairs."""
    return _response


@pytest.fixture
def fake_client():
    def build(**kwargs) -> SimpleNamespace:
        return SimpleNamespace(aio=SimpleNamespace(models=FakeModels(**kwargs)))

    return build
