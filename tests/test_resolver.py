from __future__ import annotations

import pytest

from agent_proxy.errors import PromptResolutionError
from agent_proxy.prompts.resolver import (
    expand_prompt_with_context,
    load_base_system_prompt,
    resolve_prompt_reference,
)


def test_resolves_reference_with_metadata(prompts_dir):
    resolved = resolve_prompt_reference("agents/researcher", prompts_dir)

    assert resolved.metadata == {"model": "gemini-2.5-pro", "temperature": 0.2}
    assert resolved.content == "You are a research specialist.\nTask: {user_request}"


def test_md_suffix_is_optional(prompts_dir):
    assert (
        resolve_prompt_reference("agents/researcher.md", prompts_dir).content
        == resolve_prompt_reference("agents/researcher", prompts_dir).content
    )


def test_includes_are_expanded(prompts_dir):
    (prompts_dir / "agents" / "writer.md").write_text(
        "Write well. {{include:snippets/tone}}", encoding="utf-8"
    )

    assert resolve_prompt_reference("agents/writer", prompts_dir).content == "Write well. Be concise."


def test_missing_reference_is_wrapped(prompts_dir):
    with pytest.raises(PromptResolutionError) as excinfo:
        resolve_prompt_reference("agents/nope", prompts_dir)

    assert str(excinfo.value).startswith('Failed to resolve prompt reference "agents/nope":')
    assert "not found" in str(excinfo.value)


def test_cycle_in_prompt_is_wrapped(prompts_dir):
    (prompts_dir / "agents" / "loop.md").write_text("{{include:agents/loop}}", encoding="utf-8")

    with pytest.raises(PromptResolutionError, match="Circular include detected"):
        resolve_prompt_reference("agents/loop", prompts_dir)


def test_reference_outside_base_is_rejected(prompts_dir, tmp_path):
    (tmp_path / "secret.md").write_text("secret", encoding="utf-8")

    with pytest.raises(PromptResolutionError, match="escapes prompt directory"):
        resolve_prompt_reference("../secret", prompts_dir)


def test_base_system_prompt_expands_includes(prompt_config):
    assert load_base_system_prompt(prompt_config) == "You are the base assistant.\nBe concise."


def test_base_system_prompt_requires_configuration(config):
    with pytest.raises(PromptResolutionError, match="Failed to load base system prompt"):
        load_base_system_prompt(config)


def test_base_system_prompt_broken_include(prompt_config, prompts_dir):
    (prompts_dir / "snippets" / "tone.md").unlink()

    with pytest.raises(PromptResolutionError, match="Include file not found: snippets/tone"):
        load_base_system_prompt(prompt_config)


def test_expand_with_context(prompts_dir):
    resolved = resolve_prompt_reference("agents/researcher", prompts_dir)

    assert expand_prompt_with_context(resolved, {"user_request": "find papers"}).endswith(
        "Task: find papers"
    )
