"""Prompt resolver — turns a directive reference into expanded content.

Also loads the base system prompt, which every composed prompt starts with.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from agent_proxy.errors import PromptError, PromptNotFoundError, PromptResolutionError
from agent_proxy.prompts.includes import (
    IncludeRoots,
    contained_path,
    expand_includes,
    replace_placeholders,
)
from agent_proxy.prompts.metadata import parse_prompt_metadata

if TYPE_CHECKING:
    from agent_proxy.config import AgentConfig

logger = logging.getLogger(__name__)


@dataclass
class ResolvedPrompt:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_document(path: Path, roots: IncludeRoots) -> ResolvedPrompt:
    parsed = parse_prompt_metadata(path.read_text(encoding="utf-8"))
    content = expand_includes(parsed.content, roots, stack=[path])
    return ResolvedPrompt(content=content, metadata=parsed.metadata)


def resolve_prompt_reference(reference: str, base_path: str | Path) -> ResolvedPrompt:
    """Resolve ``reference`` (e.g. ``analyzer`` or ``agents/researcher.md``).

    Raises PromptResolutionError naming the reference on any failure.
    """
    try:
        name = reference[:-3] if reference.endswith(".md") else reference
        path = contained_path(Path(base_path), f"{name}.md")
        if not path.is_file():
            raise PromptNotFoundError(f"Prompt file not found: {path}")
        resolved = _load_document(path, IncludeRoots.from_base(base_path))
    except (PromptError, OSError, UnicodeDecodeError) as e:
        raise PromptResolutionError(
            f'Failed to resolve prompt reference "{reference}": {e}'
        ) from e

    logger.debug(
        f"Resolved prompt '{reference}' ({len(resolved.content)} chars, "
        f"metadata keys={sorted(resolved.metadata)})"
    )
    return resolved


def load_base_system_prompt(config: AgentConfig) -> str:
    """Load the mandatory base system prompt, includes expanded."""
    try:
        base_path = config.prompts_base_path
        if base_path is None or config.system_prompt_path is None:
            raise PromptNotFoundError("Prompt composition is not configured")
        path = contained_path(base_path, config.system_prompt_path)
        if not path.is_file():
            raise PromptNotFoundError(f"System prompt file not found: {path}")
        return _load_document(path, IncludeRoots.from_base(base_path)).content
    except (PromptError, OSError, UnicodeDecodeError) as e:
        raise PromptResolutionError(f"Failed to load base system prompt: {e}") from e


def expand_prompt_with_context(
    prompt: ResolvedPrompt, context: Mapping[str, str] | None = None
) -> str:
    """Fill placeholders in an already-resolved prompt."""
    return replace_placeholders(prompt.content, context)
