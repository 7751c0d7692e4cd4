"""Front-matter parsing for prompt documents.

A prompt may start with a YAML block fenced by ``---`` lines carrying
generation hints (model, temperature, tools, ...)::

    ---
    model: gemini-2.5-pro
    temperature: 0.2
    ---
    You are a research specialist.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(
    r"\A---[ \t]*\r?\n(?P<meta>.*?)^---[ \t]*(?:\r?\n|\Z)(?P<body>.*)\Z",
    re.DOTALL | re.MULTILINE,
)
_LEADING_BLANK_LINE = re.compile(r"\A\r?\n")


@dataclass
class ParsedPrompt:
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""


def parse_prompt_metadata(raw: str) -> ParsedPrompt:
    """Split ``raw`` into front-matter metadata and body content.

    Only the first block counts. Empty, non-mapping or malformed YAML
    yields empty metadata; the body is kept either way.
    """
    match = _FRONTMATTER.match(raw)
    if not match:
        return ParsedPrompt(metadata={}, content=raw)

    frontmatter = match.group("meta")
    content = _LEADING_BLANK_LINE.sub("", match.group("body"), count=1)

    if not frontmatter.strip():
        return ParsedPrompt(metadata={}, content=content)

    try:
        metadata = yaml.safe_load(frontmatter)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring malformed front matter: {e}")
        return ParsedPrompt(metadata={}, content=content)

    if not isinstance(metadata, dict):
        return ParsedPrompt(metadata={}, content=content)
    return ParsedPrompt(metadata=metadata, content=content)


def strip_frontmatter(raw: str) -> str:
    """Body of ``raw`` without its front matter."""
    return parse_prompt_metadata(raw).content
