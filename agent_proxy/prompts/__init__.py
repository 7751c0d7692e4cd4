"""Prompt composition — directives, includes, front matter, preprocessing.

``preprocess_request`` is the entry point used by the runtime; the other
names are exported for reuse and tests.
"""

from agent_proxy.prompts.directive import (
    PromptDirective,
    clean_messages,
    detect_prompt_directive,
    find_latest_directive,
)
from agent_proxy.prompts.includes import IncludeRoots, expand_includes, replace_placeholders
from agent_proxy.prompts.metadata import ParsedPrompt, parse_prompt_metadata, strip_frontmatter
from agent_proxy.prompts.preprocessor import ProcessedRequest, preprocess_request
from agent_proxy.prompts.resolver import (
    ResolvedPrompt,
    load_base_system_prompt,
    resolve_prompt_reference,
)

__all__ = [
    "IncludeRoots",
    "ParsedPrompt",
    "ProcessedRequest",
    "PromptDirective",
    "ResolvedPrompt",
    "clean_messages",
    "detect_prompt_directive",
    "expand_includes",
    "find_latest_directive",
    "load_base_system_prompt",
    "parse_prompt_metadata",
    "preprocess_request",
    "replace_placeholders",
    "resolve_prompt_reference",
    "strip_frontmatter",
]
