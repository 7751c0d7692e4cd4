"""Request preprocessing — compose the system prompt for one request.

base system prompt + prompt selected by the latest ``{{prompt:...}}``
directive in the conversation. The directive itself is removed from the
message that carried it before the request goes to the backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_proxy.prompts.directive import clean_messages, find_latest_directive
from agent_proxy.prompts.resolver import (
    expand_prompt_with_context,
    load_base_system_prompt,
    resolve_prompt_reference,
)

if TYPE_CHECKING:
    from agent_proxy.config import AgentConfig
    from agent_proxy.schemas import ChatCompletionRequest

logger = logging.getLogger(__name__)


@dataclass
class ProcessedRequest:
    request: ChatCompletionRequest
    system_prompt: str | None = None
    prompt_metadata: dict[str, Any] | None = field(default=None)


def combine_system_prompts(base: str, dynamic: str) -> str:
    """Join with a blank line; blank operands are dropped."""
    if not base.strip():
        return dynamic
    if not dynamic.strip():
        return base
    return f"{base}\n\n{dynamic}"


def preprocess_request(request: ChatCompletionRequest, config: AgentConfig) -> ProcessedRequest:
    """Rewrite ``request`` and compose its system prompt.

    Raises PromptResolutionError when the base prompt or the directive's
    prompt cannot be resolved.
    """
    if not config.prompts_enabled:
        return ProcessedRequest(request=request)

    base_prompt = load_base_system_prompt(config)

    directive = find_latest_directive(request.messages)
    if directive is None:
        return ProcessedRequest(request=request, system_prompt=base_prompt)

    logger.info(
        f"Prompt directive '{directive.reference}' found in message {directive.message_index}"
    )
    resolved = resolve_prompt_reference(directive.reference, config.prompts_base_path)
    dynamic_prompt = expand_prompt_with_context(
        resolved, {"user_request": directive.cleaned_message}
    )
    if resolved.metadata:
        # Metadata is reported, not applied.
        logger.debug(f"Prompt metadata for '{directive.reference}': {resolved.metadata}")

    rewritten = request.model_copy(
        update={"messages": clean_messages(request.messages, directive)}
    )
    return ProcessedRequest(
        request=rewritten,
        system_prompt=combine_system_prompts(base_prompt, dynamic_prompt),
        prompt_metadata=resolved.metadata,
    )
