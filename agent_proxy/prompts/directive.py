"""Prompt directive detection — ``{{prompt:<reference>}}`` at message start."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from agent_proxy.schemas import ChatMessage, ContentPart

_DIRECTIVE = re.compile(r"\A\{\{\s*prompt\s*:\s*([^}]+?)\s*\}\}\s*")


@dataclass(frozen=True)
class PromptDirective:
    reference: str
    cleaned_message: str
    message_index: int = 0


def detect_prompt_directive(text: str) -> PromptDirective | None:
    """Return the directive at the very start of ``text``, if any.

    >>> detect_prompt_directive("{{prompt:a/b}} rest")
    PromptDirective(reference='a/b', cleaned_message='rest', message_index=0)
    """
    match = _DIRECTIVE.match(text)
    if not match:
        return None
    reference = match.group(1).strip()
    if not reference:
        return None
    return PromptDirective(reference=reference, cleaned_message=text[match.end():])


def _first_text_part(content: list[ContentPart]) -> ContentPart | None:
    return next((part for part in content if part.type == "text"), None)


def find_latest_directive(messages: Sequence[ChatMessage]) -> PromptDirective | None:
    """Scan user messages newest-first; the first directive found wins.

    Directives in system or assistant messages are ignored. For multimodal
    content only the first text part is inspected.
    """
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.role != "user":
            continue

        if isinstance(message.content, str):
            text = message.content
        elif isinstance(message.content, list):
            part = _first_text_part(message.content)
            if part is None or not part.text:
                continue
            text = part.text
        else:
            continue

        directive = detect_prompt_directive(text)
        if directive:
            return PromptDirective(
                reference=directive.reference,
                cleaned_message=directive.cleaned_message,
                message_index=index,
            )
    return None


def clean_messages(
    messages: Sequence[ChatMessage], directive: PromptDirective
) -> list[ChatMessage]:
    """Copy of ``messages`` with the directive removed from its own message."""
    cleaned: list[ChatMessage] = []
    for index, message in enumerate(messages):
        if index != directive.message_index:
            cleaned.append(message)
            continue

        if isinstance(message.content, str):
            cleaned.append(message.model_copy(update={"content": directive.cleaned_message}))
        elif isinstance(message.content, list):
            target = _first_text_part(message.content)
            parts = [
                part.model_copy(update={"text": directive.cleaned_message})
                if part is target
                else part
                for part in message.content
            ]
            cleaned.append(message.model_copy(update={"content": parts}))
        else:
            cleaned.append(message)
    return cleaned
