from __future__ import annotations

import pytest

from agent_proxy.prompts.directive import (
    PromptDirective,
    clean_messages,
    detect_prompt_directive,
    find_latest_directive,
)
from agent_proxy.schemas import ChatMessage, ContentPart


def test_detect_directive_at_start():
    directive = detect_prompt_directive("{{prompt:a/b}} rest")

    assert directive.reference == "a/b"
    assert directive.cleaned_message == "rest"


@pytest.mark.parametrize("text", ["{{prompt:}} rest", "{{prompt:   }} rest", "hello {{prompt:a/b}}", ""])
def test_detect_rejects_empty_or_misplaced(text):
    assert detect_prompt_directive(text) is None


def test_detect_tolerates_inner_whitespace():
    directive = detect_prompt_directive("{{ prompt : agents/researcher }}\nFind sources")

    assert directive.reference == "agents/researcher"
    assert directive.cleaned_message == "Find sources"


def _conversation(directive_index: int, size: int = 5) -> list[ChatMessage]:
    roles = ["system", "user", "assistant", "user", "assistant"]
    messages = []
    for i in range(size):
        role = roles[i % len(roles)]
        if i == directive_index:
            messages.append(ChatMessage(role="user", content="{{prompt:agents/researcher}} go"))
        else:
            messages.append(ChatMessage(role=role, content=f"plain message {i} with {{braces}}"))
    return messages


@pytest.mark.parametrize("k", [0, 1, 2, 3, 4])
def test_find_latest_returns_the_only_directive_index(k):
    directive = find_latest_directive(_conversation(k))

    assert directive is not None
    assert directive.message_index == k
    assert directive.reference == "agents/researcher"


@pytest.mark.parametrize("role", ["system", "assistant"])
def test_find_latest_ignores_non_user_roles(role):
    messages = [
        ChatMessage(role=role, content="{{prompt:agents/researcher}} nope"),
        ChatMessage(role="user", content="hello"),
        ChatMessage(role=role, content="{{prompt:agents/other}}"),
    ]

    assert find_latest_directive(messages) is None


def test_find_latest_prefers_newest_user_directive():
    messages = [
        ChatMessage(role="user", content="{{prompt:first}} a"),
        ChatMessage(role="assistant", content="ok"),
        ChatMessage(role="user", content="{{prompt:second}} b"),
        ChatMessage(role="user", content="no directive"),
    ]

    directive = find_latest_directive(messages)

    assert directive == PromptDirective(reference="second", cleaned_message="b", message_index=2)


def test_find_latest_reads_first_text_part_of_multimodal_content():
    messages = [
        ChatMessage(
            role="user",
            content=[
                ContentPart(type="image_url", image_url={"url": "data:image/png;base64,AA"}),
                ContentPart(type="text", text="{{prompt:agents/researcher}} describe"),
                ContentPart(type="text", text="{{prompt:ignored}}"),
            ],
        )
    ]

    directive = find_latest_directive(messages)

    assert directive.reference == "agents/researcher"
    assert directive.cleaned_message == "describe"


def test_clean_messages_only_touches_directive_message():
    messages = [
        ChatMessage(role="user", content="{{prompt:old}} earlier"),
        ChatMessage(role="assistant", content="answer"),
        ChatMessage(role="user", content="{{prompt:agents/researcher}} now"),
    ]
    directive = find_latest_directive(messages)

    cleaned = clean_messages(messages, directive)

    assert [m.content for m in cleaned] == ["{{prompt:old}} earlier", "answer", "now"]
    assert messages[2].content == "{{prompt:agents/researcher}} now"


def test_clean_messages_keeps_non_text_parts():
    image = ContentPart(type="image_url", image_url={"url": "https://example.com/cat.png"})
    messages = [
        ChatMessage(
            role="user",
            content=[image, ContentPart(type="text", text="{{prompt:x}} what is this?")],
        )
    ]
    directive = find_latest_directive(messages)

    cleaned = clean_messages(messages, directive)

    parts = cleaned[0].content
    assert parts[0] == image
    assert parts[1].text == "what is this?"
