from __future__ import annotations

import pytest

from agent_proxy.errors import CircularIncludeError, IncludeNotFoundError, PromptPathError
from agent_proxy.prompts.includes import (
    IncludeRoots,
    expand_includes,
    replace_placeholders,
    resolve_include,
)


@pytest.fixture
def roots(prompts_dir) -> IncludeRoots:
    return IncludeRoots.from_base(prompts_dir)


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_resolve_picks_root_from_first_segment(roots, prompts_dir):
    assert resolve_include("snippets/tone", roots) == (prompts_dir / "snippets" / "tone.md").resolve()
    assert resolve_include("templates/review", roots) == (
        prompts_dir / "templates" / "review.yaml"
    ).resolve()
    assert resolve_include("shared/rules", roots) == (prompts_dir / "shared" / "rules.md").resolve()


def test_resolve_keeps_explicit_extension(roots, prompts_dir):
    assert resolve_include("snippets/data.json", roots) == (
        prompts_dir / "snippets" / "data.json"
    ).resolve()


def test_resolve_refuses_paths_outside_root(roots):
    with pytest.raises(PromptPathError):
        resolve_include("../outside", roots)
    with pytest.raises(PromptPathError):
        resolve_include("snippets/../../outside", roots)


def test_resolve_rejects_nul_byte(roots):
    with pytest.raises(PromptPathError):
        resolve_include("snippets/to\x00ne", roots)


def test_expands_nested_includes(roots, prompts_dir):
    _write(prompts_dir / "snippets" / "outer.md", "outer[{{include:snippets/inner}}]")
    _write(prompts_dir / "snippets" / "inner.md", "inner")
    _write(prompts_dir / "templates" / "review.yaml", "checklist: yes")

    text = "A {{include:snippets/outer}} B {{ include : templates/review }}"

    assert expand_includes(text, roots) == "A outer[inner] B checklist: yes"


def test_expansion_is_idempotent(roots, prompts_dir):
    _write(prompts_dir / "snippets" / "a.md", "alpha {{include:snippets/b}}")
    _write(prompts_dir / "snippets" / "b.md", "beta")
    doc = "{{include:snippets/a}} / {{include:snippets/b}} / {{include:snippets/tone}}"

    once = expand_includes(doc, roots)

    assert "{{include:" not in once
    assert expand_includes(once, roots) == once


def test_same_file_may_be_included_twice(roots, prompts_dir):
    _write(prompts_dir / "snippets" / "left.md", "L{{include:snippets/tone}}")
    _write(prompts_dir / "snippets" / "right.md", "R{{include:snippets/tone}}")

    text = "{{include:snippets/left}}|{{include:snippets/right}}"

    assert expand_includes(text, roots) == "LBe concise.|RBe concise."


def test_two_file_cycle_names_the_chain(roots, prompts_dir):
    a = prompts_dir / "a.md"
    _write(a, "A {{include:b}}")
    _write(prompts_dir / "b.md", "B {{include:a}}")

    with pytest.raises(CircularIncludeError) as excinfo:
        expand_includes(a.read_text(), roots, stack=[a.resolve()])

    assert str(excinfo.value) == "Circular include detected: a.md -> b.md -> a.md"
    assert excinfo.value.chain == ["a.md", "b.md", "a.md"]


def test_self_include_is_a_cycle(roots, prompts_dir):
    _write(prompts_dir / "snippets" / "loop.md", "again {{include:snippets/loop}}")

    with pytest.raises(CircularIncludeError, match="snippets/loop.md -> snippets/loop.md"):
        expand_includes("{{include:snippets/loop}}", roots)


def test_missing_include_names_reference(roots):
    with pytest.raises(IncludeNotFoundError) as excinfo:
        expand_includes("x {{include:snippets/missing}}", roots)

    assert excinfo.value.reference == "snippets/missing"
    assert "snippets/missing" in str(excinfo.value)


def test_text_without_macros_is_untouched(roots):
    text = "No macros here, only {placeholders} and {{other}} braces."

    assert expand_includes(text, roots) == text


def test_placeholders_replaced_from_context():
    text = "Do: {user_request}\nFiles: {relevant_files}\nKeep: {custom} {unknown}"

    result = replace_placeholders(text, {"user_request": "summarize", "custom": "42"})

    assert result == "Do: summarize\nFiles: \nKeep: 42 {unknown}"


def test_placeholders_without_context_are_left_alone():
    text = "Do: {user_request}"

    assert replace_placeholders(text) == text
    assert replace_placeholders(text, {}) == text


def test_substituted_values_are_not_rescanned():
    result = replace_placeholders("{user_request}", {"user_request": "literal {review_comments}"})

    assert result == "literal {review_comments}"
