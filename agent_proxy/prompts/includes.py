"""Include expansion — ``{{include:<path>}}`` macros, recursively.

Include paths are relative to one of three roots under the prompts base
path. The first path segment picks the root::

    {{include:snippets/tone}}        -> <base>/snippets/tone.md
    {{include:templates/review}}     -> <base>/templates/review.yaml
    {{include:shared/rules}}         -> <base>/shared/rules.md

Files currently being expanded form a stack; meeting one of them again is
a cycle. A file that was already expanded elsewhere may be included again.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from agent_proxy.errors import CircularIncludeError, IncludeNotFoundError, PromptPathError

logger = logging.getLogger(__name__)

_INCLUDE = re.compile(r"\{\{\s*include\s*:\s*([^}]+?)\s*\}\}")

DEFAULT_EXTENSIONS = {
    "prompts": ".md",
    "templates": ".yaml",
    "snippets": ".md",
}

WELL_KNOWN_PLACEHOLDERS = ("user_request", "relevant_files", "review_comments")


@dataclass(frozen=True)
class IncludeRoots:
    prompts: Path
    templates: Path
    snippets: Path

    @classmethod
    def from_base(cls, base_path: str | Path) -> IncludeRoots:
        base = Path(base_path)
        return cls(prompts=base, templates=base / "templates", snippets=base / "snippets")

    def root(self, name: str) -> Path:
        return getattr(self, name)


def contained_path(root: Path, relative: str) -> Path:
    """Resolve ``relative`` under ``root``; refuse anything that escapes it."""
    try:
        resolved_root = root.resolve()
        candidate = (resolved_root / relative).resolve()
    except (ValueError, RuntimeError) as e:
        # NUL bytes, symlink loops
        raise PromptPathError(f"Invalid prompt path {relative!r}: {e}") from e
    if not candidate.is_relative_to(resolved_root):
        raise PromptPathError(f"Path escapes prompt directory {root}: {relative}")
    return candidate


def resolve_include(reference: str, roots: IncludeRoots) -> Path:
    """Map an include reference to a file path inside its root."""
    segments = reference.split("/")
    if len(segments) >= 2 and segments[0] in DEFAULT_EXTENSIONS:
        directory, relative = segments[0], "/".join(segments[1:])
    else:
        directory, relative = "prompts", reference

    if "." not in relative.rsplit("/", 1)[-1]:
        relative += DEFAULT_EXTENSIONS[directory]

    return contained_path(roots.root(directory), relative)


def _display(path: Path, roots: IncludeRoots) -> str:
    base = roots.prompts.resolve()
    return path.relative_to(base).as_posix() if path.is_relative_to(base) else str(path)


def expand_includes(
    text: str,
    roots: IncludeRoots,
    stack: list[Path] | None = None,
) -> str:
    """Replace every include macro in ``text`` with the expanded file.

    ``stack`` holds the files being expanded by the callers (outermost
    first), typically the document ``text`` came from.
    """
    stack = stack if stack is not None else []

    def substitute(match: re.Match[str]) -> str:
        reference = match.group(1).strip()
        path = resolve_include(reference, roots)

        if path in stack:
            cycle = stack[stack.index(path):] + [path]
            raise CircularIncludeError([_display(p, roots) for p in cycle])
        if not path.is_file():
            raise IncludeNotFoundError(reference, str(path))

        logger.debug(f"Including {reference} from {path}")
        included = path.read_text(encoding="utf-8")

        stack.append(path)
        try:
            return expand_includes(included, roots, stack)
        finally:
            stack.pop()

    return _INCLUDE.sub(substitute, text)


def replace_placeholders(text: str, context: Mapping[str, str] | None = None) -> str:
    """Fill ``{key}`` placeholders after includes are expanded.

    Well-known keys are always replaced (by "" when absent from
    ``context``); other context keys are replaced by their values; any other
    ``{...}`` is left as written. Without a context the text is unchanged.
    """
    if not context:
        return text

    values = {key: "" for key in WELL_KNOWN_PLACEHOLDERS}
    values.update({key: str(value) for key, value in context.items()})

    # One pass, so substituted values are never scanned again.
    pattern = re.compile("|".join(re.escape(f"{{{key}}}") for key in values))
    return pattern.sub(lambda m: values[m.group(0)[1:-1]], text)
