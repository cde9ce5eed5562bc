'''Four-section task templates for `pi` invocations.

Every task handed to `pi` is a Markdown string with four labeled sections, always in this
order:

    ## Objective
    ## Output Format
    ## Context
    ## Boundaries

Each label appears exactly once. A blank section is rendered as `(none)` rather than being
dropped, so downstream tooling (and `parse_task`) can rely on the shape. Leaving a section
blank is a quality problem, not an error: `missing_sections()` lists the blank fields and the
dispatcher prints a warning for them.

Context compression
Agents work best with tight context. `render(max_context_chars=N)` keeps the head and tail of
an oversized context and replaces the middle with a one-line elision marker; the compressed
context never exceeds `N` characters. `with_context_files()` inlines only the named files,
each under a `### <path>` heading.
'''

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path

SECTION_LABELS: tuple[tuple[str, str], ...] = (
    ("objective", "Objective"),
    ("output_format", "Output Format"),
    ("context", "Context"),
    ("boundaries", "Boundaries"),
)

EMPTY_SECTION = "(none)"


@dataclass(frozen=True)
class TaskTemplate:
    objective: str = ""
    output_format: str = ""
    context: str = ""
    boundaries: str = ""

    def missing_sections(self) -> list[str]:
        return [field for field, _label in SECTION_LABELS if not getattr(self, field).strip()]

    def with_context_files(self, paths: Iterable[Path]) -> TaskTemplate:
        blocks: list[str] = []
        if self.context.strip():
            blocks.append(self.context.strip())
        for p in paths:
            body = Path(p).read_text(encoding="utf-8").rstrip()
            blocks.append(f"### {p}\n\n{body}")
        return replace(self, context="\n\n".join(blocks))

    def with_appended_context(self, heading: str, body: str) -> TaskTemplate:
        block = f"### {heading}\n\n{body.strip() or EMPTY_SECTION}"
        joined = f"{self.context.strip()}\n\n{block}" if self.context.strip() else block
        return replace(self, context=joined)

    def render(self, *, max_context_chars: int | None = None) -> str:
        lines: list[str] = []
        for field, label in SECTION_LABELS:
            body = getattr(self, field).strip()
            if field == "context" and max_context_chars is not None:
                body = compress_context(body, max_context_chars)
            lines.append(f"## {label}")
            lines.append("")
            lines.append(body or EMPTY_SECTION)
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"


def compress_context(text: str, max_chars: int) -> str:
    """Trim `text` to at most `max_chars`, keeping head and tail around an elision marker."""
    if max_chars < 0:
        raise ValueError("max_chars must be >= 0")
    if len(text) <= max_chars:
        return text

    dropped = len(text)
    marker = ""
    # The marker length depends on the dropped count, so settle it in a couple of passes.
    for _ in range(3):
        marker = f"\n[... {dropped} characters elided ...]\n"
        keep = max(0, max_chars - len(marker))
        dropped = len(text) - keep
    keep = max_chars - len(marker)
    if keep <= 0:
        return text[:max_chars]

    head = keep - keep // 2
    tail = keep // 2
    return text[:head] + marker + (text[-tail:] if tail else "")


def parse_task(text: str) -> TaskTemplate:
    """Split a rendered (or hand-written) task back into its four fields.

    Unknown `## ` headings are kept inside the preceding section. Text before the first
    recognized heading is treated as part of the objective.
    """
    by_label = {label.lower(): field for field, label in SECTION_LABELS}
    sections: dict[str, list[str]] = {field: [] for field, _label in SECTION_LABELS}
    current = "objective"

    for line in text.splitlines():
        if line.startswith("## "):
            field = by_label.get(line[3:].strip().lower())
            if field is not None:
                current = field
                continue
        sections[current].append(line)

    values: dict[str, str] = {}
    for field, lines in sections.items():
        body = "\n".join(lines).strip()
        values[field] = "" if body == EMPTY_SECTION else body
    return TaskTemplate(**values)
