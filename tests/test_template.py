from __future__ import annotations

from pathlib import Path

import pytest

from pidispatch.template import EMPTY_SECTION, TaskTemplate, compress_context, parse_task

LABELS = ["## Objective", "## Output Format", "## Context", "## Boundaries"]


def _full() -> TaskTemplate:
    return TaskTemplate(
        objective="Find unused imports.",
        output_format="JSON list of file:line.",
        context="Python 3.12 monorepo.",
        boundaries="Read-only.",
    )


@pytest.mark.parametrize(
    "tpl",
    [
        _full(),
        TaskTemplate(),
        TaskTemplate(objective="only objective"),
        # Section-like text inside a body must not create a second label.
        TaskTemplate(objective="x", context="see ## Objective of the parent task"),
    ],
)
def test_render_emits_each_label_once_in_fixed_order(tpl: TaskTemplate) -> None:
    rendered = tpl.render()
    label_lines = [ln for ln in rendered.splitlines() if ln.startswith("## ")]
    assert label_lines == LABELS
    positions = [rendered.index(label + "\n") for label in LABELS]
    assert positions == sorted(positions)


def test_render_marks_empty_sections_and_ends_with_newline() -> None:
    rendered = TaskTemplate(objective="  Do it  ").render()
    assert rendered.startswith("## Objective\n\nDo it\n\n## Output Format\n\n(none)\n")
    assert rendered.endswith("## Boundaries\n\n(none)\n")


def test_missing_sections_reports_blank_fields() -> None:
    assert _full().missing_sections() == []
    assert TaskTemplate(objective="x", context="  ").missing_sections() == ["output_format", "context", "boundaries"]


def test_compress_context_keeps_head_and_tail_within_limit() -> None:
    text = "HEAD-" + ("m" * 500) + "-TAIL"
    out = compress_context(text, 120)
    assert len(out) <= 120
    assert out.startswith("HEAD-")
    assert out.endswith("-TAIL")
    # 510 chars in, 120 out: a 33-char marker leaves 87 kept, so 423 are dropped.
    assert "\n[... 423 characters elided ...]\n" in out


def test_compress_context_leaves_short_text_alone_and_truncates_tiny_limits() -> None:
    assert compress_context("short", 100) == "short"
    assert compress_context("abcdefghij" * 10, 5) == "abcde"
    with pytest.raises(ValueError):
        compress_context("x", -1)


def test_render_applies_context_compression_only_to_context() -> None:
    tpl = TaskTemplate(objective="o" * 300, context="c" * 300)
    rendered = tpl.render(max_context_chars=80)
    assert "o" * 300 in rendered
    assert "c" * 300 not in rendered
    assert "characters elided" in rendered


def test_with_context_files_inlines_named_files_under_headings(tmp_path: Path) -> None:
    a = tmp_path / "a.py"
    a.write_text("print('a')\n", encoding="utf-8")
    tpl = TaskTemplate(objective="x", context="Existing notes.").with_context_files([a])
    assert tpl.context == f"Existing notes.\n\n### {a}\n\nprint('a')"


def test_with_appended_context_adds_heading_block() -> None:
    tpl = TaskTemplate(objective="x").with_appended_context("Output of scan", "  found 3 issues ")
    assert tpl.context == "### Output of scan\n\nfound 3 issues"
    tpl2 = tpl.with_appended_context("Output of empty", "")
    assert tpl2.context.endswith(f"### Output of empty\n\n{EMPTY_SECTION}")


def test_parse_task_inverts_render() -> None:
    tpl = _full()
    assert parse_task(tpl.render()) == tpl
    assert parse_task(TaskTemplate(objective="x").render()) == TaskTemplate(objective="x")


def test_parse_task_handles_hand_written_markdown() -> None:
    text = (
        "Preamble goes to the objective.\n"
        "## boundaries\n"
        "No network.\n"
        "## Notes\n"
        "kept inside boundaries\n"
        "## Objective\n"
        "Ship it.\n"
    )
    tpl = parse_task(text)
    assert tpl.objective == "Preamble goes to the objective.\nShip it."
    assert tpl.boundaries == "No network.\n## Notes\nkept inside boundaries"
    assert tpl.output_format == ""
