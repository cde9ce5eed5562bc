"""Merge step for fan-outs: one Markdown document with a section per job."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from .pi_cli import InvocationResult


def merge_results(results: Iterable[InvocationResult], *, title: str = "Fan-out results") -> str:
    lines: list[str] = [f"# {title}", ""]
    for res in results:
        lines.append(f"## {res.name}")
        lines.append("")
        if not res.ok:
            note = f"> failed with exit code {res.exit_code}"
            if res.stderr:
                note += f": {res.stderr.splitlines()[-1]}"
            lines.append(note)
            lines.append("")
        lines.append(res.text or "(no output)")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def write_merge(path: Path, results: Iterable[InvocationResult], *, title: str = "Fan-out results") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(merge_results(results, title=title), encoding="utf-8")
    return path
