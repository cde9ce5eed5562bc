"""Process-level helpers for invoking the `pi` coding-agent CLI.

This module owns the boundary with the external `pi` executable:

- `spawn()` starts `pi` with stdout/stderr on pipes (line-buffered text, or raw bytes) and turns a
  missing executable into a `RuntimeError` naming it.
- `InvocationResult` is what one finished invocation leaves behind: the argv that ran, the exit
  code, the raw stdout/stderr text, and, in JSON output mode, the parsed event records.
- `build_result()` assembles an `InvocationResult` from captured output and parses JSON records
  when the run used `--mode json`.

Output collection itself (reading pipes, streaming stderr through, writing sinks) lives in
`pidispatch.dispatch`, which multiplexes any number of running processes through a single
selector.

Error-handling assumptions
- A non-zero `pi` exit status is not an exception. It is recorded in
  `InvocationResult.exit_code`; callers inspect `ok` to decide what to do.
- JSON parsing is best-effort: non-JSON lines in a JSON-mode stream are skipped, and a run
  without any terminal assistant message yields an empty `text`.
"""

from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .events import final_answer, iter_records
from .invocation import OutputMode


@dataclass(frozen=True)
class InvocationResult:
    name: str
    argv: list[str]
    exit_code: int
    stdout: str
    stderr: str
    records: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    sink_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def text(self) -> str:
        if self.records:
            return final_answer(self.records)
        return self.stdout.strip()


def spawn(
    argv: Sequence[str],
    *,
    cwd: Path,
    stdin: int | None = None,
    capture_stderr: bool = True,
    text: bool = True,
) -> subprocess.Popen:
    """Start `pi` with piped output.

    `text=True` gives line-buffered text pipes (used by the RPC client). `text=False` gives
    unbuffered byte pipes where `read(n)` returns whatever one read of the pipe yields, which
    is what the dispatcher's selector loop reads from.
    """
    try:
        return subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            text=text,
            stdin=stdin,
            stdout=subprocess.PIPE,
            stderr=(subprocess.PIPE if capture_stderr else None),
            bufsize=(1 if text else 0),
        )
    except FileNotFoundError as e:
        raise RuntimeError(f"pi executable not found: {argv[0]!r} (set --pi-cmd or PIDISPATCH_PI_CMD)") from e


def build_result(
    *,
    name: str,
    argv: Sequence[str],
    exit_code: int,
    stdout: str,
    stderr: str,
    mode: OutputMode,
    sink_path: Path | None = None,
) -> InvocationResult:
    records: tuple[dict[str, Any], ...] = ()
    if mode is OutputMode.JSON:
        records = tuple(iter_records(stdout.splitlines()))
    return InvocationResult(
        name=name,
        argv=list(argv),
        exit_code=int(exit_code),
        stdout=stdout,
        stderr=stderr.strip(),
        records=records,
        sink_path=sink_path,
    )
