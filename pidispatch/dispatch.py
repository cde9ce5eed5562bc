"""Run templated `pi` jobs sequentially or as a concurrent fan-out.

A `Job` pairs an `InvocationConfig` with a `TaskTemplate`, a name, and a sink for its stdout.
The `Dispatcher` turns each job into a `pi` command line (`pidispatch.invocation.build_argv`)
and runs it as an independent child process.

Execution modes
- `run(job)`: one blocking invocation.
- `iter_sequential(jobs)`: a generator; the next job is only launched after the previous
  result has been yielded to (and consumed by) the caller.
- `fan_out(jobs, max_parallel=None)`: launches jobs together (at most `max_parallel` alive at a
  time; `None` means all), then blocks until every process has exited. Results are returned
  in input order regardless of completion order.

Output routing
All pipes of all running processes are multiplexed through one `selectors` loop in the
calling thread, so sink writes never race. Pipes are read as raw bytes (one `read` per ready
pipe) and split into lines per job, so a child that writes a partial line on one pipe and then
blocks on the other never stalls the loop:
- child stderr is streamed through to our stderr as it arrives,
- child stdout is always captured into the result, and additionally
  - `Sink.file(path)`: written to `path` line by line (parent dirs are created),
  - `Sink.stream()`: echoed to our stdout line by line,
  - `Sink.capture()`: kept in memory only (the default).
During a multi-job fan-out, streamed lines are prefixed with `[<job name>] ` so interleaved
output stays attributable.

Isolation is by construction: every job owns its process, pipes, and sink. Job names and
file-sink paths must therefore be unique within one fan-out (`ValueError` otherwise).

Failure semantics
There is no retry, rollback, cancellation, or timeout. A failing invocation's result carries
whatever the process emitted and its non-zero exit code. Only a missing executable (or other
spawn failure) raises, after already-running children are terminated.

Dry run
With `dry_run=True` no process is started: each result's stdout is the shell-quoted command
line and the exit code is 0. Nothing is written to file sinks.
"""

from __future__ import annotations

import selectors
import sys
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO

from .invocation import InvocationConfig, OutputMode, build_argv, format_command, style_warnings
from .pi_cli import InvocationResult, build_result, spawn
from .template import TaskTemplate

_READ_SIZE = 65536


class SinkKind(str, Enum):
    FILE = "file"
    CAPTURE = "capture"
    STREAM = "stream"


@dataclass(frozen=True)
class Sink:
    kind: SinkKind = SinkKind.CAPTURE
    path: Path | None = None

    @classmethod
    def file(cls, path: str | Path) -> Sink:
        return cls(kind=SinkKind.FILE, path=Path(path))

    @classmethod
    def capture(cls) -> Sink:
        return cls(kind=SinkKind.CAPTURE)

    @classmethod
    def stream(cls) -> Sink:
        return cls(kind=SinkKind.STREAM)


@dataclass(frozen=True)
class Job:
    name: str
    config: InvocationConfig
    template: TaskTemplate
    sink: Sink = Sink()
    cwd: Path | None = None
    max_context_chars: int | None = None

    def task(self) -> str:
        return self.template.render(max_context_chars=self.max_context_chars)


class _Running:
    def __init__(self, *, index: int, job: Job, argv: list[str], cwd: Path, prefix: str) -> None:
        self.index = index
        self.job = job
        self.argv = argv
        self.prefix = prefix
        self.out_chunks: list[str] = []
        self.err_chunks: list[str] = []
        # Undelivered bytes per pipe (True: stdout, False: stderr); lines are split here.
        self.pending: dict[bool, bytes] = {True: b"", False: b""}
        self.sink_handle: IO[str] | None = None
        self.sink_path: Path | None = None
        if job.sink.kind is SinkKind.FILE:
            if job.sink.path is None:
                raise ValueError(f"Job {job.name!r} has a file sink without a path")
            self.sink_path = job.sink.path
            self.sink_path.parent.mkdir(parents=True, exist_ok=True)
            self.sink_handle = self.sink_path.open("w", encoding="utf-8")
        try:
            self.proc = spawn(argv, cwd=cwd, text=False)
        except Exception:
            self.close_sink()
            raise
        self.open_pipes = 2

    def receive(self, chunk: bytes, *, is_stdout: bool) -> None:
        """Buffer a raw chunk and feed every completed line; an empty chunk means EOF."""
        data = self.pending[is_stdout] + chunk
        if not chunk:
            self.pending[is_stdout] = b""
            if data:
                self.feed(_decode(data), is_stdout=is_stdout)
            return
        *lines, rest = data.split(b"\n")
        self.pending[is_stdout] = rest
        for line in lines:
            self.feed(_decode(line + b"\n"), is_stdout=is_stdout)

    def feed(self, line: str, *, is_stdout: bool) -> None:
        if not is_stdout:
            self.err_chunks.append(line)
            sys.stderr.write(self.prefix + line)
            sys.stderr.flush()
            return

        self.out_chunks.append(line)
        if self.sink_handle is not None:
            self.sink_handle.write(line)
            self.sink_handle.flush()
        elif self.job.sink.kind is SinkKind.STREAM:
            sys.stdout.write(self.prefix + line)
            sys.stdout.flush()

    def close_sink(self) -> None:
        if self.sink_handle is not None:
            self.sink_handle.close()
            self.sink_handle = None

    def finish(self) -> InvocationResult:
        code = self.proc.wait()
        self.close_sink()
        return build_result(
            name=self.job.name,
            argv=self.argv,
            exit_code=code,
            stdout="".join(self.out_chunks),
            stderr="".join(self.err_chunks),
            mode=self.job.config.output_mode,
            sink_path=self.sink_path,
        )

    def kill(self) -> None:
        self.proc.kill()
        self.proc.wait()
        self.close_sink()


class Dispatcher:
    def __init__(
        self,
        *,
        executable: str = "pi",
        cwd: Path | None = None,
        known_models: Iterable[str] = (),
        dry_run: bool = False,
    ) -> None:
        self.executable = executable
        self.cwd = (cwd or Path.cwd()).resolve()
        self.known_models = list(known_models)
        self.dry_run = dry_run

    def argv_for(self, job: Job) -> list[str]:
        if job.config.output_mode is OutputMode.RPC:
            raise ValueError(f"Job {job.name!r} uses rpc mode; drive it with pidispatch.rpc.RpcSession instead")
        return build_argv(job.config, job.task(), executable=self.executable, known_models=self.known_models)

    def run(self, job: Job) -> InvocationResult:
        return self.fan_out([job])[0]

    def iter_sequential(self, jobs: Iterable[Job]) -> Iterator[InvocationResult]:
        for job in jobs:
            yield self.run(job)

    def fan_out(self, jobs: Iterable[Job], *, max_parallel: int | None = None) -> list[InvocationResult]:
        if max_parallel is not None and max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")
        jobs = list(jobs)
        if not jobs:
            return []
        check_isolated(jobs)
        argvs = [self.argv_for(job) for job in jobs]
        for job in jobs:
            _warn_quality(job)

        if self.dry_run:
            return [self._dry_result(job, argv) for job, argv in zip(jobs, argvs)]

        limit = len(jobs) if max_parallel is None else int(max_parallel)
        labelled = len(jobs) > 1
        pending = deque(enumerate(zip(jobs, argvs)))
        running: list[_Running] = []
        results: dict[int, InvocationResult] = {}

        sel = selectors.DefaultSelector()
        try:
            while pending or running:
                while pending and len(running) < limit:
                    idx, (job, argv) = pending.popleft()
                    run = _Running(
                        index=idx,
                        job=job,
                        argv=argv,
                        cwd=(job.cwd or self.cwd),
                        prefix=(f"[{job.name}] " if labelled else ""),
                    )
                    running.append(run)
                    print(f"[pidispatch] start {job.name}", file=sys.stderr)
                    sel.register(run.proc.stdout, selectors.EVENT_READ, (run, True))
                    sel.register(run.proc.stderr, selectors.EVENT_READ, (run, False))

                for key, _ in sel.select(timeout=0.1):
                    run, is_stdout = key.data
                    chunk = key.fileobj.read(_READ_SIZE)
                    run.receive(chunk, is_stdout=is_stdout)
                    if not chunk:
                        sel.unregister(key.fileobj)
                        run.open_pipes -= 1

                for run in [r for r in running if r.open_pipes == 0]:
                    running.remove(run)
                    res = run.finish()
                    results[run.index] = res
                    print(f"[pidispatch] done {res.name} exit={res.exit_code}", file=sys.stderr)
        except BaseException:
            for run in running:
                run.kill()
            raise
        finally:
            sel.close()

        return [results[i] for i in range(len(jobs))]

    def _dry_result(self, job: Job, argv: list[str]) -> InvocationResult:
        cmd = format_command(argv)
        print(f"[pidispatch] (dry-run) {job.name}: {cmd}", file=sys.stderr)
        return build_result(
            name=job.name,
            argv=argv,
            exit_code=0,
            stdout=cmd + "\n",
            stderr="",
            mode=OutputMode.TEXT,
        )


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def check_isolated(jobs: Iterable[Job]) -> None:
    """Raise `ValueError` unless every job has its own name and its own output file."""
    names: set[str] = set()
    paths: set[Path] = set()
    for job in jobs:
        if job.name in names:
            raise ValueError(f"Duplicate job name in fan-out: {job.name!r}")
        names.add(job.name)
        if job.sink.kind is SinkKind.FILE:
            if job.sink.path is None:
                raise ValueError(f"Job {job.name!r} has a file sink without a path")
            p = job.sink.path.resolve()
            if p in paths:
                raise ValueError(f"Jobs share an output file; each job needs its own sink: {p}")
            paths.add(p)


def _warn_quality(job: Job) -> None:
    missing = job.template.missing_sections()
    if missing:
        print(f"[pidispatch] {job.name}: template is missing sections: {', '.join(missing)}", file=sys.stderr)
    for w in style_warnings(job.config):
        print(f"[pidispatch] {job.name}: {w}", file=sys.stderr)
