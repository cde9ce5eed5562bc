"""YAML fan-out manifests.

A manifest describes a batch of `pi` jobs in one file:

    executable: pi
    max_parallel: 4
    known_models: [anthropic/claude-sonnet-4-5, anthropic/claude-haiku-4-5]
    defaults:
      model: sonnet:low
      tools: [read, grep, find, ls]
      ephemeral: true
    tasks:
      - name: api-review
        objective: Review the HTTP handlers for input validation gaps.
        output_format: Bullet list of findings with file:line references.
        context_files: [src/api/handlers.py]
        boundaries: Read-only. Do not modify files.
        sink: {kind: file, path: out/api-review.md}
      - name: summary
        objective: Summarize the review.
        depends_on: [api-review]
    merge:
      path: out/merged.md

Loading rules
- `defaults` is deep-merged under every task; values set on the task win.
- Models are strict (`extra="forbid"`): unknown keys are errors, as are duplicate task names,
  `depends_on` naming an unknown task, file sinks without a `path`, two tasks writing the same
  file (even in different batches), and `output: rpc`.
- Relative `cwd`, `context_files`, sink and merge paths resolve against the manifest's
  directory. System-prompt values are handed to `pi` verbatim.
- Validation problems surface as `ValueError` naming the manifest path.

Running
`run_manifest()` schedules tasks in dependency batches (`pidispatch.dag`); each batch is one
`Dispatcher.fan_out` join-all barrier. A task with dependencies gets their final answers
appended to its context; a task whose dependency failed is not launched and is reported with
exit code 1. The merge document is written after the last batch unless `merge=False`.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

from .dag import dependency_batches
from .dispatch import Dispatcher, Job, Sink, SinkKind, check_isolated
from .invocation import InvocationConfig, OutputMode
from .merge import write_merge
from .models import ThinkingLevel
from .pi_cli import InvocationResult
from .template import TaskTemplate


class SinkSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["file", "capture", "stream"] = "capture"
    path: Optional[str] = None

    @model_validator(mode="after")
    def require_path_for_files(self) -> "SinkSpec":
        if self.kind == "file" and not self.path:
            raise ValueError("file sinks require a path")
        return self


class InvocationSpec(BaseModel):
    """Invocation fields shared by `defaults` and each task."""

    model_config = ConfigDict(extra="forbid")

    model: Optional[str] = None
    provider: Optional[str] = None
    thinking: Optional[ThinkingLevel] = None
    tools: Optional[List[str]] = None
    no_tools: Optional[bool] = None
    ephemeral: Optional[bool] = None
    system_prompt: Optional[str] = None
    append_system_prompt: Optional[str] = None
    no_skills: Optional[bool] = None
    no_extensions: Optional[bool] = None
    output: Optional[OutputMode] = None
    extra_args: Optional[List[str]] = None

    @field_validator("thinking", mode="before")
    @classmethod
    def parse_thinking(cls, value: Any) -> Any:
        # YAML 1.1 reads a bare `off` as false.
        if value is False:
            return ThinkingLevel.OFF
        return None if value is None else ThinkingLevel.parse(value)

    @field_validator("output", mode="before")
    @classmethod
    def parse_output(cls, value: Any) -> Any:
        if value is None:
            return None
        mode = OutputMode.parse(value)
        if mode is OutputMode.RPC:
            raise ValueError("output 'rpc' cannot be fanned out; drive rpc sessions with pidispatch.rpc.RpcSession")
        return mode

    def to_config(self) -> InvocationConfig:
        return InvocationConfig(
            model=self.model,
            provider=self.provider,
            thinking=self.thinking,
            tools=(tuple(self.tools) if self.tools is not None else None),
            no_tools=self.no_tools,
            ephemeral=self.ephemeral,
            system_prompt=self.system_prompt,
            append_system_prompt=self.append_system_prompt,
            no_skills=self.no_skills,
            no_extensions=self.no_extensions,
            output=self.output,
            extra_args=(tuple(self.extra_args) if self.extra_args is not None else None),
        )


class TaskSpec(InvocationSpec):
    name: str = Field(min_length=1)
    objective: str = ""
    output_format: str = ""
    context: str = ""
    boundaries: str = ""
    context_files: List[str] = Field(default_factory=list)
    max_context_chars: Optional[int] = Field(default=None, ge=0)
    sink: SinkSpec = Field(default_factory=SinkSpec)
    depends_on: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None

    def template(self) -> TaskTemplate:
        return TaskTemplate(
            objective=self.objective,
            output_format=self.output_format,
            context=self.context,
            boundaries=self.boundaries,
        )


class MergeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    title: str = "Fan-out results"


class Manifest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    executable: str = "pi"
    cwd: Optional[str] = None
    max_parallel: Optional[int] = Field(default=None, ge=1)
    known_models: List[str] = Field(default_factory=list)
    defaults: InvocationSpec = Field(default_factory=InvocationSpec)
    tasks: List[TaskSpec] = Field(min_length=1)
    merge: Optional[MergeSpec] = None

    _base_dir: Path = PrivateAttr(default_factory=Path.cwd)

    @model_validator(mode="after")
    def validate_task_graph(self) -> "Manifest":
        names: set[str] = set()
        for task in self.tasks:
            if task.name in names:
                raise ValueError(f"duplicate task name: {task.name!r}")
            names.add(task.name)
        for task in self.tasks:
            unknown = [d for d in task.depends_on if d not in names]
            if unknown:
                raise ValueError(f"task {task.name!r} depends on unknown task(s): {unknown}")
            if task.name in task.depends_on:
                raise ValueError(f"task {task.name!r} depends on itself")
        return self

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def resolve(self, p: str | Path) -> Path:
        return (self._base_dir / p).resolve()

    def jobs(self) -> list[Job]:
        out: list[Job] = []
        for task in self.tasks:
            template = task.template()
            if task.context_files:
                template = template.with_context_files([self.resolve(p) for p in task.context_files])
            if task.sink.kind == "file":
                if not task.sink.path:
                    raise ValueError(f"task {task.name!r} has a file sink without a path")
                sink = Sink.file(self.resolve(task.sink.path))
            else:
                sink = Sink(kind=SinkKind(task.sink.kind))
            out.append(
                Job(
                    name=task.name,
                    config=task.to_config(),
                    template=template,
                    sink=sink,
                    cwd=(self.resolve(task.cwd) if task.cwd else None),
                    max_context_chars=task.max_context_chars,
                )
            )
        return out

    def dispatcher(self, *, executable: str | None = None, dry_run: bool = False) -> Dispatcher:
        return Dispatcher(
            executable=(executable or self.executable),
            cwd=(self.resolve(self.cwd) if self.cwd else self._base_dir),
            known_models=self.known_models,
            dry_run=dry_run,
        )


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif value is not None:
            merged[key] = value
    return merged


def parse_manifest(raw: Dict[str, Any], *, base_dir: Path) -> Manifest:
    """Apply `defaults` to each task and validate the result."""
    if not isinstance(raw, dict):
        raise ValueError("Manifest root must be a mapping")
    defaults = raw.get("defaults") or {}
    tasks = raw.get("tasks")
    if not isinstance(defaults, dict):
        raise ValueError("Manifest field 'defaults' must be a mapping")
    if not isinstance(tasks, list):
        raise ValueError("Manifest field 'tasks' must be a list")

    normalized = dict(raw)
    normalized["tasks"] = [_deep_merge(defaults, t) if isinstance(t, dict) else t for t in tasks]
    manifest = Manifest.model_validate(normalized)
    manifest._base_dir = base_dir.resolve()
    owners: dict[Path, str] = {}
    for task in manifest.tasks:
        if task.sink.kind != "file" or not task.sink.path:
            continue
        p = manifest.resolve(task.sink.path)
        if p in owners:
            raise ValueError(f"tasks {owners[p]!r} and {task.name!r} share the output file {p}")
        owners[p] = task.name
    return manifest


def load_manifest(path: Path) -> Manifest:
    if not path.exists():
        raise FileNotFoundError(f"Missing manifest: {path}")
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    try:
        return parse_manifest(raw, base_dir=path.parent)
    except ValidationError as e:
        raise ValueError(f"Invalid manifest {path}:\n{e}") from e
    except ValueError as e:
        raise ValueError(f"Invalid manifest {path}: {e}") from e


def run_manifest(
    manifest: Manifest,
    dispatcher: Dispatcher,
    *,
    max_parallel: int | None = None,
    merge: bool = True,
) -> list[InvocationResult]:
    """Run every task in dependency batches and return results in manifest order."""
    limit = max_parallel if max_parallel is not None else manifest.max_parallel
    if limit is not None and limit < 1:
        raise ValueError(f"max_parallel must be >= 1, got {limit}")
    jobs = {job.name: job for job in manifest.jobs()}
    check_isolated(jobs.values())
    rpc = [name for name, job in jobs.items() if job.config.output_mode is OutputMode.RPC]
    if rpc:
        raise ValueError(f"rpc-mode tasks cannot be fanned out: {rpc}")
    results: dict[str, InvocationResult] = {}

    for batch in dependency_batches(manifest.tasks, is_done=lambda n: n in results):
        runnable: list[Job] = []
        for task in batch:
            failed = [d for d in task.depends_on if not results[d].ok]
            if failed:
                results[task.name] = _skipped(task.name, failed)
                continue
            job = jobs[task.name]
            for dep in task.depends_on:
                job = replace(job, template=job.template.with_appended_context(f"Output of {dep}", results[dep].text))
            runnable.append(job)
        for res in dispatcher.fan_out(runnable, max_parallel=limit):
            results[res.name] = res

    ordered = [results[t.name] for t in manifest.tasks]
    if merge and manifest.merge is not None:
        write_merge(manifest.resolve(manifest.merge.path), ordered, title=manifest.merge.title)
    return ordered


def _skipped(name: str, failed: list[str]) -> InvocationResult:
    return InvocationResult(
        name=name,
        argv=[],
        exit_code=1,
        stdout="",
        stderr=f"skipped: dependency failed: {', '.join(failed)}",
    )
