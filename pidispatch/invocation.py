"""Map an `InvocationConfig` plus a task string onto a `pi` command line.

Flag order is fixed so command lines are stable and easy to diff:

    pi -p [--mode json] [--provider P] [--model M] [--thinking L]
       [--system-prompt S] [--append-system-prompt S]
       [--no-tools | --tools a,b] [--no-skills] [--no-extensions] [--no-session]
       [extra args...] <task>

RPC mode (`OutputMode.RPC`) drops both `-p` and the trailing task: prompts are sent over
stdin instead (see `pidispatch.rpc`).

Conflict policy
- `no_tools` wins over an explicit `tools` allowlist (the effective allowlist is empty).
- An explicit `thinking` wins over an `id:level` shorthand in `model`.
- An explicit `provider` wins over a `provider/` prefix in `model`.
- A full system-prompt replacement combined with default skill loading is legal; it only
  produces a style warning.
- `InvocationConfig.merged()` layers configs field by field; non-None values in the later
  config win.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path

from .models import KnownModel, ThinkingLevel, parse_model_selector, resolve_model


class OutputMode(str, Enum):
    TEXT = "text"
    JSON = "json"
    RPC = "rpc"

    @classmethod
    def parse(cls, value: str | OutputMode) -> OutputMode:
        if isinstance(value, OutputMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown output mode {value!r}; expected one of: {valid}") from None


@dataclass(frozen=True)
class InvocationConfig:
    model: str | None = None
    provider: str | None = None
    thinking: ThinkingLevel | None = None
    tools: tuple[str, ...] | None = None
    no_tools: bool | None = None
    ephemeral: bool | None = None
    system_prompt: str | Path | None = None
    append_system_prompt: str | Path | None = None
    no_skills: bool | None = None
    no_extensions: bool | None = None
    output: OutputMode | None = None
    extra_args: tuple[str, ...] | None = None

    def merged(self, other: InvocationConfig) -> InvocationConfig:
        updates = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name) is not None}
        return replace(self, **updates)

    @property
    def output_mode(self) -> OutputMode:
        return self.output or OutputMode.TEXT


def effective_tools(config: InvocationConfig) -> tuple[str, ...] | None:
    """Return the allowlist `pi` will see: `()` for no tools, `None` for its defaults."""
    if config.no_tools:
        return ()
    if config.tools is None:
        return None
    return tuple(t.strip() for t in config.tools if t.strip())


def style_warnings(config: InvocationConfig) -> list[str]:
    out: list[str] = []
    if config.no_tools and config.tools:
        out.append("both a tool allowlist and no-tools were given; no-tools wins")
    if config.system_prompt is not None and not config.no_skills:
        out.append("full system-prompt replacement with default skills loaded; consider --no-skills")
    if config.system_prompt is not None and config.append_system_prompt is not None:
        out.append("system prompt is replaced and appended to in the same call")
    return out


def build_argv(
    config: InvocationConfig,
    task: str | None,
    *,
    executable: str = "pi",
    known_models: Iterable[str | KnownModel] = (),
) -> list[str]:
    mode = config.output_mode
    argv = [executable]
    if mode is OutputMode.RPC:
        argv += ["--mode", "rpc"]
    else:
        argv.append("-p")
        if mode is OutputMode.JSON:
            argv += ["--mode", "json"]

    provider = config.provider
    thinking = config.thinking
    if config.model:
        sel = resolve_model(parse_model_selector(config.model), list(known_models))
        provider = provider or sel.provider
        thinking = thinking if thinking is not None else sel.thinking
        model: str | None = sel.model
    else:
        model = None

    if provider:
        argv += ["--provider", provider]
    if model:
        argv += ["--model", model]
    if thinking is not None:
        argv += ["--thinking", ThinkingLevel.parse(thinking).value]
    if config.system_prompt is not None:
        argv += ["--system-prompt", str(config.system_prompt)]
    if config.append_system_prompt is not None:
        argv += ["--append-system-prompt", str(config.append_system_prompt)]

    tools = effective_tools(config)
    if tools == ():
        argv.append("--no-tools")
    elif tools is not None:
        argv += ["--tools", ",".join(tools)]

    if config.no_skills:
        argv.append("--no-skills")
    if config.no_extensions:
        argv.append("--no-extensions")
    if config.ephemeral:
        argv.append("--no-session")
    argv += list(config.extra_args or ())

    if mode is not OutputMode.RPC:
        if task is None:
            raise ValueError("A task string is required outside of rpc mode")
        argv.append(task)
    return argv


def format_command(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)
