"""pidispatch.cli

Command-line entrypoint for pidispatch.

Entry points
- `pidispatch.cli:main`
- `python3 -m pidispatch ...` (delegates to this module)

Subcommands
- `run OBJECTIVE [...]`: render one four-section task and run it through `pi`. Prints the
  final answer on stdout (or writes it to `--out`). Exit status is the run's success (0/1).
- `fanout MANIFEST [--max-parallel N]`: run a YAML manifest (`pidispatch.manifest`) as
  dependency-ordered fan-out batches; prints a per-job summary on stderr. Exit status is 1
  when any job failed.
- `filter [FILE|-] [--last]`: read a `pi --mode json` event stream and print the assistant
  text blocks (or only the final answer with `--last`).
- `render OBJECTIVE [...]`: print the rendered task string without running anything.

Template inputs
`OBJECTIVE`, `--output-format`, `--context`, `--boundaries`, and `--task-file` accept:
- `-`: read UTF-8 text from stdin,
- an existing file path: read that file as UTF-8,
- otherwise: the literal string.
`--task-file` is parsed with `parse_task` (the same `## Objective` ... headings `render`
produces); explicit field flags override what it contains.

Invocation flags
`--model`, `--provider`, `--thinking`, `--tools a,b`, `--no-tools`, `--ephemeral`,
`--system-prompt`, `--append-system-prompt`, `--no-skills`, `--no-extensions`, `--json`.
Repeated flags follow argparse's last-write-wins; `--no-tools` always beats `--tools`.
`--known-model provider/id` (repeatable) enables fuzzy matching of `--model` before `pi`
is invoked.

Control root and environment
- `PIDISPATCH_CONTROL_ROOT`: relative paths (`--out`, `--context-file`, `--cwd`, manifests)
  resolve against it; defaults to the current directory.
- `PIDISPATCH_PI_CMD`: default for `--pi-cmd`. Precedence is flag, then this variable,
  then a manifest's `executable`, then `pi`.

`--dry-run` prints the `pi` command line(s) instead of executing them.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .dispatch import Dispatcher, Job, Sink
from .events import assistant_texts, final_answer, iter_records
from .invocation import InvocationConfig, OutputMode
from .manifest import load_manifest, run_manifest
from .models import ThinkingLevel
from .template import TaskTemplate, parse_task


def _read_task_input(arg: str) -> str:
    if arg == "-":
        return Path("/dev/stdin").read_text(encoding="utf-8")
    p = Path(arg)
    if p.exists() and p.is_file():
        return p.read_text(encoding="utf-8")
    return arg


def _control_root() -> Path:
    env = os.environ.get("PIDISPATCH_CONTROL_ROOT")
    return (Path(env) if env else Path.cwd()).resolve()


def _pi_cmd(args: argparse.Namespace) -> str | None:
    return args.pi_cmd or os.environ.get("PIDISPATCH_PI_CMD") or None


def _positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def _add_template_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("objective", nargs="?", default=None, help="Objective: literal text, a file path, or '-' for stdin.")
    p.add_argument("--task-file", default=None, help="Markdown task file with ## Objective/Output Format/Context/Boundaries.")
    p.add_argument("--output-format", default=None, help="Expected shape of the answer.")
    p.add_argument("--context", default=None, help="Context the agent needs (text, file path, or '-').")
    p.add_argument(
        "--context-file",
        action="append",
        default=[],
        help="Inline a file into the context section (repeatable).",
    )
    p.add_argument("--boundaries", default=None, help="What the agent must not do.")
    p.add_argument("--max-context-chars", type=int, default=None, help="Compress the context to at most N characters.")


def _add_invocation_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--model", default=None, help="Model selector: id, provider/id, id:thinking, or a fuzzy substring.")
    p.add_argument("--provider", default=None, help="Provider name.")
    p.add_argument(
        "--thinking",
        default=None,
        choices=[lvl.value for lvl in ThinkingLevel],
        help="Thinking level.",
    )
    p.add_argument("--tools", default=None, help="Comma-separated tool allowlist (e.g. read,grep,find).")
    p.add_argument("--no-tools", action="store_true", help="Disable all tools (overrides --tools).")
    p.add_argument("--ephemeral", action="store_true", help="Do not persist a session (--no-session).")
    p.add_argument("--system-prompt", default=None, help="Replace the default system prompt (text or path).")
    p.add_argument("--append-system-prompt", default=None, help="Append to the default system prompt (text or path).")
    p.add_argument("--no-skills", action="store_true", help="Do not load skills.")
    p.add_argument("--no-extensions", action="store_true", help="Do not load extensions.")
    p.add_argument("--json", action="store_true", help="Use structured JSON event output and extract the final answer.")
    p.add_argument("--known-model", action="append", default=[], help="Known provider/id for fuzzy --model matching.")


def _add_runner_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--pi-cmd",
        default=None,
        help="pi executable (default: $PIDISPATCH_PI_CMD, then the manifest's executable, then 'pi').",
    )
    p.add_argument("--dry-run", action="store_true", help="Print the pi command line(s) instead of running them.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pidispatch", description="Templated task dispatch and fan-out for the pi CLI.")
    sub = p.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Run one templated task.")
    _add_template_args(run_p)
    _add_invocation_args(run_p)
    _add_runner_args(run_p)
    run_p.add_argument("--out", default=None, help="Write pi's stdout to this file instead of printing the answer.")
    run_p.add_argument("--cwd", default=None, help="Working directory for pi (default: control root).")

    fan_p = sub.add_parser("fanout", help="Run a YAML manifest of tasks concurrently.")
    fan_p.add_argument("manifest", help="Path to the manifest YAML.")
    fan_p.add_argument(
        "--max-parallel", type=_positive_int, default=None, help="Cap on concurrently running pi processes (>= 1)."
    )
    _add_runner_args(fan_p)

    filt_p = sub.add_parser("filter", help="Extract assistant text from a pi JSON event stream.")
    filt_p.add_argument("source", nargs="?", default="-", help="JSONL file, or '-' for stdin (default).")
    filt_p.add_argument("--last", action="store_true", help="Print only the final assistant answer.")

    render_p = sub.add_parser("render", help="Print the rendered task string.")
    _add_template_args(render_p)

    return p


def _template_from_args(args: argparse.Namespace, *, root: Path) -> TaskTemplate:
    tpl = parse_task(_read_task_input(args.task_file)) if args.task_file else TaskTemplate()
    overrides: dict[str, str] = {}
    for field in ("objective", "output_format", "context", "boundaries"):
        value = getattr(args, field)
        if value is not None:
            overrides[field] = _read_task_input(value)
    tpl = replace(tpl, **overrides)
    if args.context_file:
        tpl = tpl.with_context_files([(root / p).resolve() for p in args.context_file])
    return tpl


def _config_from_args(args: argparse.Namespace) -> InvocationConfig:
    tools = None
    if args.tools is not None:
        tools = tuple(t.strip() for t in str(args.tools).split(",") if t.strip())
    return InvocationConfig(
        model=args.model,
        provider=args.provider,
        thinking=(ThinkingLevel.parse(args.thinking) if args.thinking else None),
        tools=tools,
        no_tools=(True if args.no_tools else None),
        ephemeral=(True if args.ephemeral else None),
        system_prompt=args.system_prompt,
        append_system_prompt=args.append_system_prompt,
        no_skills=(True if args.no_skills else None),
        no_extensions=(True if args.no_extensions else None),
        output=(OutputMode.JSON if args.json else None),
    )


def _cmd_run(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    root = _control_root()
    template = _template_from_args(args, root=root)
    if not template.objective.strip():
        parser.error("run: an objective is required (positional OBJECTIVE or --task-file)")

    sink = Sink.file((root / args.out).resolve()) if args.out else Sink.capture()
    job = Job(
        name="run",
        config=_config_from_args(args),
        template=template,
        sink=sink,
        max_context_chars=args.max_context_chars,
    )
    dispatcher = Dispatcher(
        executable=(_pi_cmd(args) or "pi"),
        cwd=((root / args.cwd).resolve() if args.cwd else root),
        known_models=args.known_model,
        dry_run=bool(args.dry_run),
    )
    res = dispatcher.run(job)

    if args.dry_run:
        sys.stdout.write(res.stdout)
    elif res.sink_path is not None:
        print(f"[pidispatch] output written to {res.sink_path}", file=sys.stderr)
    elif res.text:
        sys.stdout.write(res.text + "\n")
    sys.stdout.flush()

    if not res.ok:
        print(f"[pidispatch] pi exited with code {res.exit_code}", file=sys.stderr)
        return 1
    return 0


def _cmd_fanout(args: argparse.Namespace) -> int:
    root = _control_root()
    manifest = load_manifest((root / args.manifest).resolve())
    dispatcher = manifest.dispatcher(
        executable=_pi_cmd(args),
        dry_run=bool(args.dry_run),
    )
    results = run_manifest(manifest, dispatcher, max_parallel=args.max_parallel, merge=not args.dry_run)

    failed = 0
    for res in results:
        status = "ok" if res.ok else f"FAILED (exit {res.exit_code})"
        where = f" -> {res.sink_path}" if res.sink_path is not None else ""
        print(f"[pidispatch] {res.name}: {status}{where}", file=sys.stderr)
        if args.dry_run:
            sys.stdout.write(res.stdout)
        if not res.ok:
            failed += 1
    if manifest.merge is not None and not args.dry_run:
        print(f"[pidispatch] merged -> {manifest.resolve(manifest.merge.path)}", file=sys.stderr)
    print(f"[pidispatch] {len(results) - failed}/{len(results)} jobs succeeded", file=sys.stderr)
    return 1 if failed else 0


def _cmd_filter(args: argparse.Namespace) -> int:
    if args.source == "-":
        lines = sys.stdin
    else:
        lines = (_control_root() / args.source).resolve().read_text(encoding="utf-8").splitlines()

    records = iter_records(lines)
    if args.last:
        answer = final_answer(records)
        if answer:
            sys.stdout.write(answer + "\n")
        return 0
    for text in assistant_texts(records):
        sys.stdout.write(text.rstrip("\n") + "\n")
        sys.stdout.flush()
    return 0


def _cmd_render(args: argparse.Namespace) -> int:
    template = _template_from_args(args, root=_control_root())
    sys.stdout.write(template.render(max_context_chars=args.max_context_chars))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(sys.argv[1:] if argv is None else argv))

    if args.command == "run":
        return _cmd_run(args, parser)
    if args.command == "fanout":
        return _cmd_fanout(args)
    if args.command == "filter":
        return _cmd_filter(args)
    if args.command == "render":
        return _cmd_render(args)
    parser.print_help(sys.stderr)
    return 2
