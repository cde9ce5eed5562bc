"""Client for `pi --mode rpc`, the long-running bidirectional record protocol.

In RPC mode `pi` reads JSON command objects from stdin, one per line, and writes the same
event records as `--mode json` to stdout (plus `response` acknowledgements). The commands
used here are:

    {"type": "prompt", "message": "..."}
    {"type": "set_model", "provider": "...", "modelId": "..."}
    {"type": "set_thinking_level", "level": "high"}

`ask()` sends a prompt and consumes records until `agent_end`, returning the final assistant
answer. Child stderr is not captured; it goes straight to our stderr.

Usage:

    argv = build_argv(InvocationConfig(output=OutputMode.RPC, ephemeral=True), None)
    with RpcSession(argv) as session:
        session.set_thinking_level("high")
        print(session.ask("Summarize README.md"))
"""

from __future__ import annotations

import json
import subprocess
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from .events import AGENT_END, final_answer, iter_records
from .models import ThinkingLevel
from .pi_cli import spawn


class RpcSession:
    def __init__(self, argv: Sequence[str], *, cwd: Path | None = None) -> None:
        self.argv = list(argv)
        self.proc = spawn(self.argv, cwd=(cwd or Path.cwd()), stdin=subprocess.PIPE, capture_stderr=False)
        assert self.proc.stdin is not None
        assert self.proc.stdout is not None
        self._records = iter_records(self.proc.stdout)
        self._closed = False

    def __enter__(self) -> RpcSession:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("RPC session is closed")

    def send(self, command: Mapping[str, Any]) -> None:
        self._ensure_open()
        if not isinstance(command, Mapping) or not isinstance(command.get("type"), str) or not command["type"]:
            raise ValueError("RPC command must be an object with a non-empty string 'type'")
        assert self.proc.stdin is not None
        self.proc.stdin.write(json.dumps(dict(command)) + "\n")
        self.proc.stdin.flush()

    def prompt(self, message: str) -> None:
        self.send({"type": "prompt", "message": message})

    def set_model(self, provider: str, model_id: str) -> None:
        self.send({"type": "set_model", "provider": provider, "modelId": model_id})

    def set_thinking_level(self, level: str | ThinkingLevel) -> None:
        self.send({"type": "set_thinking_level", "level": ThinkingLevel.parse(level).value})

    def records(self) -> Iterator[dict[str, Any]]:
        self._ensure_open()
        return self._records

    def read_until_agent_end(self) -> list[dict[str, Any]]:
        """Collect records up to and including the next `agent_end` (or EOF)."""
        out: list[dict[str, Any]] = []
        for rec in self.records():
            out.append(rec)
            if rec.get("type") == AGENT_END:
                break
        return out

    def ask(self, message: str) -> str:
        self.prompt(message)
        return final_answer(self.read_until_agent_end())

    def close(self) -> int:
        if self._closed:
            return self.proc.returncode if self.proc.returncode is not None else 0
        self._closed = True
        if self.proc.stdin is not None and not self.proc.stdin.closed:
            self.proc.stdin.close()
        code = self.proc.wait()
        if self.proc.stdout is not None:
            self.proc.stdout.close()
        return code
