from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest

import pidispatch.pi_cli as pi_cli
from pidispatch.invocation import InvocationConfig, OutputMode, build_argv
from pidispatch.rpc import RpcSession


class _KeptStringIO(io.StringIO):
    """A stdin stand-in that remembers what was written once closed."""

    kept = ""

    def close(self) -> None:
        if not self.closed:
            self.kept = self.getvalue()
        super().close()


class _FakeRpcProcess:
    def __init__(self, records: list[dict[str, Any]]) -> None:
        self.stdin = _KeptStringIO()
        self.stdout = io.StringIO("".join(json.dumps(r) + "\n" for r in records))
        self.returncode: int | None = None
        self.waits = 0

    @property
    def sent(self) -> list[dict[str, Any]]:
        return [json.loads(ln) for ln in self.stdin.kept.splitlines()]

    def wait(self) -> int:
        self.waits += 1
        self.returncode = 0
        return 0


def _answer(text: str) -> list[dict[str, Any]]:
    return [
        {"type": "response", "command": "prompt", "success": True},
        {"type": "agent_start"},
        {"type": "message_end", "message": {"role": "assistant", "content": [{"type": "text", "text": text}]}},
        {"type": "agent_end"},
    ]


@pytest.fixture()
def fake_rpc(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    state: dict[str, Any] = {"records": _answer("first answer") + _answer("second answer")}

    def _fake_popen(argv: list[str], **kwargs: Any) -> _FakeRpcProcess:
        proc = _FakeRpcProcess(state["records"])
        state.update(proc=proc, argv=argv, kwargs=kwargs)
        return proc

    monkeypatch.setattr(pi_cli.subprocess, "Popen", _fake_popen)
    return state


def _argv() -> list[str]:
    return build_argv(InvocationConfig(output=OutputMode.RPC, ephemeral=True), None)


def test_ask_sends_prompt_and_reads_until_agent_end(fake_rpc: dict[str, Any], tmp_path: Path) -> None:
    with RpcSession(_argv(), cwd=tmp_path) as session:
        session.set_model("anthropic", "claude-haiku-4-5")
        session.set_thinking_level("HIGH")
        assert session.ask("first?") == "first answer"
        assert session.ask("second?") == "second answer"

    proc = fake_rpc["proc"]
    assert fake_rpc["argv"] == ["pi", "--mode", "rpc", "--no-session"]
    assert fake_rpc["kwargs"]["stdin"] == pi_cli.subprocess.PIPE
    assert fake_rpc["kwargs"]["stderr"] is None
    assert proc.sent == [
        {"type": "set_model", "provider": "anthropic", "modelId": "claude-haiku-4-5"},
        {"type": "set_thinking_level", "level": "high"},
        {"type": "prompt", "message": "first?"},
        {"type": "prompt", "message": "second?"},
    ]


def test_read_until_agent_end_stops_at_eof(fake_rpc: dict[str, Any]) -> None:
    fake_rpc["records"] = [{"type": "agent_start"}]
    with RpcSession(_argv()) as session:
        assert session.read_until_agent_end() == [{"type": "agent_start"}]
        assert session.read_until_agent_end() == []


def test_send_rejects_commands_without_type(fake_rpc: dict[str, Any]) -> None:
    with RpcSession(_argv()) as session:
        with pytest.raises(ValueError, match="non-empty string 'type'"):
            session.send({"message": "hi"})
        with pytest.raises(ValueError):
            session.send({"type": ""})
        with pytest.raises(ValueError, match="Unknown thinking level"):
            session.set_thinking_level("extreme")


def test_close_is_idempotent_and_blocks_further_use(fake_rpc: dict[str, Any]) -> None:
    session = RpcSession(_argv())
    assert session.close() == 0
    assert session.close() == 0
    assert fake_rpc["proc"].waits == 1
    with pytest.raises(RuntimeError, match="RPC session is closed"):
        session.prompt("late")
    with pytest.raises(RuntimeError, match="RPC session is closed"):
        session.records()
