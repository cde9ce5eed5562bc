from __future__ import annotations

from pathlib import Path

import pytest

from pidispatch.invocation import (
    InvocationConfig,
    OutputMode,
    build_argv,
    effective_tools,
    format_command,
    style_warnings,
)
from pidispatch.models import ThinkingLevel


def test_minimal_config_is_print_mode_with_task_last() -> None:
    assert build_argv(InvocationConfig(), "do the thing") == ["pi", "-p", "do the thing"]


def test_full_config_flag_order() -> None:
    cfg = InvocationConfig(
        model="anthropic/claude-sonnet-4-5",
        thinking=ThinkingLevel.HIGH,
        tools=("read", " grep ", ""),
        ephemeral=True,
        system_prompt=Path("/tmp/identity.md"),
        append_system_prompt="Be terse.",
        no_skills=True,
        no_extensions=True,
        output=OutputMode.JSON,
        extra_args=("--verbose",),
    )
    argv = build_argv(cfg, "TASK", executable="/opt/pi")
    assert argv == [
        "/opt/pi",
        "-p",
        "--mode",
        "json",
        "--provider",
        "anthropic",
        "--model",
        "claude-sonnet-4-5",
        "--thinking",
        "high",
        "--system-prompt",
        "/tmp/identity.md",
        "--append-system-prompt",
        "Be terse.",
        "--tools",
        "read,grep",
        "--no-skills",
        "--no-extensions",
        "--no-session",
        "--verbose",
        "TASK",
    ]


@pytest.mark.parametrize("tools", [None, (), ("read",), ("read", "bash", "edit", "write")])
def test_no_tools_always_empties_the_allowlist(tools: tuple[str, ...] | None) -> None:
    cfg = InvocationConfig(tools=tools, no_tools=True)
    assert effective_tools(cfg) == ()
    argv = build_argv(cfg, "t")
    assert "--no-tools" in argv
    assert "--tools" not in argv


def test_default_tools_emit_no_tool_flags() -> None:
    cfg = InvocationConfig()
    assert effective_tools(cfg) is None
    argv = build_argv(cfg, "t")
    assert "--tools" not in argv and "--no-tools" not in argv


def test_explicit_thinking_and_provider_beat_selector_shorthand() -> None:
    cfg = InvocationConfig(model="openai/gpt-5:high", provider="azure", thinking=ThinkingLevel.OFF)
    argv = build_argv(cfg, "t")
    assert argv[argv.index("--provider") + 1] == "azure"
    assert argv[argv.index("--model") + 1] == "gpt-5"
    assert argv[argv.index("--thinking") + 1] == "off"


def test_selector_shorthand_supplies_thinking_and_fuzzy_match_uses_known_models() -> None:
    argv = build_argv(
        InvocationConfig(model="haiku:low"),
        "t",
        known_models=["anthropic/claude-haiku-4-5", "anthropic/claude-sonnet-4-5"],
    )
    assert argv == ["pi", "-p", "--provider", "anthropic", "--model", "claude-haiku-4-5", "--thinking", "low", "t"]


def test_fuzzy_match_errors_propagate() -> None:
    with pytest.raises(ValueError, match="Ambiguous"):
        build_argv(InvocationConfig(model="claude"), "t", known_models=["a/claude-1", "a/claude-2"])


def test_rpc_mode_omits_print_flag_and_task() -> None:
    argv = build_argv(InvocationConfig(output=OutputMode.RPC, ephemeral=True), None)
    assert argv == ["pi", "--mode", "rpc", "--no-session"]


def test_task_required_outside_rpc_mode() -> None:
    with pytest.raises(ValueError, match="task string is required"):
        build_argv(InvocationConfig(), None)


def test_merged_is_last_write_wins_for_set_fields() -> None:
    base = InvocationConfig(model="sonnet", tools=("read",), ephemeral=True)
    override = InvocationConfig(model="haiku", no_tools=True)
    merged = base.merged(override)
    assert merged.model == "haiku"
    assert merged.tools == ("read",)
    assert merged.no_tools is True
    assert merged.ephemeral is True
    assert base.merged(InvocationConfig()) == base


def test_output_mode_parse() -> None:
    assert OutputMode.parse("JSON") is OutputMode.JSON
    with pytest.raises(ValueError, match="text, json, rpc"):
        OutputMode.parse("yaml")


def test_style_warnings_flag_conflicts_without_rejecting_them() -> None:
    assert style_warnings(InvocationConfig()) == []
    warnings = style_warnings(
        InvocationConfig(tools=("read",), no_tools=True, system_prompt="x", append_system_prompt="y")
    )
    assert len(warnings) == 3
    assert any("no-tools wins" in w for w in warnings)
    assert any("--no-skills" in w for w in warnings)
    assert style_warnings(InvocationConfig(system_prompt="x", no_skills=True)) == []


def test_format_command_quotes_arguments() -> None:
    assert format_command(["pi", "-p", "fix the 'bug'"]) == "pi -p 'fix the '\"'\"'bug'\"'\"''"
