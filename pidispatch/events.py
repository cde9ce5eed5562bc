"""Filters over `pi --mode json` event streams.

In JSON mode `pi` writes one JSON object per line, each with a `type` discriminant. Two
record types matter here:

- `message_end`: a finished message. When `message.role == "assistant"` this is a terminal
  assistant message; its `message.content` is a list of blocks (`{"type": "text", "text": ...}`
  alongside thinking/tool-call blocks), plus `usage` and `stopReason` metadata.
- `tool_execution_end`: the output of a tool call.

RPC sessions also emit `agent_end` once a prompt has been fully processed.

Everything here is a single-pass generator so it can sit directly on a live pipe; nothing is
buffered beyond the current record. Lines that are blank or not JSON objects are skipped
(the stream can be interleaved with stray output).
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from typing import Any

MESSAGE_END = "message_end"
TOOL_RESULT = "tool_execution_end"
AGENT_END = "agent_end"


def iter_records(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    for ln in lines:
        ln = ln.strip()
        if not ln:
            continue
        try:
            rec = json.loads(ln)
        except json.JSONDecodeError:
            continue
        if isinstance(rec, dict):
            yield rec


def is_assistant_message(record: dict[str, Any]) -> bool:
    if record.get("type") != MESSAGE_END:
        return False
    msg = record.get("message")
    return isinstance(msg, dict) and msg.get("role") == "assistant"


def _text_blocks(record: dict[str, Any]) -> list[str]:
    content = record["message"].get("content")
    if isinstance(content, str):
        return [content]
    if not isinstance(content, list):
        return []
    return [
        b["text"]
        for b in content
        if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
    ]


def assistant_texts(records: Iterable[dict[str, Any]]) -> Iterator[str]:
    """Yield every text block of every terminal assistant message, in stream order."""
    for rec in records:
        if is_assistant_message(rec):
            yield from _text_blocks(rec)


def final_answer(records: Iterable[dict[str, Any]]) -> str:
    """Return the joined text of the last terminal assistant message ("" if there is none)."""
    last: list[str] = []
    for rec in records:
        if is_assistant_message(rec):
            last = _text_blocks(rec)
    return "\n".join(t.strip() for t in last if t.strip())


def tool_results(records: Iterable[dict[str, Any]]) -> Iterator[dict[str, Any]]:
    for rec in records:
        if rec.get("type") == TOOL_RESULT:
            yield rec


def usage_totals(records: Iterable[dict[str, Any]]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for rec in records:
        if not is_assistant_message(rec):
            continue
        usage = rec["message"].get("usage")
        if not isinstance(usage, dict):
            continue
        for key, val in usage.items():
            # bool is an int subclass; cost objects and flags are not token counts.
            if isinstance(val, int) and not isinstance(val, bool):
                totals[key] = totals.get(key, 0) + val
    return totals
