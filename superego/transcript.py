"""Read Claude Code JSONL transcripts for evaluation.

Only user and assistant turns matter to the evaluator. Text blocks are kept
verbatim; tool calls are reduced to a one-line summary so the evaluator can
see what the agent did without the full payloads. Sidechain (subagent) and
meta entries are skipped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Evaluator context budget per message
MAX_MESSAGE_CHARS = 2000


@dataclass
class TranscriptMessage:
    role: str
    text: str
    timestamp: datetime | None = None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _summarize_tool_input(tool_name: str, tool_input: dict) -> str:
    """Create a brief summary of tool input."""
    if tool_name in ("Read", "Write", "Edit", "MultiEdit", "NotebookEdit"):
        return str(tool_input.get("file_path") or tool_input.get("notebook_path") or "")
    if tool_name == "Bash":
        cmd = str(tool_input.get("command", ""))[:80]
        return cmd + "..." if len(cmd) >= 80 else cmd
    if tool_name in ("Glob", "Grep"):
        return str(tool_input.get("pattern", ""))[:60]
    if tool_name == "Task":
        return str(tool_input.get("description", ""))[:60]

    for v in tool_input.values():
        if isinstance(v, str) and v:
            return v[:40] + "..." if len(v) > 40 else v
    return ""


def _extract_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""

    parts: list[str] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            parts.append(block.get("text", ""))
        elif block_type == "tool_use":
            name = block.get("name", "tool")
            tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
            parts.append(f"[{name}: {_summarize_tool_input(name, tool_input)}]")
    return "\n".join(p for p in parts if p)


def parse_entry(data: dict[str, Any]) -> TranscriptMessage | None:
    """Turn one transcript JSONL entry into a message, or None if irrelevant."""
    entry_type = data.get("type")
    if entry_type not in ("user", "assistant"):
        return None
    if data.get("isSidechain") or data.get("isMeta"):
        return None

    message = data.get("message")
    if not isinstance(message, dict):
        return None

    text = _extract_text(message.get("content", "")).strip()
    if not text:
        return None

    return TranscriptMessage(
        role=message.get("role") or entry_type,
        text=text,
        timestamp=_parse_timestamp(data.get("timestamp")),
    )


def read_transcript(path: Path) -> list[TranscriptMessage]:
    """Read all user/assistant messages from a JSONL transcript.

    Raises:
        OSError: The transcript cannot be read.
    """
    messages: list[TranscriptMessage] = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue
            message = parse_entry(data)
            if message is not None:
                messages.append(message)
    return messages


def select_for_evaluation(
    messages: list[TranscriptMessage],
    last_evaluated: datetime | None,
    window_minutes: int,
    now: datetime | None = None,
) -> list[TranscriptMessage]:
    """Pick the messages the evaluator should see.

    Everything after `last_evaluated`, plus a carryover window of
    `window_minutes` before it so the evaluator keeps the thread of the
    conversation. On a first evaluation, the window is measured from `now`;
    if that leaves nothing, the last few messages are used.
    """
    if now is None:
        now = datetime.now(UTC)
    anchor = last_evaluated or now
    cutoff = anchor - timedelta(minutes=window_minutes)

    selected = [m for m in messages if m.timestamp is None or m.timestamp >= cutoff]
    if not selected and last_evaluated is None:
        selected = messages[-10:]
    return selected


def format_for_evaluation(messages: list[TranscriptMessage]) -> str:
    """Render messages as the conversation block of the evaluator prompt."""
    blocks = []
    for m in messages:
        text = m.text
        if len(text) > MAX_MESSAGE_CHARS:
            text = text[:MAX_MESSAGE_CHARS] + " [...]"
        blocks.append(f"{m.role.upper()}: {text}")
    return "\n\n---\n\n".join(blocks)
