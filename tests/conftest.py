"""Shared fixtures and fakes for superego tests."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from superego.claude_client import ClaudeResponse, InvokeOptions
from superego.decision_log import DecisionLog
from superego.errors import SuperegoError
from superego.phase_state import StateStore
from superego.task_signal import TrackedTask


class FakeTracker:
    """TaskTracker returning canned answers."""

    def __init__(
        self,
        tasks: list[TrackedTask] | None = None,
        initialized: bool = True,
        error: SuperegoError | None = None,
    ):
        self.tasks = tasks or []
        self.initialized = initialized
        self.error = error
        self.calls = 0

    def is_initialized(self) -> bool:
        return self.initialized

    def list_in_progress(self) -> list[TrackedTask]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.tasks)


class FakeInvoker:
    """ModelInvoker returning a fixed answer, or raising a fixed error."""

    def __init__(self, result: str = "", error: SuperegoError | None = None, session_id: str = "eval-session"):
        self.result = result
        self.error = error
        self.session_id = session_id
        self.calls: list[tuple[str, str, InvokeOptions]] = []

    def invoke(self, system_prompt: str, message: str, options: InvokeOptions) -> ClaudeResponse:
        self.calls.append((system_prompt, message, options))
        if self.error is not None:
            raise self.error
        return ClaudeResponse(type="result", subtype="success", result=self.result, session_id=self.session_id)


def evaluation_answer(phase: str, **fields) -> str:
    """An evaluator answer wrapped in prose and a json fence."""
    payload = {"phase": phase, **fields}
    return f"Here is my assessment.\n\n```json\n{json.dumps(payload)}\n```\n"


def write_transcript(path: Path, entries: list[tuple[str, str]], timestamp: datetime | None = None) -> Path:
    """Write a Claude Code style JSONL transcript of (role, text) turns."""
    stamp = (timestamp or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
    with path.open("w", encoding="utf-8") as f:
        for role, text in entries:
            entry = {
                "type": role,
                "timestamp": stamp,
                "message": {"role": role, "content": [{"type": "text", "text": text}]},
            }
            f.write(json.dumps(entry) + "\n")
    return path


@pytest.fixture
def superego_dir(tmp_path: Path) -> Path:
    path = tmp_path / ".superego"
    path.mkdir()
    return path


@pytest.fixture
def store(superego_dir: Path) -> StateStore:
    return StateStore(superego_dir, lock_timeout=1)


@pytest.fixture
def decisions(superego_dir: Path) -> DecisionLog:
    return DecisionLog(superego_dir)


@pytest.fixture
def transcript(tmp_path: Path) -> Path:
    return write_transcript(
        tmp_path / "session.jsonl",
        [
            ("user", "Can we add login support?"),
            ("assistant", "I propose a session-cookie approach. Shall I go ahead?"),
            ("user", "Yes, implement it."),
        ],
    )
