"""Task-tracker integration (beads `bd`) for the write gate.

Task state comes from the tracker, not from conversation analysis: if no task
is claimed (status in_progress), the agent is held read-only regardless of
phase. Absence of a tracker imposes no constraint.

All failures are raised as typed errors. The caller decides whether a failing
tracker blocks or degrades to "no constraint" (see `signal_or_unconstrained`).
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Protocol

from pydantic import BaseModel, ValidationError

from superego.errors import (
    MalformedOutput,
    ProcessInvocationFailed,
    SuperegoError,
    TrackerNotInitialized,
)

logger = logging.getLogger(__name__)

# Seconds allowed for each bd invocation
TRACKER_TIMEOUT_SECONDS = 10

# Phrases bd prints on stderr when the project has no database.
# TODO: replace with an explicit status probe once bd exposes one.
NOT_INITIALIZED_MARKERS = ("not initialized", "No database")

CLAIM_TASK_FEEDBACK = (
    "No task in progress. Claim a task with `bd update <id> --status in_progress` "
    "before making changes."
)


class TrackedTask(BaseModel):
    """Issue as reported by `bd list --json`. Extra fields are ignored."""

    id: str
    title: str


class TaskSignal(BaseModel):
    """Constraint derived from the tracker, recomputed on every check."""

    read_only: bool = False
    current_task: TrackedTask | None = None
    feedback: str | None = None

    @classmethod
    def unconstrained(cls) -> TaskSignal:
        return cls()


class TaskTracker(Protocol):
    def is_initialized(self) -> bool: ...

    def list_in_progress(self) -> list[TrackedTask]: ...


class BeadsTracker:
    """TaskTracker backed by the `bd` command line."""

    def __init__(self, binary: str = "bd", cwd: str | None = None, timeout: float = TRACKER_TIMEOUT_SECONDS):
        self.binary = binary
        self.cwd = cwd
        self.timeout = timeout

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = [self.binary, *args]
        try:
            return subprocess.run(
                command,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ProcessInvocationFailed(" ".join(command), f"{self.binary} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ProcessInvocationFailed(" ".join(command), f"timed out after {self.timeout}s") from e
        except OSError as e:
            raise ProcessInvocationFailed(" ".join(command), str(e)) from e

    def is_initialized(self) -> bool:
        """Liveness probe: `bd stats` succeeds only inside an initialized project."""
        try:
            result = self._run("stats")
        except ProcessInvocationFailed as e:
            logger.debug(f"bd stats unavailable: {e}")
            return False
        return result.returncode == 0

    def list_in_progress(self) -> list[TrackedTask]:
        """Return issues with status in_progress.

        Raises:
            TrackerNotInitialized: bd reports no database for this project.
            ProcessInvocationFailed: bd could not run or exited non-zero.
            MalformedOutput: bd printed something other than a JSON array of issues.
        """
        result = self._run("list", "--status", "in_progress", "--json")

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if any(marker in stderr for marker in NOT_INITIALIZED_MARKERS):
                raise TrackerNotInitialized(stderr)
            raise ProcessInvocationFailed("bd list", stderr or f"exit code {result.returncode}")

        return parse_task_list(result.stdout)


def parse_task_list(stdout: str) -> list[TrackedTask]:
    """Parse `bd list --json` output. Empty output and `[]` both mean no tasks."""
    text = stdout.strip()
    if not text or text == "[]":
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"Failed to parse bd output: {e}: {text[:200]}") from e

    if not isinstance(data, list):
        raise MalformedOutput(f"Expected a JSON array from bd, got {type(data).__name__}")

    try:
        return [TrackedTask.model_validate(item) for item in data]
    except ValidationError as e:
        raise MalformedOutput(f"Unexpected issue shape from bd: {e}") from e


def evaluate(tracker: TaskTracker) -> TaskSignal:
    """Derive the task constraint from the tracker.

    - Tracker not initialized: no constraint.
    - No task in progress: read-only, with an instruction to claim one.
    - Exactly one: that task is current.
    - Several: allowed, first is current, with a note to focus on one.

    Raises:
        ProcessInvocationFailed, MalformedOutput, TrackerNotInitialized
    """
    if not tracker.is_initialized():
        return TaskSignal.unconstrained()

    tasks = tracker.list_in_progress()

    if not tasks:
        return TaskSignal(read_only=True, feedback=CLAIM_TASK_FEEDBACK)

    if len(tasks) > 1:
        task_list = ", ".join(f"{t.id}: {t.title}" for t in tasks)
        return TaskSignal(
            read_only=False,
            current_task=tasks[0],
            feedback=f"Multiple tasks in progress ({task_list}). Consider focusing on one at a time.",
        )

    return TaskSignal(read_only=False, current_task=tasks[0])


def signal_or_unconstrained(tracker: TaskTracker | None) -> TaskSignal:
    """Evaluate the tracker, degrading any failure to "no constraint".

    A tracker that races between the liveness probe and the listing (reported
    as TrackerNotInitialized) is treated the same as an absent one.
    """
    if tracker is None:
        return TaskSignal.unconstrained()
    try:
        return evaluate(tracker)
    except TrackerNotInitialized:
        return TaskSignal.unconstrained()
    except SuperegoError as e:
        logger.warning(f"Task tracker unavailable, imposing no constraint: {e}")
        return TaskSignal.unconstrained()
