"""Error taxonomy for the superego gate.

Every failure the gate can observe maps onto one of these types so callers
decide explicitly whether a failure blocks, degrades, or is merely logged:

- Tracker and remote-logging failures degrade to "no constraint" / "skip".
- Evaluation failures (no structured output, malformed payload, timeout)
  resolve to a conservative block.
- StorageCorrupt is never papered over: the user must run `sg reset`.
"""

from __future__ import annotations


class SuperegoError(Exception):
    """Base class for all superego failures."""


class ProcessInvocationFailed(SuperegoError):
    """An external process (tracker, evaluator) could not be run or exited non-zero."""

    def __init__(self, command: str, detail: str):
        super().__init__(f"{command} failed: {detail}")
        self.command = command
        self.detail = detail


class MalformedOutput(SuperegoError):
    """Output was produced but does not have the expected shape."""


class NoStructuredOutput(MalformedOutput):
    """No JSON object could be located in free-form model output."""


class EvaluationTimeout(SuperegoError):
    """The evaluator subprocess exceeded its time budget."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"evaluation timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class StorageIoFailed(SuperegoError):
    """Reading, writing or locking the persisted state failed."""


class StorageCorrupt(SuperegoError):
    """A persisted state record exists but cannot be parsed."""

    def __init__(self, path: str, detail: str):
        super().__init__(
            f"State file {path} is corrupt ({detail}). "
            "Run `sg reset` to restore defaults."
        )
        self.path = path
        self.detail = detail


class TrackerNotInitialized(SuperegoError):
    """The task tracker is installed but has no database for this project."""


class LoggingNotConfigured(SuperegoError):
    """Open Horizons logging was requested but no API key / endeavor is set."""


class RemoteApiError(SuperegoError):
    """A remote API answered with a non-success HTTP status."""

    def __init__(self, status: int, body: str):
        super().__init__(f"API error ({status}): {body}")
        self.status = status
        self.body = body
