"""Phase state machine and its persistence.

Maintains the current collaboration phase and any pending override in
`.superego/state.json`. The record is the only resource shared between hook
invocations, so every read-modify-write goes through `StateStore.update`,
which holds an exclusive file lock across load, modify and save.

Load has three outcomes:
- FOUND: a record exists and parses.
- MISSING: first run, defaults apply.
- CORRUPT: a record exists but cannot be parsed. This is surfaced as
  StorageCorrupt rather than silently replaced by defaults, so an approved
  scope is never lost without the user noticing.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from filelock import FileLock, Timeout
from pydantic import BaseModel, ValidationError, field_validator

from superego.errors import StorageCorrupt, StorageIoFailed
from superego.paths import get_state_file, get_state_lock_file

logger = logging.getLogger(__name__)

# Seconds to wait for another invocation to release the state lock
LOCK_TIMEOUT_SECONDS = 10


def utc_now() -> datetime:
    return datetime.now(UTC)


class Phase(StrEnum):
    """Collaboration stage. Only READY permits unconstrained writes."""

    EXPLORING = "exploring"
    DISCUSSING = "discussing"
    READY = "ready"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | None) -> Phase | None:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_PHASE_ORDER = [Phase.EXPLORING, Phase.DISCUSSING, Phase.READY]


class PendingOverride(BaseModel):
    """A one-shot permission for a single blocked action."""

    reason: str
    timestamp: datetime


class PhaseState(BaseModel):
    """Current superego state, cached between hook invocations."""

    phase: Phase = Phase.EXPLORING
    since: datetime
    approved_scope: str | None = None
    last_evaluated: datetime | None = None
    pending_override: PendingOverride | None = None
    disabled: bool = False

    @field_validator("since", "last_evaluated")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Records written without an offset are read as UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @classmethod
    def create(cls) -> PhaseState:
        """Default state for a project without a persisted record."""
        return cls(since=utc_now())

    @classmethod
    def with_phase(cls, phase: Phase) -> PhaseState:
        return cls(phase=phase, since=utc_now())

    def allows_write(self) -> bool:
        """True if writes are allowed: disabled, READY, or an override is pending."""
        if self.disabled:
            return True
        return self.phase == Phase.READY or self.pending_override is not None

    def transition_to(self, phase: Phase, scope: str | None) -> None:
        """Move to `phase`, stamping `since` and `last_evaluated` with one instant.

        The pending override is left alone; callers that want to drop it on a
        regression do so explicitly (see PhaseGate.apply_evaluation).
        """
        now = utc_now()
        # Timestamps only move forward, even if the wall clock stepped back
        floor = max(self.since, self.last_evaluated or self.since)
        if now < floor:
            now = floor

        self.phase = phase
        self.since = now
        self.approved_scope = scope
        self.last_evaluated = now

    def set_override(self, reason: str) -> None:
        """Grant a one-shot override, replacing any existing one."""
        self.pending_override = PendingOverride(reason=reason, timestamp=utc_now())

    def consume_override(self) -> None:
        """Clear the pending override. No-op if there is none."""
        self.pending_override = None


class LoadStatus(StrEnum):
    FOUND = "found"
    MISSING = "missing"
    CORRUPT = "corrupt"


@dataclass
class LoadOutcome:
    """Result of reading the state record from disk."""

    status: LoadStatus
    state: PhaseState | None = None
    error: str | None = None

    @classmethod
    def found(cls, state: PhaseState) -> LoadOutcome:
        return cls(status=LoadStatus.FOUND, state=state)

    @classmethod
    def missing(cls) -> LoadOutcome:
        return cls(status=LoadStatus.MISSING)

    @classmethod
    def corrupt(cls, error: str) -> LoadOutcome:
        return cls(status=LoadStatus.CORRUPT, error=error)


class StateStore:
    """Reads and writes `.superego/state.json`."""

    def __init__(self, superego_dir: Path, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        self.superego_dir = superego_dir
        self.state_path = get_state_file(superego_dir)
        self.lock_path = get_state_lock_file(superego_dir)
        self.lock_timeout = lock_timeout

    def exists(self) -> bool:
        return self.state_path.exists()

    def load_outcome(self) -> LoadOutcome:
        """Read the state record without deciding what a failure means."""
        try:
            text = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LoadOutcome.missing()
        except UnicodeDecodeError as e:
            return LoadOutcome.corrupt(f"not valid UTF-8: {e.reason} at byte {e.start}")
        except OSError as e:
            raise StorageIoFailed(f"Failed to read {self.state_path}: {e}") from e

        try:
            return LoadOutcome.found(PhaseState.model_validate_json(text))
        except ValidationError as e:
            return LoadOutcome.corrupt(f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}")

    def load(self) -> PhaseState:
        """Load state, returning defaults if no record exists.

        Raises:
            StorageCorrupt: A record exists but cannot be parsed.
            StorageIoFailed: The record could not be read.
        """
        outcome = self.load_outcome()
        if outcome.status == LoadStatus.FOUND:
            return outcome.state
        if outcome.status == LoadStatus.MISSING:
            return PhaseState.create()
        raise StorageCorrupt(str(self.state_path), outcome.error or "unparsable")

    def save(self, state: PhaseState) -> None:
        """Write state atomically (temp file + rename)."""
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path_str = tempfile.mkstemp(
                prefix="state-", suffix=".tmp", dir=str(self.state_path.parent)
            )
        except OSError as e:
            raise StorageIoFailed(f"Failed to prepare {self.state_path}: {e}") from e

        temp_path = Path(temp_path_str)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
                f.write("\n")
            temp_path.replace(self.state_path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StorageIoFailed(f"Failed to write {self.state_path}: {e}") from e

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the exclusive state lock for the duration of the block.

        Raises:
            StorageIoFailed: The lock was not released by another invocation in time.
        """
        self.superego_dir.mkdir(parents=True, exist_ok=True)
        lock = FileLock(self.lock_path, timeout=self.lock_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise StorageIoFailed(
                f"Timed out after {self.lock_timeout}s waiting for {self.lock_path}"
            ) from e
        try:
            yield
        finally:
            lock.release()

    def update(self, fn: Callable[[PhaseState], None]) -> PhaseState:
        """Load, apply `fn`, and save while holding the state lock.

        Returns:
            The state as saved.

        Raises:
            StorageCorrupt: The existing record cannot be parsed; `fn` is not run.
            StorageIoFailed: The lock could not be acquired or the write failed.
        """
        with self.locked():
            state = self.load()
            fn(state)
            self.save(state)
            return state

    def clear(self) -> None:
        """Delete the state record (reset). Defaults apply on the next load."""
        with self.locked():
            try:
                self.state_path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageIoFailed(f"Failed to remove {self.state_path}: {e}") from e
        logger.info(f"Cleared {self.state_path}")
