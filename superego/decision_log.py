"""Decision history for superego.

Every evaluation, successful or not, is appended as one JSON line to
`.superego/decisions.jsonl`. The history feeds:
- `sg history`
- the block message shown when a write is refused
- carryover context for the next evaluation
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from superego.evaluation import Concern, Evaluation
from superego.paths import get_decisions_file
from superego.phase_state import utc_now

logger = logging.getLogger(__name__)


class Decision(BaseModel):
    """One recorded evaluation outcome."""

    timestamp: datetime = Field(default_factory=utc_now)
    trigger: str = "evaluate"
    phase: str | None = None
    confidence: float | None = None
    approved_scope: str | None = None
    reason: str | None = None
    suggestion: str | None = None
    concerns: list[Concern] = Field(default_factory=list)
    # Set when the evaluation failed (timeout, unparsable output)
    error: str | None = None

    @classmethod
    def from_evaluation(cls, evaluation: Evaluation, trigger: str) -> Decision:
        return cls(
            trigger=trigger,
            phase=evaluation.phase,
            confidence=evaluation.confidence,
            approved_scope=evaluation.approved_scope,
            reason=evaluation.reason,
            suggestion=evaluation.suggestion,
            concerns=evaluation.concerns or [],
        )

    @classmethod
    def from_failure(cls, error: Exception, trigger: str) -> Decision:
        return cls(trigger=trigger, error=str(error))

    def summary(self) -> str:
        """One-line human summary, used by `sg history` and carryover context."""
        stamp = self.timestamp.astimezone().strftime("%Y-%m-%d %H:%M")
        if self.error:
            return f"[{stamp}] evaluation failed ({self.trigger}): {self.error}"
        parts = [f"[{stamp}] phase={self.phase}"]
        if self.confidence is not None:
            parts.append(f"confidence={self.confidence:.2f}")
        if self.approved_scope:
            parts.append(f"scope={self.approved_scope!r}")
        line = " ".join(parts)
        if self.reason:
            line += f" - {self.reason}"
        return line


class DecisionLog:
    """Append-only JSONL log of decisions."""

    def __init__(self, superego_dir: Path):
        self.path = get_decisions_file(superego_dir)

    def record(self, decision: Decision) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(decision.model_dump_json())
            f.write("\n")

    def recent(self, limit: int) -> list[Decision]:
        """Return up to `limit` most recent decisions, oldest first."""
        if limit <= 0 or not self.path.exists():
            return []

        window: deque[Decision] = deque(maxlen=limit)
        with self.path.open(encoding="utf-8", errors="replace") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    window.append(Decision.model_validate_json(line))
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable decision at {self.path}:{line_no}: {e.error_count()} error(s)")
        return list(window)

    def latest(self) -> Decision | None:
        decisions = self.recent(1)
        return decisions[0] if decisions else None

    def latest_judgment(self) -> Decision | None:
        """Most recent decision that carried a phase judgment (not a failure)."""
        judgments = [d for d in self.recent(50) if d.error is None]
        return judgments[-1] if judgments else None

    def last_failed(self) -> bool:
        """True if the most recent evaluation produced no judgment."""
        latest = self.latest()
        return latest is not None and latest.error is not None

    def to_json_lines(self, limit: int) -> list[str]:
        return [json.dumps(d.model_dump(mode="json")) for d in self.recent(limit)]
