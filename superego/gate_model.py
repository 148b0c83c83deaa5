from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class GateVerdict(Enum):
    """Verdict of a write-gate check."""

    ALLOW = "allow"
    BLOCK = "block"


@dataclass
class GateResult:
    """Provider-agnostic result of a gate check.

    `reason` is a short machine-oriented tag (e.g. "read tool", "override");
    `message` is the text surfaced to the agent when the action is blocked.
    """

    verdict: GateVerdict
    reason: str
    message: str | None = None
    phase: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.verdict == GateVerdict.ALLOW

    @classmethod
    def allow(
        cls,
        reason: str,
        phase: str | None = None,
        message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "GateResult":
        """Factory method for ALLOW verdict."""
        return cls(
            verdict=GateVerdict.ALLOW,
            reason=reason,
            message=message,
            phase=phase,
            metadata=metadata or {},
        )

    @classmethod
    def block(
        cls,
        reason: str,
        message: str,
        phase: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "GateResult":
        """Factory method for BLOCK verdict."""
        return cls(
            verdict=GateVerdict.BLOCK,
            reason=reason,
            message=message,
            phase=phase,
            metadata=metadata or {},
        )

    def to_json(self) -> dict[str, Any]:
        """Serialize to the `sg check` output format."""
        return {
            "decision": self.verdict.value,
            "reason": self.message or self.reason,
            "phase": self.phase,
        }
