"""Wiring of the superego components for one project."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from superego.claude_client import ClaudeCli, ModelInvoker
from superego.config import Settings
from superego.decision_log import DecisionLog
from superego.evaluator import Evaluator
from superego.gate import PhaseGate
from superego.phase_state import StateStore
from superego.task_signal import BeadsTracker, TaskTracker


@dataclass
class Runtime:
    settings: Settings
    store: StateStore
    decisions: DecisionLog
    gate: PhaseGate
    evaluator: Evaluator

    @property
    def superego_dir(self) -> Path:
        return self.settings.superego_dir

    @classmethod
    def load(
        cls,
        superego_dir: Path,
        environ: Mapping[str, str] | None = None,
        invoker: ModelInvoker | None = None,
        tracker: TaskTracker | None = None,
        home: Path | None = None,
    ) -> Runtime:
        """Build every component from `.superego` and the environment.

        The tracker and evaluator subprocesses run from the project root
        (the parent of `.superego`).
        """
        settings = Settings.from_environment(superego_dir, environ, home=home)
        project_root = str(superego_dir.parent)

        store = StateStore(superego_dir)
        decisions = DecisionLog(superego_dir)
        gate = PhaseGate(
            store,
            tracker=tracker if tracker is not None else BeadsTracker(cwd=project_root),
            decisions=decisions,
        )
        evaluator = Evaluator(
            settings,
            gate,
            invoker if invoker is not None else ClaudeCli(cwd=project_root),
            decisions,
        )
        return cls(settings=settings, store=store, decisions=decisions, gate=gate, evaluator=evaluator)
