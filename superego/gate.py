"""
Write gate: combines phase state, tool class and task signal into one verdict.

Evaluation order for a tool-use request (first match wins):

1. superego disabled            -> allow
2. read-only tool               -> allow
3. tracker says read-only       -> block with the tracker's feedback
                                   (vetoes even READY and pending overrides)
4. pending override             -> allow, and the override is consumed
5. evaluation failed this turn  -> block ("could not determine phase")
6. phase is READY               -> allow
7. otherwise                    -> block with the last evaluation's advice

State only changes here: consuming an override, or applying a fresh
evaluation (or a failed one) as a phase transition. Classification and
parsing never mutate anything.
"""

from __future__ import annotations

import logging

from superego.decision_log import DecisionLog
from superego.evaluation import Evaluation
from superego.gate_model import GateResult
from superego.phase_state import Phase, PhaseState, StateStore
from superego.task_signal import TaskSignal, TaskTracker, signal_or_unconstrained
from superego.tool_registry import DEFAULT_REGISTRY, ToolClass, ToolRegistry

logger = logging.getLogger(__name__)

UNDETERMINED_PHASE_MESSAGE = (
    "Superego could not determine the conversation phase. "
    "Confirm the approach with the user before making changes, "
    "or ask them to run `sg override <reason>`."
)


def build_block_message(state: PhaseState, latest: Evaluation | None) -> str:
    """Explain a phase block using the most recent evaluation's advice."""
    message = f"Phase is {state.phase.value}. Confirm approach before writing code."
    if latest is not None:
        advice = latest.suggestion or latest.reason
        if advice:
            message = f"{message} {advice}"
    return message


class PhaseGate:
    """Decides whether a tool call may proceed and drives state transitions."""

    def __init__(
        self,
        store: StateStore,
        tracker: TaskTracker | None = None,
        registry: ToolRegistry | None = None,
        decisions: DecisionLog | None = None,
    ):
        self.store = store
        self.tracker = tracker
        self.registry = registry or DEFAULT_REGISTRY
        self.decisions = decisions

    # --- Verdicts ---

    def _latest_evaluation(self) -> Evaluation | None:
        if self.decisions is None:
            return None
        decision = self.decisions.latest_judgment()
        if decision is None or decision.phase is None:
            return None
        return Evaluation(phase=decision.phase, suggestion=decision.suggestion, reason=decision.reason)

    def check(
        self,
        tool_name: str,
        state: PhaseState,
        task_signal: TaskSignal,
        evaluation_failed: bool = False,
    ) -> GateResult:
        """Compute the verdict for one tool call.

        Consumes `state.pending_override` in place when it is used; the caller
        persists the state.
        """
        phase = state.phase.value

        if state.disabled:
            return GateResult.allow("superego disabled", phase=phase)

        tool_class = self.registry.classify(tool_name)
        if tool_class == ToolClass.READ:
            return GateResult.allow("read tool", phase=phase)

        if task_signal.read_only:
            return GateResult.block(
                "no task in progress",
                task_signal.feedback or "No task in progress.",
                phase=phase,
                metadata={"tool_class": tool_class.value},
            )

        if state.pending_override is not None:
            override = state.pending_override
            state.consume_override()
            logger.info(f"Override consumed by {tool_name}: {override.reason}")
            return GateResult.allow(
                "override",
                phase=phase,
                message=task_signal.feedback,
                metadata={"override_reason": override.reason},
            )

        if evaluation_failed:
            return GateResult.block("evaluation failed", UNDETERMINED_PHASE_MESSAGE, phase=phase)

        if state.phase == Phase.READY:
            return GateResult.allow("ready", phase=phase, message=task_signal.feedback)

        return GateResult.block(
            "phase",
            build_block_message(state, self._latest_evaluation()),
            phase=phase,
            metadata={"tool_class": tool_class.value},
        )

    def run_check(self, tool_name: str, evaluation_failed: bool = False) -> GateResult:
        """Load state, consult the tracker, decide, and persist any change.

        The tracker is only consulted for gated tools, and outside the state
        lock. The verdict itself is computed under the lock so two overlapping
        calls cannot both spend the same override.

        Raises:
            StorageCorrupt: The state record cannot be parsed.
            StorageIoFailed: State could not be read, locked or written.
        """
        snapshot = self.store.load()
        if snapshot.disabled or not self.registry.requires_gating(tool_name):
            return self.check(tool_name, snapshot, TaskSignal.unconstrained(), evaluation_failed)

        task_signal = signal_or_unconstrained(self.tracker)

        with self.store.locked():
            state = self.store.load()
            result = self.check(tool_name, state, task_signal, evaluation_failed)
            if result.reason == "override":
                self.store.save(state)

        return result

    # --- Transitions ---

    def apply_evaluation(self, evaluation: Evaluation) -> PhaseState:
        """Transition to the phase a fresh evaluation asks for.

        A regression (e.g. ready -> discussing) drops any pending override:
        it was granted under circumstances the evaluator no longer sees.
        An unrecognized phase string is treated as a failed evaluation.
        """
        target = evaluation.target_phase()
        if target is None:
            logger.warning(f"Evaluator returned unknown phase {evaluation.phase!r}")
            return self.apply_failure()

        def transition(state: PhaseState) -> None:
            if target.rank < state.phase.rank and state.pending_override is not None:
                logger.info(
                    f"Dropping override {state.pending_override.reason!r} on regression "
                    f"{state.phase.value} -> {target.value}"
                )
                state.consume_override()
            state.transition_to(target, evaluation.approved_scope)

        return self.store.update(transition)

    def apply_failure(self) -> PhaseState:
        """Fail safe after a missing evaluation: READY is demoted to DISCUSSING."""

        def demote(state: PhaseState) -> None:
            if state.phase == Phase.READY:
                state.transition_to(Phase.DISCUSSING, state.approved_scope)

        return self.store.update(demote)

    # --- User actions ---

    def grant_override(self, reason: str) -> PhaseState:
        return self.store.update(lambda state: state.set_override(reason))

    def set_disabled(self, disabled: bool) -> PhaseState:
        def toggle(state: PhaseState) -> None:
            state.disabled = disabled

        return self.store.update(toggle)
