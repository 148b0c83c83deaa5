"""Run a superego evaluation over the conversation transcript.

One evaluation:
1. selects the transcript messages since the last evaluation (plus the
   carryover window),
2. asks the evaluator model for a phase judgment, resuming its session,
3. applies the judgment through the gate (a phase transition),
4. records the decision, parks feedback for the next prompt, and posts it to
   Open Horizons in the background.

Any failure along the way (unreadable transcript, evaluator error, timeout,
no JSON, malformed JSON) is recorded and resolved fail-safe: the gate demotes
READY so writes stay blocked until a fresh evaluation succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from superego.claude_client import InvokeOptions, ModelInvoker
from superego.config import Settings
from superego.decision_log import Decision, DecisionLog
from superego.errors import ProcessInvocationFailed, SuperegoError
from superego.evaluation import Evaluation, parse_evaluation
from superego.feedback import format_feedback, read_session_id, write_feedback, write_session_id
from superego.gate import PhaseGate
from superego.oh_client import post_feedback_in_background
from superego.phase_state import PhaseState
from superego.prompts import load_system_prompt
from superego.transcript import format_for_evaluation, read_transcript, select_for_evaluation

logger = logging.getLogger(__name__)


@dataclass
class EvaluationReport:
    """What an evaluation run did."""

    state: PhaseState
    evaluation: Evaluation | None = None
    error: str | None = None
    feedback: str | None = None
    skipped: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


def build_message(
    state: PhaseState,
    carryover: list[Decision],
    conversation: str,
) -> str:
    """Assemble the user message sent to the evaluator."""
    sections = [f"Current phase: {state.phase.value}"]
    if state.approved_scope:
        sections.append(f"Approved scope: {state.approved_scope}")
    if carryover:
        history = "\n".join(d.summary() for d in carryover)
        sections.append(f"Recent decisions:\n{history}")
    sections.append(f"Conversation:\n\n{conversation}")
    sections.append("Evaluate the current phase. Respond with the JSON object only.")
    return "\n\n".join(sections)


class Evaluator:
    def __init__(
        self,
        settings: Settings,
        gate: PhaseGate,
        invoker: ModelInvoker,
        decisions: DecisionLog,
    ):
        self.settings = settings
        self.gate = gate
        self.invoker = invoker
        self.decisions = decisions

    def _fail(self, error: Exception, trigger: str) -> EvaluationReport:
        logger.warning(f"Evaluation failed ({trigger}): {error}")
        self.decisions.record(Decision.from_failure(error, trigger))
        state = self.gate.apply_failure()
        return EvaluationReport(state=state, error=str(error))

    def evaluate_transcript(self, transcript_path: Path, trigger: str = "evaluate") -> EvaluationReport:
        """Evaluate the conversation in `transcript_path`.

        Raises:
            StorageCorrupt: The state record cannot be parsed.
            StorageIoFailed: State could not be read, locked or written.
        """
        superego_dir = self.settings.superego_dir
        config = self.settings.config
        state = self.gate.store.load()

        try:
            messages = read_transcript(transcript_path)
        except (OSError, UnicodeDecodeError) as e:
            return self._fail(ProcessInvocationFailed("read transcript", str(e)), trigger)

        selected = select_for_evaluation(
            messages, state.last_evaluated, config.carryover_window_minutes
        )
        if not selected:
            logger.info("No new messages since last evaluation")
            return EvaluationReport(state=state, skipped=True)

        message = build_message(
            state,
            self.decisions.recent(config.carryover_decision_count),
            format_for_evaluation(selected),
        )

        try:
            system_prompt = load_system_prompt(superego_dir)
            options = InvokeOptions(
                model=config.model,
                session_id=read_session_id(superego_dir),
                timeout_seconds=config.eval_timeout_seconds,
            )
        except (OSError, UnicodeDecodeError) as e:
            return self._fail(ProcessInvocationFailed("read evaluator inputs", str(e)), trigger)

        try:
            response = self.invoker.invoke(system_prompt, message, options)
            if response.session_id:
                write_session_id(superego_dir, response.session_id)
            evaluation = parse_evaluation(response.result)
        except SuperegoError as e:
            return self._fail(e, trigger)
        except OSError as e:
            return self._fail(ProcessInvocationFailed("write session id", str(e)), trigger)

        state = self.gate.apply_evaluation(evaluation)
        if evaluation.target_phase() is None:
            error = f"unknown phase {evaluation.phase!r}"
            self.decisions.record(Decision(trigger=trigger, error=error))
            return EvaluationReport(state=state, evaluation=evaluation, error=error)

        self.decisions.record(Decision.from_evaluation(evaluation, trigger))

        feedback = format_feedback(evaluation)
        if feedback:
            write_feedback(superego_dir, feedback)
            post_feedback_in_background(self.settings, feedback)

        logger.info(
            f"Phase {state.phase.value} (confidence {evaluation.confidence}) after {trigger}"
        )
        return EvaluationReport(state=state, evaluation=evaluation, feedback=feedback)
