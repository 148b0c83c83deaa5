"""Tests for the gate decision combinator and phase transitions."""

import pytest
from conftest import FakeTracker

from superego.decision_log import Decision, DecisionLog
from superego.errors import ProcessInvocationFailed
from superego.evaluation import Evaluation
from superego.gate import UNDETERMINED_PHASE_MESSAGE, PhaseGate
from superego.gate_model import GateVerdict
from superego.phase_state import Phase, PhaseState, StateStore
from superego.task_signal import CLAIM_TASK_FEEDBACK, TaskSignal, TrackedTask


@pytest.fixture
def gate(store: StateStore, decisions: DecisionLog) -> PhaseGate:
    return PhaseGate(store, tracker=FakeTracker(initialized=False), decisions=decisions)


def _signal(read_only: bool = False) -> TaskSignal:
    if read_only:
        return TaskSignal(read_only=True, feedback=CLAIM_TASK_FEEDBACK)
    return TaskSignal.unconstrained()


# --- check: the combinator ---


def test_bash_while_discussing_is_blocked(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.DISCUSSING)

    result = gate.check("Bash", state, _signal())

    assert result.verdict == GateVerdict.BLOCK
    assert result.reason == "phase"
    assert "Phase is discussing" in result.message


def test_override_allows_once_and_is_cleared(gate: PhaseGate) -> None:
    # Arrange
    state = PhaseState.with_phase(Phase.DISCUSSING)
    state.set_override("quick fix approved")

    # Act
    first = gate.check("Bash", state, _signal())
    second = gate.check("Bash", state, _signal())

    # Assert
    assert first.verdict == GateVerdict.ALLOW
    assert first.reason == "override"
    assert state.pending_override is None
    assert second.verdict == GateVerdict.BLOCK


def test_tracker_veto_wins_over_ready(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.READY)

    result = gate.check("Bash", state, _signal(read_only=True))

    assert result.verdict == GateVerdict.BLOCK
    assert result.message == CLAIM_TASK_FEEDBACK


def test_tracker_veto_does_not_spend_override(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.DISCUSSING)
    state.set_override("later")

    result = gate.check("Edit", state, _signal(read_only=True))

    assert result.verdict == GateVerdict.BLOCK
    assert state.pending_override is not None


def test_read_tools_pass_in_any_phase(gate: PhaseGate) -> None:
    for phase in Phase:
        result = gate.check("Read", PhaseState.with_phase(phase), _signal(read_only=True))
        assert result.allowed


def test_read_tool_does_not_spend_override(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.EXPLORING)
    state.set_override("for the edit")

    gate.check("Grep", state, _signal())

    assert state.pending_override is not None


def test_disabled_allows_everything(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.EXPLORING)
    state.disabled = True

    result = gate.check("Bash", state, _signal(read_only=True))

    assert result.allowed
    assert result.reason == "superego disabled"


def test_ready_allows_write_and_unknown_tools(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.READY)
    assert gate.check("Edit", state, _signal()).allowed
    assert gate.check("mcp__db__drop_table", state, _signal()).allowed


def test_unknown_tool_blocked_before_ready(gate: PhaseGate) -> None:
    result = gate.check("mcp__db__drop_table", PhaseState.with_phase(Phase.EXPLORING), _signal())
    assert result.verdict == GateVerdict.BLOCK


def test_failed_evaluation_blocks_with_undetermined_message(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.READY)

    result = gate.check("Write", state, _signal(), evaluation_failed=True)

    assert result.verdict == GateVerdict.BLOCK
    assert result.message == UNDETERMINED_PHASE_MESSAGE


def test_override_still_applies_after_failed_evaluation(gate: PhaseGate) -> None:
    state = PhaseState.with_phase(Phase.DISCUSSING)
    state.set_override("user insists")

    result = gate.check("Write", state, _signal(), evaluation_failed=True)

    assert result.allowed


def test_block_message_uses_latest_suggestion(gate: PhaseGate, decisions: DecisionLog) -> None:
    decisions.record(Decision(phase="discussing", suggestion="Ask which database to use."))

    result = gate.check("Edit", PhaseState.with_phase(Phase.DISCUSSING), _signal())

    assert result.message.endswith("Ask which database to use.")


def test_multiple_tasks_feedback_is_passed_through_on_allow(gate: PhaseGate) -> None:
    signal = TaskSignal(
        current_task=TrackedTask(id="a", title="A"),
        feedback="Multiple tasks in progress (a: A, b: B). Consider focusing on one at a time.",
    )

    result = gate.check("Edit", PhaseState.with_phase(Phase.READY), signal)

    assert result.allowed
    assert "Multiple tasks" in result.message


def test_to_json_shape(gate: PhaseGate) -> None:
    result = gate.check("Bash", PhaseState.with_phase(Phase.EXPLORING), _signal())
    payload = result.to_json()
    assert payload["decision"] == "block"
    assert payload["phase"] == "exploring"
    assert payload["reason"].startswith("Phase is exploring")


# --- run_check: persistence ---


def test_run_check_persists_consumed_override(gate: PhaseGate, store: StateStore) -> None:
    state = PhaseState.with_phase(Phase.DISCUSSING)
    state.set_override("one edit")
    store.save(state)

    assert gate.run_check("Edit").allowed
    assert store.load().pending_override is None
    assert not gate.run_check("Edit").allowed


def test_run_check_consults_tracker_only_for_gated_tools(store: StateStore) -> None:
    tracker = FakeTracker(tasks=[])
    gate = PhaseGate(store, tracker=tracker)
    store.save(PhaseState.with_phase(Phase.READY))

    assert gate.run_check("Read").allowed
    assert tracker.calls == 0

    result = gate.run_check("Edit")
    assert tracker.calls == 1
    assert result.verdict == GateVerdict.BLOCK
    assert result.message == CLAIM_TASK_FEEDBACK


def test_run_check_with_broken_tracker_uses_phase(store: StateStore) -> None:
    gate = PhaseGate(store, tracker=FakeTracker(error=ProcessInvocationFailed("bd", "crashed")))
    store.save(PhaseState.with_phase(Phase.READY))

    assert gate.run_check("Edit").allowed


# --- transitions ---


def test_apply_evaluation_transitions_and_sets_scope(gate: PhaseGate, store: StateStore) -> None:
    state = gate.apply_evaluation(Evaluation(phase="ready", approved_scope="implement auth"))

    assert state.phase == Phase.READY
    assert state.approved_scope == "implement auth"
    assert store.load().last_evaluated == state.last_evaluated


def test_same_phase_evaluation_still_stamps_time(gate: PhaseGate, store: StateStore) -> None:
    first = gate.apply_evaluation(Evaluation(phase="discussing"))
    second = gate.apply_evaluation(Evaluation(phase="discussing"))
    assert second.last_evaluated >= first.last_evaluated


def test_regression_drops_pending_override(gate: PhaseGate, store: StateStore) -> None:
    state = PhaseState.with_phase(Phase.READY)
    state.set_override("granted while ready")
    store.save(state)

    result = gate.apply_evaluation(Evaluation(phase="discussing"))

    assert result.phase == Phase.DISCUSSING
    assert result.pending_override is None


def test_progression_keeps_pending_override(gate: PhaseGate, store: StateStore) -> None:
    state = PhaseState.with_phase(Phase.EXPLORING)
    state.set_override("keep me")
    store.save(state)

    result = gate.apply_evaluation(Evaluation(phase="discussing"))

    assert result.pending_override is not None


def test_unknown_phase_is_treated_as_failure(gate: PhaseGate, store: StateStore) -> None:
    store.save(PhaseState.with_phase(Phase.READY))

    result = gate.apply_evaluation(Evaluation(phase="implementing"))

    assert result.phase == Phase.DISCUSSING


def test_apply_failure_demotes_only_ready(gate: PhaseGate, store: StateStore) -> None:
    store.save(PhaseState.with_phase(Phase.EXPLORING))
    assert gate.apply_failure().phase == Phase.EXPLORING

    ready = PhaseState.with_phase(Phase.READY)
    ready.approved_scope = "auth"
    store.save(ready)
    demoted = gate.apply_failure()
    assert demoted.phase == Phase.DISCUSSING
    assert demoted.approved_scope == "auth"


def test_grant_override_and_disable(gate: PhaseGate, store: StateStore) -> None:
    gate.grant_override("hotfix")
    assert store.load().pending_override.reason == "hotfix"

    gate.set_disabled(True)
    assert store.load().disabled is True
    gate.set_disabled(False)
    assert store.load().disabled is False
