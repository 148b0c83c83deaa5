"""Tests for the decision history and feedback files."""

import json
from pathlib import Path

from superego.decision_log import Decision, DecisionLog
from superego.errors import EvaluationTimeout
from superego.evaluation import Concern, Evaluation
from superego.feedback import (
    clear_feedback,
    format_feedback,
    read_feedback,
    read_session_id,
    write_feedback,
    write_session_id,
)


def test_recent_returns_newest_last(decisions: DecisionLog) -> None:
    for phase in ("exploring", "discussing", "ready"):
        decisions.record(Decision(phase=phase))

    recent = decisions.recent(2)

    assert [d.phase for d in recent] == ["discussing", "ready"]
    assert decisions.latest().phase == "ready"


def test_empty_log(decisions: DecisionLog) -> None:
    assert decisions.recent(5) == []
    assert decisions.latest() is None
    assert decisions.last_failed() is False


def test_unreadable_lines_are_skipped(decisions: DecisionLog) -> None:
    decisions.record(Decision(phase="discussing"))
    with decisions.path.open("a") as f:
        f.write("{broken\n\n")
    decisions.record(Decision(phase="ready"))

    assert [d.phase for d in decisions.recent(10)] == ["discussing", "ready"]


def test_undecodable_lines_are_skipped(decisions: DecisionLog) -> None:
    decisions.record(Decision(phase="discussing"))
    with decisions.path.open("ab") as f:
        f.write(b"\xff\xfe\n")

    assert [d.phase for d in decisions.recent(10)] == ["discussing"]
    assert decisions.last_failed() is False


def test_failures_are_recorded_and_skipped_for_judgment(decisions: DecisionLog) -> None:
    decisions.record(Decision(phase="discussing", suggestion="Agree on the schema first."))
    decisions.record(Decision.from_failure(EvaluationTimeout(60), "stop"))

    assert decisions.last_failed() is True
    assert "timed out" in decisions.latest().error
    assert decisions.latest_judgment().suggestion == "Agree on the schema first."


def test_from_evaluation_copies_judgment() -> None:
    evaluation = Evaluation(
        phase="ready",
        confidence=0.9,
        approved_scope="implement auth",
        concerns=[Concern(type="scope_creep", description="x")],
        reason="User approved",
    )

    decision = Decision.from_evaluation(evaluation, "user_prompt")

    assert decision.trigger == "user_prompt"
    assert decision.approved_scope == "implement auth"
    assert len(decision.concerns) == 1
    assert "phase=ready" in decision.summary()
    assert "User approved" in decision.summary()


def test_to_json_lines(decisions: DecisionLog) -> None:
    decisions.record(Decision(phase="ready", confidence=0.75))
    lines = decisions.to_json_lines(5)
    assert json.loads(lines[0])["confidence"] == 0.75


# --- feedback ---


def test_format_feedback_without_advice_is_none() -> None:
    assert format_feedback(Evaluation(phase="ready", reason="all good")) is None


def test_format_feedback_lists_concerns_and_suggestion() -> None:
    evaluation = Evaluation(
        phase="discussing",
        reason="no approach agreed",
        concerns=[Concern(type="premature_implementation", description="Started coding early")],
        suggestion="Propose two options.",
    )

    text = format_feedback(evaluation)

    assert text.splitlines() == [
        "Phase: discussing (no approach agreed)",
        "- [premature_implementation] Started coding early",
        "Suggestion: Propose two options.",
    ]


def test_feedback_file_lifecycle(superego_dir: Path) -> None:
    assert read_feedback(superego_dir) is None
    write_feedback(superego_dir, "Slow down.")
    assert read_feedback(superego_dir) == "Slow down."
    assert clear_feedback(superego_dir) is True
    assert clear_feedback(superego_dir) is False


def test_session_id_round_trip(superego_dir: Path) -> None:
    assert read_session_id(superego_dir) is None
    write_session_id(superego_dir, "abc-123")
    assert read_session_id(superego_dir) == "abc-123"
