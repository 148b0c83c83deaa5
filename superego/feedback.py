"""Pending feedback and evaluator session bookkeeping.

Feedback produced by an evaluation is parked in `.superego/feedback` until the
next user prompt injects it into the agent's context. `sg acknowledge` clears
it. The evaluator's own Claude session id lives in `.superego/session_id` so
successive evaluations resume one conversation.
"""

from __future__ import annotations

from pathlib import Path

from superego.evaluation import Evaluation
from superego.paths import get_feedback_file, get_session_id_file


def format_feedback(evaluation: Evaluation) -> str | None:
    """Render the actionable part of an evaluation, or None if there is none."""
    lines: list[str] = []
    for concern in evaluation.concerns or []:
        lines.append(f"- [{concern.type}] {concern.description}")
    if evaluation.suggestion:
        lines.append(f"Suggestion: {evaluation.suggestion}")
    if not lines:
        return None
    header = f"Phase: {evaluation.phase}"
    if evaluation.reason:
        header += f" ({evaluation.reason})"
    return "\n".join([header, *lines])


def write_feedback(superego_dir: Path, feedback: str) -> None:
    path = get_feedback_file(superego_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(feedback, encoding="utf-8")


def read_feedback(superego_dir: Path) -> str | None:
    path = get_feedback_file(superego_dir)
    if not path.exists():
        return None
    text = path.read_text(encoding="utf-8", errors="replace").strip()
    return text or None


def clear_feedback(superego_dir: Path) -> bool:
    """Remove pending feedback. Returns True if there was any."""
    path = get_feedback_file(superego_dir)
    if not path.exists():
        return False
    path.unlink()
    return True


def read_session_id(superego_dir: Path) -> str | None:
    path = get_session_id_file(superego_dir)
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8").strip() or None


def write_session_id(superego_dir: Path, session_id: str) -> None:
    get_session_id_file(superego_dir).write_text(session_id, encoding="utf-8")


def clear_session_id(superego_dir: Path) -> bool:
    path = get_session_id_file(superego_dir)
    if not path.exists():
        return False
    path.unlink()
    return True
