"""Path utilities - single source of truth for superego file locations.

Every project that uses superego carries a `.superego/` directory at its root:

    .superego/
    ├── config.yaml        line-oriented settings (see config.py)
    ├── prompt.md          evaluator system prompt (optional override)
    ├── state.json         the durable PhaseState record
    ├── state.json.lock    cross-process lock guarding state.json
    ├── decisions.jsonl    append-only decision history
    ├── feedback           pending feedback for the next user prompt
    └── session_id         evaluator session to resume
"""

from __future__ import annotations

from pathlib import Path

SUPEREGO_DIR_NAME = ".superego"


def find_superego_dir(start: Path | None = None) -> Path | None:
    """Locate the nearest `.superego` directory walking up from `start`.

    Args:
        start: Directory to start from. Defaults to cwd.

    Returns:
        Path to the `.superego` directory, or None if the project is not
        initialized.
    """
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        path = candidate / SUPEREGO_DIR_NAME
        if path.is_dir():
            return path
    return None


def get_state_file(superego_dir: Path) -> Path:
    return superego_dir / "state.json"


def get_state_lock_file(superego_dir: Path) -> Path:
    return superego_dir / "state.json.lock"


def get_config_file(superego_dir: Path) -> Path:
    return superego_dir / "config.yaml"


def get_prompt_file(superego_dir: Path) -> Path:
    return superego_dir / "prompt.md"


def get_decisions_file(superego_dir: Path) -> Path:
    return superego_dir / "decisions.jsonl"


def get_feedback_file(superego_dir: Path) -> Path:
    return superego_dir / "feedback"


def get_session_id_file(superego_dir: Path) -> Path:
    return superego_dir / "session_id"


def get_global_oh_config_file(home: Path | None = None) -> Path:
    """Location of the Open Horizons credentials written by `sg setup-oh`."""
    return (home or Path.home()) / ".config" / "openhorizons" / "config.json"


def is_superego_path(path: str | None) -> bool:
    """True if `path` points inside a `.superego` directory.

    Used as a recursion guard: the evaluator's own transcripts must never be
    evaluated or gated.
    """
    if not path:
        return False
    return SUPEREGO_DIR_NAME in Path(path).parts
