"""Tests for the phase state machine and its store."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from filelock import FileLock, Timeout

from superego.errors import StorageCorrupt
from superego.phase_state import LoadStatus, Phase, PhaseState, StateStore


def _states() -> list[PhaseState]:
    states = []
    for phase in Phase:
        for disabled in (False, True):
            for override in (False, True):
                state = PhaseState.with_phase(phase)
                state.disabled = disabled
                if override:
                    state.set_override("user said so")
                states.append(state)
    return states


@pytest.mark.parametrize("state", _states())
def test_allows_write_matches_definition(state: PhaseState) -> None:
    expected = state.disabled or state.phase == Phase.READY or state.pending_override is not None
    assert state.allows_write() == expected


@pytest.mark.parametrize("phase", list(Phase))
def test_consume_override_restores_previous_permission(phase: Phase) -> None:
    state = PhaseState.with_phase(phase)
    before = state.allows_write()

    state.set_override("one edit")
    assert state.allows_write() is True

    state.consume_override()
    assert state.allows_write() == before


def test_consume_override_without_override_is_noop() -> None:
    state = PhaseState.create()
    state.consume_override()
    assert state.pending_override is None


def test_set_override_replaces_existing() -> None:
    state = PhaseState.create()
    state.set_override("first")
    state.set_override("second")
    assert state.pending_override.reason == "second"


def test_transition_to_advances_both_timestamps() -> None:
    # Arrange
    state = PhaseState.create()
    state.since = datetime.now(UTC) - timedelta(hours=1)

    # Act
    state.transition_to(Phase.READY, "implement auth")

    # Assert
    assert state.phase == Phase.READY
    assert state.approved_scope == "implement auth"
    assert state.since == state.last_evaluated
    assert datetime.now(UTC) - state.since < timedelta(minutes=1)


def test_transition_to_never_moves_timestamps_backwards() -> None:
    state = PhaseState.create()
    future = datetime.now(UTC) + timedelta(hours=1)
    state.since = future
    state.last_evaluated = future

    state.transition_to(Phase.DISCUSSING, None)

    assert state.since >= future
    assert state.last_evaluated >= future


def test_transition_to_keeps_pending_override() -> None:
    state = PhaseState.with_phase(Phase.READY)
    state.set_override("keep")

    state.transition_to(Phase.DISCUSSING, None)

    assert state.pending_override is not None


def test_phase_serializes_lowercase_and_ranks() -> None:
    assert json.loads(PhaseState.with_phase(Phase.READY).model_dump_json())["phase"] == "ready"
    assert Phase.EXPLORING.rank < Phase.DISCUSSING.rank < Phase.READY.rank
    assert Phase.parse(" Ready ") == Phase.READY
    assert Phase.parse("implementing") is None


# --- StateStore ---


def test_missing_state_loads_defaults(store: StateStore) -> None:
    assert store.load_outcome().status == LoadStatus.MISSING
    state = store.load()
    assert state.phase == Phase.EXPLORING
    assert state.pending_override is None
    assert state.disabled is False


def test_round_trip_preserves_state(store: StateStore) -> None:
    # Arrange
    state = PhaseState.create()
    state.transition_to(Phase.READY, "implement auth")

    # Act
    store.save(state)
    loaded = store.load()

    # Assert
    assert store.load_outcome().status == LoadStatus.FOUND
    assert loaded == state


def test_saved_file_is_pretty_json(store: StateStore) -> None:
    store.save(PhaseState.create())
    text = store.state_path.read_text()
    assert "\n  " in text
    assert json.loads(text)["phase"] == "exploring"


def test_corrupt_state_is_not_replaced_by_defaults(store: StateStore) -> None:
    store.state_path.write_text("{not json")

    assert store.load_outcome().status == LoadStatus.CORRUPT
    with pytest.raises(StorageCorrupt, match="sg reset"):
        store.load()


def test_undecodable_state_is_corrupt(store: StateStore) -> None:
    store.state_path.write_bytes(b'{"phase": "ready", \xff\xfe}')

    assert store.load_outcome().status == LoadStatus.CORRUPT
    with pytest.raises(StorageCorrupt, match="sg reset"):
        store.load()


def test_update_does_not_run_on_corrupt_state(store: StateStore) -> None:
    store.state_path.write_text('{"phase": "implementing"}')
    called = []

    with pytest.raises(StorageCorrupt):
        store.update(lambda s: called.append(s))

    assert called == []
    assert store.state_path.read_text() == '{"phase": "implementing"}'


def test_update_holds_lock_while_fn_runs(store: StateStore) -> None:
    observed = []

    def probe(state: PhaseState) -> None:
        other = FileLock(store.lock_path, timeout=0.05)
        try:
            other.acquire()
            observed.append("acquired")
            other.release()
        except Timeout:
            observed.append("blocked")
        state.phase = Phase.DISCUSSING

    saved = store.update(probe)

    assert observed == ["blocked"]
    assert saved.phase == Phase.DISCUSSING
    assert store.load().phase == Phase.DISCUSSING


def test_clear_resets_to_defaults(store: StateStore) -> None:
    store.save(PhaseState.with_phase(Phase.READY))
    store.clear()
    assert not store.exists()
    assert store.load().phase == Phase.EXPLORING


def test_clear_removes_corrupt_state(store: StateStore) -> None:
    store.state_path.write_text("garbage")
    store.clear()
    assert store.load_outcome().status == LoadStatus.MISSING


def test_naive_timestamps_are_read_as_utc(superego_dir: Path) -> None:
    path = superego_dir / "state.json"
    path.write_text(json.dumps({"phase": "discussing", "since": "2026-01-01T10:00:00"}))

    state = StateStore(superego_dir).load()

    assert state.since.tzinfo is not None
    assert state.since.utcoffset() == timedelta(0)
