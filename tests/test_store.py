"""Tests for the SQLite session store."""

import pytest
from roleplay_state import SessionStore, SnapshotError


@pytest.fixture
def store():
    store = SessionStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def state(active_engine):
    context = active_engine.prepare_turn("*walks into the tavern*")
    active_engine.process_response("Mara nods.", context)
    return active_engine.export_state()


def test_store_creates_tables(store):
    """Verify the snapshot table is created."""
    tables = store.db.execute(
        "SELECT name FROM sqlite_master WHERE type='table'"
    ).fetchall()

    assert "engine_snapshots" in {row["name"] for row in tables}


def test_save_and_load(store, state):
    store.save("chat-1", state)

    assert store.load("chat-1") == state


def test_load_unknown_key(store):
    assert store.load("missing") is None


def test_save_overwrites(store, state):
    store.save("chat-1", state)
    state.turn_count = 7
    store.save("chat-1", state)

    row = store.db.execute(
        "SELECT COUNT(*) AS n, MAX(turn_count) AS turn FROM engine_snapshots"
    ).fetchone()
    assert row["n"] == 1
    assert row["turn"] == 7
    assert store.load("chat-1").turn_count == 7


def test_delete(store, state):
    store.save("chat-1", state)

    assert store.delete("chat-1")
    assert not store.delete("chat-1")
    assert store.load("chat-1") is None


def test_list_sessions(store, state):
    store.save("chat-1", state)
    store.save("chat-2", state)

    sessions = store.list_sessions()
    assert {s["session_key"] for s in sessions} == {"chat-1", "chat-2"}
    assert all(s["character_id"] == "mara" for s in sessions)
    assert all(s["turn_count"] == 1 for s in sessions)

    assert store.list_sessions(character_id="tobin") == []


def test_corrupt_snapshot_raises(store, state):
    store.save("chat-1", state)
    store.db.execute(
        "UPDATE engine_snapshots SET state_json = ? WHERE session_key = ?",
        ('{"format_version": 1}', "chat-1"),
    )

    with pytest.raises(SnapshotError):
        store.load("chat-1")


def test_context_manager(state, tmp_path):
    db_path = str(tmp_path / "sessions.db")
    with SessionStore(db_path) as store:
        store.save("chat-1", state)

    with SessionStore(db_path) as store:
        assert store.load("chat-1").session_id == state.session_id
