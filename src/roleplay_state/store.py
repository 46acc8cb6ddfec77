"""SQLite-backed storage for engine snapshots."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

from roleplay_state.models import EngineState
from roleplay_state.snapshot import dumps_state, loads_state

logger = logging.getLogger(__name__)


class SessionStore:
    """Saves and restores EngineState snapshots keyed by session key."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()
        self.db.executescript(schema)
        self.db.commit()

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> SessionStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def save(self, session_key: str, state: EngineState) -> None:
        """Insert or replace the snapshot for a session key."""
        payload = dumps_state(state)
        with self._lock:
            self.db.execute(
                """
                INSERT INTO engine_snapshots
                    (session_key, session_id, character_id, turn_count, state_json, updated_at)
                VALUES (?, ?, ?, ?, ?, datetime('now'))
                ON CONFLICT(session_key) DO UPDATE SET
                    session_id = excluded.session_id,
                    character_id = excluded.character_id,
                    turn_count = excluded.turn_count,
                    state_json = excluded.state_json,
                    updated_at = excluded.updated_at
                """,
                (
                    session_key,
                    state.session_id,
                    state.character.id if state.character else None,
                    state.turn_count,
                    payload,
                ),
            )
            self.db.commit()
        logger.debug("Saved session %s at turn %d", session_key, state.turn_count)

    def load(self, session_key: str) -> EngineState | None:
        """Load a snapshot, or None if the key is unknown.

        Raises SnapshotError if the stored snapshot is corrupt.
        """
        with self._lock:
            row = self.db.execute(
                "SELECT state_json FROM engine_snapshots WHERE session_key = ?",
                (session_key,),
            ).fetchone()
        if row is None:
            return None
        return loads_state(row["state_json"])

    def delete(self, session_key: str) -> bool:
        with self._lock:
            cursor = self.db.execute(
                "DELETE FROM engine_snapshots WHERE session_key = ?", (session_key,)
            )
            self.db.commit()
        return cursor.rowcount > 0

    def list_sessions(self, character_id: str | None = None) -> list[dict]:
        """Saved sessions, most recently updated first."""
        query = (
            "SELECT session_key, session_id, character_id, turn_count, updated_at "
            "FROM engine_snapshots"
        )
        params: tuple = ()
        if character_id is not None:
            query += " WHERE character_id = ?"
            params = (character_id,)
        query += " ORDER BY updated_at DESC, session_key"
        with self._lock:
            rows = self.db.execute(query, params).fetchall()
        return [dict(row) for row in rows]
