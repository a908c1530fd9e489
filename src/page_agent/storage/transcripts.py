"""Per-session conversation transcripts."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

from page_agent.errors import UpstreamFailure
from page_agent.types import ConversationTurn


class TranscriptStore(Protocol):
    """Append-only transcript contract keyed by session id."""

    def append(self, session_id: str, turn: ConversationTurn) -> None:
        """Append a completed turn."""

    def list(self, session_id: str, limit: int | None = None) -> list[ConversationTurn]:
        """Return the most recent `limit` turns, oldest first."""

    def clear(self, session_id: str) -> None:
        """Drop every turn of the session."""


class InMemoryTranscriptStore:
    def __init__(self) -> None:
        self._sessions: dict[str, list[ConversationTurn]] = {}
        self._lock = threading.Lock()

    def append(self, session_id: str, turn: ConversationTurn) -> None:
        with self._lock:
            self._sessions.setdefault(session_id, []).append(turn)

    def list(self, session_id: str, limit: int | None = None) -> list[ConversationTurn]:
        with self._lock:
            turns = list(self._sessions.get(session_id, []))
        if limit is None:
            return turns
        return turns[-limit:] if limit > 0 else []

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class SqliteTranscriptStore:
    """Stores each turn as a JSON row in a local SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        _ensure_turns_table(self.db_path)

    def append(self, session_id: str, turn: ConversationTurn) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO turns(session_id, payload) VALUES(?, ?)",
                    (session_id, json.dumps(turn.to_dict())),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise UpstreamFailure(f"Failed to append turn: {exc}") from exc

    def list(self, session_id: str, limit: int | None = None) -> list[ConversationTurn]:
        if limit is not None and limit <= 0:
            return []
        query = "SELECT payload FROM turns WHERE session_id = ? ORDER BY id DESC"
        params: tuple[object, ...] = (session_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (session_id, limit)
        try:
            with sqlite3.connect(self.db_path) as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise UpstreamFailure(f"Failed to read transcript: {exc}") from exc
        return [ConversationTurn.from_dict(json.loads(row[0])) for row in reversed(rows)]

    def clear(self, session_id: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("DELETE FROM turns WHERE session_id = ?", (session_id,))
                conn.commit()
        except sqlite3.Error as exc:
            raise UpstreamFailure(f"Failed to clear transcript: {exc}") from exc


def _ensure_turns_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS turns ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "session_id TEXT NOT NULL, "
            "payload TEXT NOT NULL)"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS turns_session ON turns(session_id)")
        conn.commit()
