"""SQLite connection management and schema bootstrap."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Dict, Iterator

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS obituaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        name_key TEXT NOT NULL,
        date_of_birth TEXT,
        date_of_death TEXT NOT NULL,
        age INTEGER,
        funeral_home TEXT NOT NULL DEFAULT '',
        location TEXT NOT NULL DEFAULT '',
        city_normalized TEXT NOT NULL DEFAULT '',
        image_url TEXT,
        description TEXT NOT NULL DEFAULT '',
        source_url TEXT NOT NULL DEFAULT '',
        source_domain TEXT NOT NULL DEFAULT '',
        source_type TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_obituaries_exact ON obituaries(name_key, date_of_death)",
    "CREATE INDEX IF NOT EXISTS idx_obituaries_dod ON obituaries(date_of_death)",
    """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL DEFAULT '',
        base_url TEXT NOT NULL,
        adapter_type TEXT NOT NULL DEFAULT 'generic_html',
        enabled INTEGER NOT NULL DEFAULT 1,
        consecutive_failures INTEGER NOT NULL DEFAULT 0,
        circuit_state TEXT NOT NULL DEFAULT 'closed',
        last_success_at TEXT,
        last_failure_at TEXT,
        last_failure_reason TEXT,
        total_collected INTEGER NOT NULL DEFAULT 0,
        config TEXT NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_sessions (
        session_id TEXT PRIMARY KEY,
        lock_slot TEXT NOT NULL DEFAULT 'reset_rescan',
        phase TEXT NOT NULL,
        total_rows_at_start INTEGER NOT NULL,
        deleted_rows_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        held_by TEXT NOT NULL DEFAULT '',
        last_result TEXT
    )
    """,
    # At most one non-terminal session: inserting a second one violates this index.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_job_sessions_active
    ON job_sessions(lock_slot) WHERE phase != 'done'
    """,
    """
    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = RLock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()

    @contextmanager
    def transaction(self, path: Path) -> Iterator[sqlite3.Connection]:
        """Serialise a unit of work on ``path`` and commit or roll it back."""

        conn = self.connect(path)
        with self._lock:
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            else:
                conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


class KeyValueStore:
    """Small string settings persisted next to the corpus (e.g. ``last_collection``)."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path

    def get(self, key: str, default: str | None = None) -> str | None:
        with self.manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else default

    def set(self, key: str, value: str) -> None:
        with self.manager.transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO kv(key, value, updated_at) VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value),
            )


__all__ = ["KeyValueStore", "SCHEMA", "SQLiteManager"]
