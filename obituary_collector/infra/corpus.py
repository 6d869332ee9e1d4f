"""Durable obituary storage backed by SQLite."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from ..engine.dedup import normalize_name
from ..records import Obituary
from .storage import SQLiteManager

_COLUMNS = (
    "name",
    "name_key",
    "date_of_birth",
    "date_of_death",
    "age",
    "funeral_home",
    "location",
    "city_normalized",
    "image_url",
    "description",
    "source_url",
    "source_domain",
    "source_type",
    "created_at",
)


def _row_to_obituary(row: sqlite3.Row) -> Obituary:
    return Obituary(
        id=row["id"],
        name=row["name"],
        date_of_death=date.fromisoformat(row["date_of_death"]),
        date_of_birth=date.fromisoformat(row["date_of_birth"]) if row["date_of_birth"] else None,
        age=row["age"],
        funeral_home=row["funeral_home"],
        location=row["location"],
        city_normalized=row["city_normalized"],
        image_url=row["image_url"],
        description=row["description"],
        source_url=row["source_url"],
        source_domain=row["source_domain"],
        source_type=row["source_type"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class CorpusStore:
    """Insert, look up, count and batch-delete obituary rows."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self.manager.connect(db_path)

    def insert(self, obituary: Obituary) -> Obituary | None:
        """Persist ``obituary``; return it with id/created_at, or None if the exact key exists."""

        created_at = datetime.now(timezone.utc)
        values = (
            obituary.name,
            normalize_name(obituary.name),
            obituary.date_of_birth.isoformat() if obituary.date_of_birth else None,
            obituary.date_of_death.isoformat(),
            obituary.age,
            obituary.funeral_home,
            obituary.location,
            obituary.city_normalized,
            obituary.image_url,
            obituary.description,
            obituary.source_url,
            obituary.source_domain,
            obituary.source_type,
            created_at.isoformat(),
        )
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute(
                f"INSERT OR IGNORE INTO obituaries({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            if cur.rowcount == 0:
                return None
            obituary.id = cur.lastrowid
        obituary.created_at = created_at
        return obituary

    def query_by_fingerprint(self, date_of_death: date) -> list[Obituary]:
        """Return every stored record sharing the fingerprint's date of death."""

        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM obituaries WHERE date_of_death = ? ORDER BY id ASC",
                (date_of_death.isoformat(),),
            ).fetchall()
        return [_row_to_obituary(row) for row in rows]

    def delete_batch(self, limit: int) -> int:
        """Delete up to ``limit`` rows, lowest ids first; return how many went."""

        with self.manager.transaction(self.db_path) as conn:
            return self.delete_batch_in(conn, limit)

    @staticmethod
    def delete_batch_in(conn: sqlite3.Connection, limit: int) -> int:
        """``delete_batch`` inside a transaction the caller already holds."""

        ids = [
            row["id"]
            for row in conn.execute(
                "SELECT id FROM obituaries ORDER BY id ASC LIMIT ?", (limit,)
            ).fetchall()
        ]
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cur = conn.execute(f"DELETE FROM obituaries WHERE id IN ({placeholders})", ids)
        return cur.rowcount

    def count(self) -> int:
        with self.manager.transaction(self.db_path) as conn:
            return self.count_in(conn)

    @staticmethod
    def count_in(conn: sqlite3.Connection) -> int:
        return int(conn.execute("SELECT COUNT(*) FROM obituaries").fetchone()[0])

    def get(self, obituary_id: int) -> Obituary | None:
        with self.manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM obituaries WHERE id = ?", (obituary_id,)).fetchone()
        return _row_to_obituary(row) if row else None

    def iter_all(self) -> Iterator[dict[str, Any]]:
        """Yield every row as a plain mapping ordered by id."""

        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM obituaries ORDER BY id ASC").fetchall()
        for row in rows:
            payload = dict(row)
            payload.pop("name_key", None)
            yield payload


__all__ = ["CorpusStore"]
