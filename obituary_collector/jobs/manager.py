"""Persisted Reset & Rescan workflow: gated start, batched purge, rescan."""

from __future__ import annotations

import json
import os
import socket
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ..adapters import SourceBudget
from ..config import ResetConfig
from ..errors import GateValidationFailed, InvalidTransition, LockConflict, SessionNotFound
from ..infra import CorpusStore, SQLiteManager
from ..logging_conf import configure_logging
from ..orchestrator import CollectorOrchestrator, CollectorResult
from .session import (
    BatchPurged,
    Cancel,
    Event,
    JobSession,
    Phase,
    RescanBegun,
    RescanFinished,
    RescanProgress,
    Start,
    transition,
)

GATE_UNDERSTAND = "understand"
GATE_BACKUP = "backup"
GATE_PHRASE = "confirm_phrase"


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def _row_to_session(row: sqlite3.Row) -> JobSession:
    return JobSession(
        session_id=row["session_id"],
        phase=Phase(row["phase"]),
        total_rows_at_start=row["total_rows_at_start"],
        deleted_rows_count=row["deleted_rows_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        held_by=row["held_by"],
        last_result=json.loads(row["last_result"]) if row["last_result"] else None,
    )


class JobSessionManager:
    """Drive purge-then-rescan across many short calls, persisting after every step."""

    def __init__(
        self,
        storage: SQLiteManager,
        db_path: Path,
        corpus: CorpusStore,
        orchestrator: CollectorOrchestrator,
        config: ResetConfig | None = None,
        held_by: str | None = None,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.storage = storage
        self.db_path = db_path
        self.corpus = corpus
        self.orchestrator = orchestrator
        self.config = config or ResetConfig()
        self.held_by = held_by or default_holder()
        self._new_id = id_factory
        self.logger = configure_logging().bind(component="reset_rescan")
        self.storage.connect(db_path)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def active(self) -> JobSession | None:
        with self.storage.transaction(self.db_path) as conn:
            return self._select_active(conn)

    @staticmethod
    def _select_active(conn: sqlite3.Connection) -> JobSession | None:
        row = conn.execute(
            "SELECT * FROM job_sessions WHERE phase != ? ORDER BY created_at DESC LIMIT 1",
            (Phase.DONE.value,),
        ).fetchone()
        return _row_to_session(row) if row else None

    def status(self) -> JobSession | None:
        """The active session, else the most recently finished one."""

        active = self.active()
        if active is not None:
            return active
        with self.storage.transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM job_sessions ORDER BY updated_at DESC LIMIT 1"
            ).fetchone()
        return _row_to_session(row) if row else None

    def _require(self, session_id: str, conn: sqlite3.Connection | None = None) -> JobSession:
        session = self._select_active(conn) if conn is not None else self.active()
        if session is None or session.session_id != session_id:
            raise SessionNotFound(f"No active reset session {session_id!r}")
        return session

    def _budget(self) -> SourceBudget:
        return SourceBudget(max_pages=self.config.rescan_page_cap)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def start(self, understand: bool, backup: bool, confirm_phrase: str) -> dict[str, Any]:
        """Check the three gates, then atomically create the one active session."""

        if not understand:
            raise GateValidationFailed(
                GATE_UNDERSTAND, "You must confirm you understand this deletes every obituary."
            )
        if not backup:
            raise GateValidationFailed(GATE_BACKUP, "You must confirm a backup has been exported.")
        if (confirm_phrase or "").strip() != self.config.confirm_phrase:
            raise GateValidationFailed(
                GATE_PHRASE, f'Type "{self.config.confirm_phrase}" exactly to continue.'
            )

        total_rows = self.corpus.count()
        session = self._step(
            None, Start(session_id=self._new_id(), total_rows=total_rows, held_by=self.held_by)
        )
        try:
            with self.storage.transaction(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO job_sessions(session_id, phase, total_rows_at_start,
                        deleted_rows_count, created_at, updated_at, held_by, last_result)
                    VALUES (?, ?, ?, ?, ?, ?, ?, NULL)
                    """,
                    (
                        session.session_id,
                        session.phase.value,
                        session.total_rows_at_start,
                        session.deleted_rows_count,
                        session.created_at.isoformat(),
                        session.updated_at.isoformat(),
                        session.held_by,
                    ),
                )
        except sqlite3.IntegrityError:
            existing = self.active()
            if existing is None:
                raise
            raise LockConflict(
                existing.session_id, existing.held_by, existing.created_at.isoformat()
            ) from None

        self.logger.warning(
            "reset_started", session_id=session.session_id, total_rows=total_rows
        )
        return {
            "session_id": session.session_id,
            "total_rows": total_rows,
            "batch_size": self.config.batch_size,
        }

    def purge_batch(self, session_id: str) -> dict[str, Any]:
        """Delete one batch; the delete and the counter update commit together."""

        with self.storage.transaction(self.db_path) as conn:
            session = self._require(session_id, conn)
            if session.phase is not Phase.PURGE:
                return {
                    "deleted_this_batch": 0,
                    "total_deleted": session.deleted_rows_count,
                    "remaining": self.corpus.count_in(conn),
                    "done": True,
                }
            deleted = self.corpus.delete_batch_in(conn, self.config.batch_size)
            remaining = self.corpus.count_in(conn)
            stepped = self._step(session, BatchPurged(deleted=deleted, remaining=remaining))
            cur = conn.execute(
                """
                UPDATE job_sessions SET deleted_rows_count = deleted_rows_count + ?,
                    phase = ?, updated_at = ?
                WHERE session_id = ? AND phase = ?
                """,
                (
                    deleted,
                    stepped.phase.value,
                    stepped.updated_at.isoformat(),
                    session_id,
                    Phase.PURGE.value,
                ),
            )
            if cur.rowcount == 0:
                raise SessionNotFound(f"Reset session {session_id!r} is no longer purging")
            total_deleted = conn.execute(
                "SELECT deleted_rows_count FROM job_sessions WHERE session_id = ?", (session_id,)
            ).fetchone()[0]
        self.logger.info(
            "purge_batch",
            session_id=session_id,
            deleted=deleted,
            total_deleted=total_deleted,
            remaining=remaining,
        )
        return {
            "deleted_this_batch": deleted,
            "total_deleted": total_deleted,
            "remaining": remaining,
            "done": remaining == 0,
        }

    def rescan(self, session_id: str) -> CollectorResult:
        """Collect from every enabled source, store the summary and finish the session."""

        session = self._require(session_id)
        session = self._apply(session, RescanBegun())
        self.logger.info("rescan_started", session_id=session_id)
        result = self.orchestrator.run(budget=self._budget())
        self._apply(session, RescanFinished(result.to_dict()))
        self.logger.info(
            "rescan_completed",
            session_id=session_id,
            found=result.found,
            added=result.added,
            status=result.status,
        )
        return result

    def rescan_source(self, session_id: str, source_id: int, is_last: bool) -> CollectorResult:
        """Client-paced rescan of a single source; the ``is_last`` call completes the session."""

        session = self._require(session_id)
        session = self._apply(session, RescanBegun())
        slice_result = self.orchestrator.run_one_source(
            source_id, is_last=is_last, budget=self._budget()
        )
        if session.last_result:
            merged = CollectorResult.from_dict(session.last_result).merge(slice_result)
        else:
            merged = slice_result
        event: Event = (
            RescanFinished(merged.to_dict()) if is_last else RescanProgress(merged.to_dict())
        )
        self._apply(session, event)
        self.logger.info(
            "rescan_source",
            session_id=session_id,
            source_id=source_id,
            is_last=is_last,
            added=slice_result.added,
        )
        return merged

    def resume(self, session_id: str) -> dict[str, Any]:
        """Continue from the persisted phase: finish purging, or re-run the rescan."""

        session = self._require(session_id)
        if session.phase is Phase.PURGE:
            batch = self.purge_batch(session_id)
            while not batch["done"]:
                batch = self.purge_batch(session_id)
            return {"phase": Phase.PURGE.value, "purge": batch}
        result = self.rescan(session_id)
        return {"phase": Phase.RESCAN.value, "result": result.to_dict()}

    def cancel(self, session_id: str) -> dict[str, bool]:
        """Release the lock; rows already purged stay deleted."""

        session = self._require(session_id)
        transition(session, Cancel())
        with self.storage.transaction(self.db_path) as conn:
            conn.execute("DELETE FROM job_sessions WHERE session_id = ?", (session_id,))
        self.logger.warning(
            "reset_cancelled", session_id=session_id, deleted=session.deleted_rows_count
        )
        return {"ok": True}

    start_session = start
    cancel_session = cancel

    def run_to_completion(
        self,
        understand: bool,
        backup: bool,
        confirm_phrase: str,
        on_batch: Callable[[dict[str, Any]], None] | None = None,
    ) -> CollectorResult:
        """start → purge loop → rescan in one process."""

        started = self.start(understand, backup, confirm_phrase)
        session_id = started["session_id"]
        while True:
            batch = self.purge_batch(session_id)
            if on_batch is not None:
                on_batch(batch)
            if batch["done"]:
                break
        return self.rescan(session_id)

    # ------------------------------------------------------------------
    @staticmethod
    def _step(session: JobSession | None, event: Event) -> JobSession:
        updated = transition(session, event)
        if updated is None:
            raise InvalidTransition(f"{type(event).__name__} cannot end a session")
        return updated

    def _apply(self, session: JobSession, event: Event) -> JobSession:
        updated = self._step(session, event)
        with self.storage.transaction(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE job_sessions SET phase = ?, deleted_rows_count = ?, updated_at = ?,
                    last_result = ?
                WHERE session_id = ?
                """,
                (
                    updated.phase.value,
                    updated.deleted_rows_count,
                    updated.updated_at.isoformat(),
                    json.dumps(updated.last_result) if updated.last_result is not None else None,
                    updated.session_id,
                ),
            )
            if cur.rowcount == 0:
                # Cancelled by another caller between read and write.
                raise SessionNotFound(f"Reset session {session.session_id!r} was cancelled")
        return updated


__all__ = ["GATE_BACKUP", "GATE_PHRASE", "GATE_UNDERSTAND", "JobSessionManager"]
