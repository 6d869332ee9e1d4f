"""Reset & Rescan session state and its transition function.

The persisted ``phase`` is the program counter of a job that advances one
client request at a time, so every step is expressed as
``transition(session, event) -> session``. ``None`` stands for "no active
session"; storage and side effects live in :mod:`obituary_collector.jobs.manager`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from ..errors import InvalidTransition


class Phase(str, Enum):
    PURGE = "purge"
    RESCAN = "rescan"
    DONE = "done"


@dataclass(slots=True)
class JobSession:
    session_id: str
    phase: Phase
    total_rows_at_start: int
    created_at: datetime
    updated_at: datetime
    deleted_rows_count: int = 0
    held_by: str = ""
    last_result: dict[str, Any] | None = None

    @property
    def active(self) -> bool:
        return self.phase is not Phase.DONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "total_rows_at_start": self.total_rows_at_start,
            "deleted_rows_count": self.deleted_rows_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "held_by": self.held_by,
            "last_result": self.last_result,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Start:
    session_id: str
    total_rows: int
    held_by: str = ""
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class BatchPurged:
    deleted: int
    remaining: int
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class RescanBegun:
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class RescanProgress:
    """One client-paced source slice finished; ``result`` is the running total."""

    result: dict[str, Any]
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class RescanFinished:
    result: dict[str, Any]
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class Cancel:
    at: datetime = field(default_factory=_now)


Event = Union[Start, BatchPurged, RescanBegun, RescanProgress, RescanFinished, Cancel]


# ----------------------------------------------------------------------
# Transition function
# ----------------------------------------------------------------------
def transition(session: JobSession | None, event: Event) -> JobSession | None:
    """Return the session after ``event``; raise InvalidTransition when not allowed."""

    if isinstance(event, Start):
        if session is not None and session.active:
            raise InvalidTransition(f"session {session.session_id} is still {session.phase.value}")
        return JobSession(
            session_id=event.session_id,
            phase=Phase.PURGE,
            total_rows_at_start=event.total_rows,
            created_at=event.at,
            updated_at=event.at,
            held_by=event.held_by,
        )

    if session is None or not session.active:
        raise InvalidTransition(f"{type(event).__name__} requires an active session")

    if isinstance(event, Cancel):
        return None

    if isinstance(event, BatchPurged):
        if session.phase is not Phase.PURGE:
            raise InvalidTransition("purge already finished")
        return replace(
            session,
            deleted_rows_count=session.deleted_rows_count + event.deleted,
            phase=Phase.RESCAN if event.remaining == 0 else Phase.PURGE,
            updated_at=event.at,
        )

    if session.phase is Phase.PURGE:
        raise InvalidTransition("purge is still in progress; finish it before rescanning")

    if isinstance(event, RescanBegun):
        return replace(session, updated_at=event.at)
    if isinstance(event, RescanProgress):
        return replace(session, last_result=event.result, updated_at=event.at)
    if isinstance(event, RescanFinished):
        return replace(session, phase=Phase.DONE, last_result=event.result, updated_at=event.at)

    raise InvalidTransition(f"unknown event {event!r}")


__all__ = [
    "BatchPurged",
    "Cancel",
    "Event",
    "JobSession",
    "Phase",
    "RescanBegun",
    "RescanFinished",
    "RescanProgress",
    "Start",
    "transition",
]
