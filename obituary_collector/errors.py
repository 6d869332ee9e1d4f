"""Exception taxonomy shared by the collection pipeline and reset workflow."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine.fetcher import FetchDiagnostics


class CollectorError(Exception):
    """Base class for every error raised by obituary_collector."""


class FetchError(CollectorError):
    """A listing could not be fetched; carries the attempt diagnostics."""

    def __init__(self, message: str, diagnostics: "FetchDiagnostics") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class FetchTransportError(FetchError):
    """DNS failure, timeout or refused connection."""


class FetchHttpError(FetchError):
    """Remote answered with a 4xx/5xx status."""

    @property
    def status_code(self) -> int | None:
        return self.diagnostics.http_status


class ParseError(CollectorError):
    """Adapter found no records on a page where some were expected."""

    def __init__(self, message: str, diagnostics: "FetchDiagnostics | None" = None) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class ValidationError(CollectorError):
    """Normalizer rejected a raw record."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class LockConflict(CollectorError):
    """A reset session is already active."""

    def __init__(self, session_id: str, held_by: str, created_at: str) -> None:
        super().__init__(
            f"A reset is already in progress (session {session_id}, held by {held_by} "
            f"since {created_at}). Cancel it first."
        )
        self.session_id = session_id
        self.held_by = held_by
        self.created_at = created_at


AlreadyLocked = LockConflict


class GateValidationFailed(CollectorError):
    """A confirmation gate for a destructive operation was not satisfied."""

    def __init__(self, gate: str, message: str) -> None:
        super().__init__(message)
        self.gate = gate


class SessionNotFound(CollectorError):
    """No active reset session matches the supplied id."""


class InvalidTransition(CollectorError):
    """Operation is not allowed in the session's current phase."""


class UnknownSource(CollectorError):
    """No registered source carries the requested id or domain."""


class AdapterNotFound(CollectorError):
    """No adapter is registered for a source's adapter type."""


__all__ = [
    "AdapterNotFound",
    "AlreadyLocked",
    "CollectorError",
    "FetchError",
    "FetchHttpError",
    "FetchTransportError",
    "GateValidationFailed",
    "InvalidTransition",
    "LockConflict",
    "ParseError",
    "SessionNotFound",
    "UnknownSource",
    "ValidationError",
]
