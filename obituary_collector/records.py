"""Canonical records flowing between the pipeline stages and the stores."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import SourceConfig


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(slots=True)
class Obituary:
    """Normalized memorial notice; ``id`` and ``created_at`` are set on insert."""

    name: str
    date_of_death: date
    date_of_birth: date | None = None
    age: int | None = None
    funeral_home: str = ""
    location: str = ""
    city_normalized: str = ""
    image_url: str | None = None
    description: str = ""
    source_url: str = ""
    source_domain: str = ""
    source_type: str = ""
    id: int | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("date_of_death", "date_of_birth", "created_at"):
            value = payload[key]
            if value is not None:
                payload[key] = value.isoformat()
        return payload


@dataclass(slots=True)
class SourceRecord:
    """Registry row: configured source plus its runtime circuit state."""

    id: int
    domain: str
    name: str
    base_url: str
    adapter_type: str
    enabled: bool = True
    consecutive_failure_count: int = 0
    circuit_state: CircuitState = CircuitState.CLOSED
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None
    total_collected: int = 0
    config: SourceConfig | None = None

    @property
    def circuit_open(self) -> bool:
        return self.circuit_state is CircuitState.OPEN

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "name": self.name,
            "enabled": self.enabled,
        }


@dataclass(slots=True)
class AttemptOutcome:
    """Result of one collection attempt against a source."""

    success: bool
    added: int = 0
    reason: str | None = None

    @classmethod
    def ok(cls, added: int = 0) -> "AttemptOutcome":
        return cls(success=True, added=added)

    @classmethod
    def failed(cls, reason: str) -> "AttemptOutcome":
        return cls(success=False, reason=reason)


@dataclass(slots=True)
class RawRecord:
    """Unvalidated field set produced by an adapter for one listing card."""

    fields: dict[str, Any] = field(default_factory=dict)
    listing_url: str = ""

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)


__all__ = ["AttemptOutcome", "CircuitState", "Obituary", "RawRecord", "SourceRecord"]
