"""Source registry: configured sources plus their enabled/circuit state."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import structlog

from ..config import CircuitBreakerConfig, SourceConfig
from ..errors import UnknownSource
from ..records import AttemptOutcome, CircuitState, SourceRecord
from .storage import SQLiteManager


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_source(row: sqlite3.Row) -> SourceRecord:
    payload = json.loads(row["config"] or "{}")
    if payload:
        config = SourceConfig.model_validate(payload)
    else:
        config = SourceConfig(
            domain=row["domain"],
            name=row["name"],
            base_url=row["base_url"],
            adapter_type=row["adapter_type"],
            enabled=bool(row["enabled"]),
        )
    return SourceRecord(
        id=row["id"],
        domain=row["domain"],
        name=row["name"],
        base_url=row["base_url"],
        adapter_type=row["adapter_type"],
        enabled=bool(row["enabled"]),
        consecutive_failure_count=row["consecutive_failures"],
        circuit_state=CircuitState(row["circuit_state"]),
        last_success_at=_parse_ts(row["last_success_at"]),
        last_failure_at=_parse_ts(row["last_failure_at"]),
        last_failure_reason=row["last_failure_reason"],
        total_collected=row["total_collected"],
        config=config,
    )


class SourceRegistry:
    """Persist sources and apply the circuit breaker policy after each attempt."""

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        circuit: CircuitBreakerConfig | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.circuit = circuit or CircuitBreakerConfig()
        self.logger = logger or structlog.get_logger("obituary_collector.registry")
        self.manager.connect(db_path)

    # ------------------------------------------------------------------
    # Configuration sync
    # ------------------------------------------------------------------
    def sync(self, configs: Iterable[SourceConfig]) -> list[SourceRecord]:
        """Upsert ``configs`` by domain, keeping each source's runtime state."""

        with self.manager.transaction(self.db_path) as conn:
            for config in configs:
                conn.execute(
                    """
                    INSERT INTO sources(domain, name, base_url, adapter_type, enabled, config)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(domain) DO UPDATE SET
                        name = excluded.name,
                        base_url = excluded.base_url,
                        adapter_type = excluded.adapter_type,
                        enabled = excluded.enabled,
                        config = excluded.config
                    """,
                    (
                        config.domain,
                        config.name,
                        config.base_url,
                        config.adapter_type,
                        int(config.enabled),
                        config.model_dump_json(exclude_none=True),
                    ),
                )
        return self.list_sources()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_sources(self) -> list[SourceRecord]:
        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM sources ORDER BY id ASC").fetchall()
        return [_row_to_source(row) for row in rows]

    def enabled_sources(self) -> list[SourceRecord]:
        """Enabled sources in registry order (id ascending), circuit-open ones included."""

        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM sources WHERE enabled = 1 ORDER BY id ASC"
            ).fetchall()
        return [_row_to_source(row) for row in rows]

    def get(self, source_id: int) -> SourceRecord:
        with self.manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        if row is None:
            raise UnknownSource(f"No source with id {source_id}")
        return _row_to_source(row)

    def get_by_domain(self, domain: str) -> SourceRecord:
        with self.manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM sources WHERE domain = ?", (domain,)).fetchone()
        if row is None:
            raise UnknownSource(f"No source with domain {domain!r}")
        return _row_to_source(row)

    def stats(self) -> dict[str, int]:
        sources = self.list_sources()
        enabled = sum(1 for source in sources if source.enabled)
        return {
            "total": len(sources),
            "enabled": enabled,
            "disabled": len(sources) - enabled,
            "circuit_open": sum(1 for source in sources if source.circuit_open),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def set_enabled(self, domain: str, enabled: bool) -> SourceRecord:
        source = self.get_by_domain(domain)
        config = source.config.model_copy(update={"enabled": enabled}) if source.config else None
        with self.manager.transaction(self.db_path) as conn:
            conn.execute(
                "UPDATE sources SET enabled = ?, config = ? WHERE id = ?",
                (
                    int(enabled),
                    config.model_dump_json(exclude_none=True) if config else "{}",
                    source.id,
                ),
            )
        self.logger.info("source_toggled", source=domain, enabled=enabled)
        return self.get(source.id)

    def reset_circuit(self, domain: str) -> SourceRecord:
        source = self.get_by_domain(domain)
        with self.manager.transaction(self.db_path) as conn:
            conn.execute(
                "UPDATE sources SET consecutive_failures = 0, circuit_state = ? WHERE id = ?",
                (CircuitState.CLOSED.value, source.id),
            )
        self.logger.info("circuit_reset", source=domain)
        return self.get(source.id)

    def record_attempt(self, source_id: int, outcome: AttemptOutcome) -> SourceRecord:
        """Apply one attempt outcome: success closes the circuit, failures accumulate."""

        source = self.get(source_id)
        now = datetime.now(timezone.utc).isoformat()
        with self.manager.transaction(self.db_path) as conn:
            if outcome.success:
                conn.execute(
                    """
                    UPDATE sources SET consecutive_failures = 0, circuit_state = ?,
                        last_success_at = ?, total_collected = total_collected + ?
                    WHERE id = ?
                    """,
                    (CircuitState.CLOSED.value, now, outcome.added, source_id),
                )
            else:
                was_open = conn.execute(
                    "SELECT circuit_state FROM sources WHERE id = ?", (source_id,)
                ).fetchone()["circuit_state"] == CircuitState.OPEN.value
                conn.execute(
                    """
                    UPDATE sources SET consecutive_failures = consecutive_failures + 1,
                        circuit_state = CASE WHEN consecutive_failures + 1 >= ? THEN ?
                            ELSE circuit_state END,
                        last_failure_at = ?, last_failure_reason = ?
                    WHERE id = ?
                    """,
                    (
                        self.circuit.failure_threshold,
                        CircuitState.OPEN.value,
                        now,
                        outcome.reason or "",
                        source_id,
                    ),
                )
                row = conn.execute(
                    "SELECT consecutive_failures, circuit_state FROM sources WHERE id = ?",
                    (source_id,),
                ).fetchone()
                if row["circuit_state"] == CircuitState.OPEN.value and not was_open:
                    self.logger.warning(
                        "circuit_opened", source=source.domain, failures=row["consecutive_failures"]
                    )
        return self.get(source_id)


__all__ = ["SourceRegistry"]
