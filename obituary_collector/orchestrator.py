"""Collector orchestrator wiring fetch, adapters, normalization, dedup and the registry."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager, nullcontext
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from .adapters import ListingDiagnostics, SourceAdapter, SourceBudget, get_adapter
from .config import GlobalConfig, SourceConfig
from .engine import Deduplicator, Fetcher, Normalizer, RunWindow
from .engine.fetcher import FetchDiagnostics
from .errors import AdapterNotFound, FetchError, ParseError, ValidationError
from .infra import CorpusStore, KeyValueStore, SourceRegistry
from .logging_conf import configure_logging, source_logger
from .records import AttemptOutcome, SourceRecord

LAST_COLLECTION_KEY = "last_collection"

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_CIRCUIT_OPEN = "circuit-open"
STATUS_NO_ADAPTER = "no-adapter"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SourceDiagnostics:
    """Per-source breakdown reported with every run."""

    source_id: int
    domain: str
    name: str = ""
    found: int = 0
    added: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    http_status: int | None = None
    error_message: str | None = None
    final_url: str | None = None
    duration_ms: int = 0
    pages: int = 0
    status: str = STATUS_OK

    def apply_fetch(self, diagnostics: FetchDiagnostics | None) -> None:
        if diagnostics is None:
            return
        self.http_status = diagnostics.http_status
        self.final_url = diagnostics.final_url or diagnostics.url
        self.duration_ms += diagnostics.duration_ms

    def apply_listing(self, listing: ListingDiagnostics) -> None:
        first = listing.first
        if first is not None:
            self.http_status = first.http_status
            self.final_url = first.final_url or first.url
        self.duration_ms = listing.duration_ms
        self.pages = len(listing.pages)
        self.errors.extend(listing.page_errors)

    def fail(self, message: str, status: str = STATUS_FAILED) -> None:
        self.status = status
        self.error_message = message
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SourceDiagnostics":
        return cls(**payload)


@dataclass(slots=True)
class CollectorResult:
    """Aggregate of one collection run (or one client-paced slice of it)."""

    found: int = 0
    added: int = 0
    skipped: int = 0
    errors: dict[str, str] = field(default_factory=dict)
    per_source: dict[str, SourceDiagnostics] = field(default_factory=dict)
    sources_processed: int = 0
    sources_skipped: int = 0
    circuit_open: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def status(self) -> str:
        succeeded = sum(1 for diag in self.per_source.values() if diag.status == STATUS_OK)
        if not self.errors:
            return "ok" if succeeded else "empty"
        return "partial" if succeeded else "failed"

    def add(self, diagnostics: SourceDiagnostics) -> None:
        previous = self.per_source.get(diagnostics.domain)
        if previous is not None:
            self._retract(previous)
        self.per_source[diagnostics.domain] = diagnostics
        if diagnostics.status == STATUS_CIRCUIT_OPEN:
            self.circuit_open.append(diagnostics.domain)
            self.sources_skipped += 1
            return
        if diagnostics.status == STATUS_NO_ADAPTER:
            self.sources_skipped += 1
        else:
            self.sources_processed += 1
        self.found += diagnostics.found
        self.added += diagnostics.added
        self.skipped += diagnostics.skipped
        if diagnostics.status != STATUS_OK:
            self.errors[diagnostics.domain] = diagnostics.error_message or diagnostics.status

    def _retract(self, diagnostics: SourceDiagnostics) -> None:
        """Undo an earlier entry for the same source (a repeated slice replaces it)."""

        if diagnostics.status == STATUS_CIRCUIT_OPEN:
            self.circuit_open.remove(diagnostics.domain)
            self.sources_skipped -= 1
            return
        if diagnostics.status == STATUS_NO_ADAPTER:
            self.sources_skipped -= 1
        else:
            self.sources_processed -= 1
        self.found -= diagnostics.found
        self.added -= diagnostics.added
        self.skipped -= diagnostics.skipped
        self.errors.pop(diagnostics.domain, None)

    def merge(self, other: "CollectorResult") -> "CollectorResult":
        """Fold a later slice into this result; this result keeps its start time."""

        for diagnostics in other.per_source.values():
            self.add(diagnostics)
        self.completed_at = other.completed_at or self.completed_at
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "found": self.found,
            "added": self.added,
            "skipped": self.skipped,
            "errors": dict(self.errors),
            "per_source": {domain: diag.to_dict() for domain, diag in self.per_source.items()},
            "sources_processed": self.sources_processed,
            "sources_skipped": self.sources_skipped,
            "circuit_open": list(self.circuit_open),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CollectorResult":
        result = cls(started_at=datetime.fromisoformat(payload["started_at"]))
        for diagnostics in payload.get("per_source", {}).values():
            result.add(SourceDiagnostics.from_dict(diagnostics))
        completed = payload.get("completed_at")
        result.completed_at = datetime.fromisoformat(completed) if completed else None
        return result


class CollectorOrchestrator:
    """Visit sources in registry order; one source's failure never aborts the run."""

    def __init__(
        self,
        global_config: GlobalConfig,
        registry: SourceRegistry,
        corpus: CorpusStore,
        kv: KeyValueStore | None = None,
        fetcher: Fetcher | None = None,
        normalizer: Normalizer | None = None,
        adapter_factory: Callable[[str], SourceAdapter] = get_adapter,
    ) -> None:
        self.global_config = global_config
        self.registry = registry
        self.corpus = corpus
        self.kv = kv
        self.fetcher = fetcher
        self.normalizer = normalizer or Normalizer(global_config.normalizer)
        self.deduplicator = Deduplicator(corpus)
        self.adapter_factory = adapter_factory
        self.logger = configure_logging().bind(component="orchestrator")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def run(
        self,
        sources: Iterable[SourceRecord] | None = None,
        budget: SourceBudget | None = None,
        workers: int | None = None,
    ) -> CollectorResult:
        """Run-all mode: every enabled source (or ``sources``) in one call."""

        targets = list(self.registry.enabled_sources() if sources is None else sources)
        workers = workers or self.global_config.collector_workers
        result = CollectorResult()
        run_window = RunWindow()
        self.logger.info("collection_started", sources=len(targets), workers=workers)

        with self._fetcher() as fetcher:
            if workers > 1 and len(targets) > 1:
                with ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix="collector"
                ) as executor:
                    futures = [
                        executor.submit(self._collect_source, source, fetcher, budget, run_window)
                        for source in targets
                    ]
                    # Gather in submission order so per_source follows registry order.
                    for future in futures:
                        result.add(future.result())
            else:
                for source in targets:
                    result.add(self._collect_source(source, fetcher, budget, run_window))

        self._finish(result, mark_collection=True)
        return result

    def run_one_source(
        self,
        source_id: int,
        is_last: bool = False,
        budget: SourceBudget | None = None,
    ) -> CollectorResult:
        """Client-paced mode: one source per call; ``is_last`` closes the pass."""

        source = self.registry.get(source_id)
        result = CollectorResult()
        with self._fetcher() as fetcher:
            result.add(self._collect_source(source, fetcher, budget, RunWindow()))
        self._finish(result, mark_collection=is_last)
        return result

    def last_collection(self) -> str | None:
        return self.kv.get(LAST_COLLECTION_KEY) if self.kv else None

    # ------------------------------------------------------------------
    # Per-source pipeline
    # ------------------------------------------------------------------
    def _collect_source(
        self,
        source: SourceRecord,
        fetcher: Fetcher,
        budget: SourceBudget | None,
        run_window: RunWindow,
    ) -> SourceDiagnostics:
        diagnostics = SourceDiagnostics(source_id=source.id, domain=source.domain, name=source.name)
        log = source_logger(source.domain)

        if source.circuit_open:
            diagnostics.status = STATUS_CIRCUIT_OPEN
            diagnostics.error_message = STATUS_CIRCUIT_OPEN
            log.warning("source_skipped_circuit_open", failures=source.consecutive_failure_count)
            return diagnostics

        try:
            adapter = self.adapter_factory(source.adapter_type)
        except AdapterNotFound as exc:
            diagnostics.fail(str(exc), status=STATUS_NO_ADAPTER)
            self.registry.record_attempt(source.id, AttemptOutcome.failed(str(exc)))
            log.error("source_no_adapter", adapter_type=source.adapter_type)
            return diagnostics

        config = self._config_for(source)
        try:
            raws, listing = adapter.fetch_listing(
                config, fetcher, budget, max_age_days=self.global_config.max_age_days
            )
            diagnostics.apply_listing(listing)
            diagnostics.found = len(raws)
            for raw in raws:
                try:
                    candidate = self.normalizer.normalize(raw, config)
                except ValidationError as exc:
                    diagnostics.skipped += 1
                    log.debug("record_invalid", field=exc.field, reason=exc.reason)
                    continue
                stored, match = self.deduplicator.check_and_insert(candidate, run_window)
                if stored is None:
                    diagnostics.skipped += 1
                    log.debug(
                        "record_duplicate", name=candidate.name, tier=match.tier if match else None
                    )
                else:
                    diagnostics.added += 1
        except (FetchError, ParseError) as exc:
            diagnostics.apply_fetch(exc.diagnostics)
            diagnostics.pages = max(diagnostics.pages, 1)
            diagnostics.fail(str(exc))
        except Exception as exc:  # noqa: BLE001
            diagnostics.fail(f"{type(exc).__name__}: {exc}")
            log.exception("source_crashed")

        if diagnostics.status == STATUS_OK:
            self.registry.record_attempt(source.id, AttemptOutcome.ok(diagnostics.added))
            log.info(
                "source_completed",
                found=diagnostics.found,
                added=diagnostics.added,
                skipped=diagnostics.skipped,
                pages=diagnostics.pages,
            )
        else:
            self.registry.record_attempt(
                source.id, AttemptOutcome.failed(diagnostics.error_message or "failed")
            )
            log.error(
                "source_failed",
                error=diagnostics.error_message,
                http_status=diagnostics.http_status,
            )
        return diagnostics

    # ------------------------------------------------------------------
    @staticmethod
    def _config_for(source: SourceRecord) -> SourceConfig:
        if source.config is not None:
            return source.config
        return SourceConfig(
            domain=source.domain,
            name=source.name,
            base_url=source.base_url,
            adapter_type=source.adapter_type,
            enabled=source.enabled,
        )

    def _fetcher(self) -> AbstractContextManager[Fetcher]:
        if self.fetcher is not None:
            return nullcontext(self.fetcher)
        return Fetcher(self.global_config.fetch)

    def _finish(self, result: CollectorResult, mark_collection: bool) -> None:
        result.completed_at = _utcnow()
        if mark_collection and self.kv is not None:
            self.kv.set(LAST_COLLECTION_KEY, result.completed_at.isoformat())
        self.logger.info(
            "collection_completed",
            status=result.status,
            found=result.found,
            added=result.added,
            skipped=result.skipped,
            errors=len(result.errors),
            circuit_open=len(result.circuit_open),
        )


__all__ = [
    "CollectorOrchestrator",
    "CollectorResult",
    "LAST_COLLECTION_KEY",
    "SourceDiagnostics",
]
