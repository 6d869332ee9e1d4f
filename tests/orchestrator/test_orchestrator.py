from __future__ import annotations

import httpx
import pytest

from obituary_collector.adapters import SourceAdapter, get_adapter
from obituary_collector.config import GlobalConfig
from obituary_collector.orchestrator import (
    LAST_COLLECTION_KEY,
    CollectorOrchestrator,
    CollectorResult,
    SourceDiagnostics,
)
from obituary_collector.records import AttemptOutcome

JANE = ("Jane Doe", "/obituaries/jane-doe", "January 1, 1940 - March 5, 2024")
JOHN = ("John Roe", "/obituaries/john-roe", "February 2, 1935 - March 4, 2024")


@pytest.fixture
def three_sources(registry, sample_source_config):
    return registry.sync(
        [
            sample_source_config(domain=f"{host}.example", base_url=f"https://{host}.example/obits")
            for host in ("a", "b", "c")
        ]
    )


@pytest.fixture
def site(listing_html):
    """Per-host responses plus a log of requested hosts."""

    pages: dict[str, tuple[int, str]] = {
        "a.example": (200, listing_html(JANE, JOHN)),
        "b.example": (503, "unavailable"),
        "c.example": (200, listing_html(JANE)),
    }
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.host)
        status, body = pages[request.url.host]
        return httpx.Response(status, text=body)

    return pages, requested, handler


def _orchestrator(registry, corpus, kv, fetcher, **kwargs) -> CollectorOrchestrator:
    return CollectorOrchestrator(GlobalConfig(), registry, corpus, kv=kv, fetcher=fetcher, **kwargs)


def test_one_failing_source_does_not_abort_the_run(
    registry, corpus, kv, three_sources, site, mock_fetcher
) -> None:
    _pages, requested, handler = site
    orchestrator = _orchestrator(registry, corpus, kv, mock_fetcher(handler, max_retries=2))

    result = orchestrator.run()

    assert result.found == 3
    assert result.added == 2
    assert result.skipped == 1
    assert list(result.errors) == ["b.example"]
    assert "exhausted retries" in result.errors["b.example"]
    assert result.status == "partial"
    assert list(result.per_source) == ["a.example", "b.example", "c.example"]
    assert result.per_source["b.example"].http_status == 503
    assert result.per_source["c.example"].skipped == 1
    assert requested.count("b.example") == 3
    assert corpus.count() == 2

    assert registry.get_by_domain("a.example").total_collected == 2
    assert registry.get_by_domain("b.example").consecutive_failure_count == 1
    assert registry.get_by_domain("c.example").last_success_at is not None
    assert orchestrator.last_collection() == result.completed_at.isoformat()


def test_fuzzy_cross_source_duplicate_and_timeout(
    registry, corpus, kv, three_sources, listing_html, mock_fetcher
) -> None:
    pages = {
        "a.example": listing_html(JANE, JOHN),
        "c.example": listing_html(("J. Doe", "/obituaries/j-doe", "March 5, 2024")),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "b.example":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, text=pages[request.url.host])

    result = _orchestrator(registry, corpus, kv, mock_fetcher(handler, max_retries=1)).run()

    assert (result.found, result.added, result.skipped) == (3, 2, 1)
    assert list(result.errors) == ["b.example"]
    assert "ReadTimeout" in result.errors["b.example"]
    assert result.per_source["b.example"].http_status is None
    assert result.per_source["c.example"].skipped == 1
    assert sorted(o["name"] for o in corpus.iter_all()) == ["Jane Doe", "John Roe"]


def test_second_run_adds_nothing(registry, corpus, kv, three_sources, site, mock_fetcher) -> None:
    _pages, _requested, handler = site
    orchestrator = _orchestrator(registry, corpus, kv, mock_fetcher(handler, max_retries=0))

    first = orchestrator.run()
    second = orchestrator.run()

    assert first.added == 2
    assert second.added == 0
    assert second.skipped == 3
    assert corpus.count() == 2


def test_malformed_card_skips_only_that_record(
    registry, corpus, kv, sample_source_config, listing_html, mock_fetcher
) -> None:
    source = registry.sync([sample_source_config()])[0]
    page = listing_html(("Jane Doe", "/obituaries/jane-doe", "0000"), JOHN)

    result = _orchestrator(
        registry, corpus, kv, mock_fetcher(lambda r: httpx.Response(200, text=page))
    ).run()

    assert result.errors == {}
    assert (result.found, result.added, result.skipped) == (2, 1, 1)
    assert registry.get(source.id).consecutive_failure_count == 0


def test_parallel_workers_give_the_same_totals(
    registry, corpus, kv, three_sources, site, mock_fetcher
) -> None:
    _pages, _requested, handler = site
    orchestrator = _orchestrator(registry, corpus, kv, mock_fetcher(handler, max_retries=0))

    result = orchestrator.run(workers=2)

    assert (result.found, result.added, result.skipped) == (3, 2, 1)
    assert list(result.per_source) == ["a.example", "b.example", "c.example"]


def test_circuit_open_sources_are_skipped(
    registry, corpus, kv, three_sources, site, mock_fetcher
) -> None:
    _pages, requested, handler = site
    for _ in range(5):
        registry.record_attempt(three_sources[1].id, AttemptOutcome.failed("HTTP 503"))
    orchestrator = _orchestrator(registry, corpus, kv, mock_fetcher(handler))

    result = orchestrator.run()

    assert "b.example" not in requested
    assert result.circuit_open == ["b.example"]
    assert result.errors == {}
    assert result.sources_processed == 2
    assert result.sources_skipped == 1
    assert result.status == "ok"
    assert result.per_source["b.example"].status == "circuit-open"


def test_unparseable_listing_is_a_source_failure(
    registry, corpus, kv, three_sources, site, mock_fetcher
) -> None:
    pages, _requested, handler = site
    pages["b.example"] = (200, "<html><body><p>Site redesigned</p></body></html>")

    result = _orchestrator(registry, corpus, kv, mock_fetcher(handler)).run()

    assert "no obituary cards" in result.errors["b.example"]
    assert result.per_source["b.example"].http_status == 200
    assert registry.get_by_domain("b.example").consecutive_failure_count == 1


def test_unexpected_adapter_crash_is_isolated(
    registry, corpus, kv, three_sources, site, mock_fetcher
) -> None:
    class ExplodingAdapter(SourceAdapter):
        adapter_type = "exploding"

        def fetch_listing(self, source, fetcher, budget=None, max_age_days=7):
            raise RuntimeError("selector exploded")

    def factory(adapter_type: str) -> SourceAdapter:
        return ExplodingAdapter() if adapter_type == "exploding" else get_adapter(adapter_type)

    registry.sync(
        [
            source.config.model_copy(update={"adapter_type": "exploding"})
            if source.domain == "c.example"
            else source.config
            for source in three_sources
        ]
    )
    _pages, _requested, handler = site
    orchestrator = _orchestrator(
        registry, corpus, kv, mock_fetcher(handler, max_retries=0), adapter_factory=factory
    )

    result = orchestrator.run()

    assert result.errors["c.example"] == "RuntimeError: selector exploded"
    assert result.per_source["a.example"].added == 2
    assert result.status == "partial"


def test_unknown_adapter_type_is_reported(registry, corpus, kv, sample_source_config, mock_fetcher) -> None:
    registry.sync([sample_source_config(adapter_type="carrier_pigeon")])

    result = _orchestrator(registry, corpus, kv, mock_fetcher(lambda r: httpx.Response(200))).run()

    assert "carrier_pigeon" in result.errors["funeral.example"]
    assert result.per_source["funeral.example"].status == "no-adapter"
    assert result.sources_skipped == 1
    assert result.status == "failed"


def test_invalid_records_count_as_skipped(
    registry, corpus, kv, sample_source_config, listing_html, mock_fetcher
) -> None:
    registry.sync([sample_source_config()])
    page = listing_html(JANE, ("Undated Person", "/obituaries/undated", "recently"))

    result = _orchestrator(
        registry, corpus, kv, mock_fetcher(lambda r: httpx.Response(200, text=page))
    ).run()

    assert (result.found, result.added, result.skipped) == (2, 1, 1)
    assert result.status == "ok"


def test_empty_registry_reports_empty(registry, corpus, kv, mock_fetcher) -> None:
    result = _orchestrator(registry, corpus, kv, mock_fetcher(lambda r: httpx.Response(200))).run()
    assert result.status == "empty"
    assert result.per_source == {}


def test_run_one_source_marks_collection_only_when_last(
    registry, corpus, kv, three_sources, site, mock_fetcher
) -> None:
    _pages, requested, handler = site
    orchestrator = _orchestrator(registry, corpus, kv, mock_fetcher(handler))

    first = orchestrator.run_one_source(three_sources[0].id)
    assert requested == ["a.example"]
    assert list(first.per_source) == ["a.example"]
    assert first.added == 2
    assert kv.get(LAST_COLLECTION_KEY) is None

    last = orchestrator.run_one_source(three_sources[2].id, is_last=True)
    assert last.skipped == 1
    assert kv.get(LAST_COLLECTION_KEY) == last.completed_at.isoformat()


# ----------------------------------------------------------------------
# CollectorResult
# ----------------------------------------------------------------------
def _diag(domain: str, status: str = "ok", **counts) -> SourceDiagnostics:
    diagnostics = SourceDiagnostics(source_id=1, domain=domain, **counts)
    if status != "ok":
        diagnostics.fail(f"{domain} broke", status=status)
    return diagnostics


def test_result_status() -> None:
    result = CollectorResult()
    assert result.status == "empty"
    result.add(_diag("a.example", found=1, added=1))
    assert result.status == "ok"
    result.add(_diag("b.example", status="failed"))
    assert result.status == "partial"

    failed = CollectorResult()
    failed.add(_diag("b.example", status="failed"))
    assert failed.status == "failed"


def test_merge_replaces_repeated_source_slice() -> None:
    running = CollectorResult()
    running.add(_diag("a.example", status="failed"))
    running.add(_diag("b.example", found=2, added=2))

    retry = CollectorResult()
    retry.add(_diag("a.example", found=3, added=1, skipped=2))
    running.merge(retry)

    assert running.errors == {}
    assert (running.found, running.added, running.skipped) == (5, 3, 2)
    assert running.sources_processed == 2
    assert running.status == "ok"


def test_result_survives_serialisation() -> None:
    result = CollectorResult()
    result.add(_diag("a.example", found=2, added=1, skipped=1))
    result.add(_diag("b.example", status="circuit-open"))
    result.add(_diag("c.example", status="failed"))

    restored = CollectorResult.from_dict(result.to_dict())

    assert restored.to_dict() == result.to_dict()
    assert restored.circuit_open == ["b.example"]
    assert restored.status == "partial"
