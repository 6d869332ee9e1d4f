from __future__ import annotations

import httpx
import pytest

from obituary_collector.config import GlobalConfig, ResetConfig
from obituary_collector.errors import (
    AlreadyLocked,
    GateValidationFailed,
    InvalidTransition,
    SessionNotFound,
)
from obituary_collector.jobs import JobSessionManager, Phase
from obituary_collector.jobs.manager import GATE_BACKUP, GATE_PHRASE, GATE_UNDERSTAND
from obituary_collector.jobs.session import Cancel
from obituary_collector.orchestrator import CollectorOrchestrator

PHRASE = "DELETE ALL OBITUARIES"
CARDS = {
    "a.example": [("Jane Doe", "/obituaries/jane", "January 1, 1940 - March 5, 2024")],
    "b.example": [
        ("John Roe", "/obituaries/john", "February 2, 1935 - March 4, 2024"),
        ("Ann Lee", "/obituaries/ann", "May 3, 1950 - March 1, 2024"),
    ],
}


@pytest.fixture
def sources(registry, sample_source_config):
    return registry.sync(
        [
            sample_source_config(domain=domain, base_url=f"https://{domain}/obits")
            for domain in CARDS
        ]
    )


@pytest.fixture
def orchestrator(registry, corpus, kv, sources, listing_html, mock_fetcher):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=listing_html(*CARDS[request.url.host]))

    return CollectorOrchestrator(
        GlobalConfig(), registry, corpus, kv=kv, fetcher=mock_fetcher(handler)
    )


@pytest.fixture
def manager(storage, db_path, corpus, orchestrator) -> JobSessionManager:
    return JobSessionManager(
        storage,
        db_path,
        corpus,
        orchestrator,
        config=ResetConfig(batch_size=2),
        held_by="test-host:1",
    )


@pytest.fixture
def filled_corpus(corpus, make_obituary):
    for index in range(5):
        corpus.insert(make_obituary(name=f"Old Person{index}"))
    return corpus


@pytest.mark.parametrize(
    ("args", "gate"),
    [
        ((False, True, PHRASE), GATE_UNDERSTAND),
        ((True, False, PHRASE), GATE_BACKUP),
        ((True, True, "delete all obituaries"), GATE_PHRASE),
        ((True, True, ""), GATE_PHRASE),
    ],
)
def test_gates_must_all_pass(manager, filled_corpus, args, gate) -> None:
    with pytest.raises(GateValidationFailed) as excinfo:
        manager.start(*args)

    assert excinfo.value.gate == gate
    assert manager.status() is None
    assert filled_corpus.count() == 5


def test_start_reports_rows_and_batch_size(manager, filled_corpus) -> None:
    started = manager.start(True, True, f"  {PHRASE} ")

    assert started["total_rows"] == 5
    assert started["batch_size"] == 2
    session = manager.active()
    assert session.session_id == started["session_id"]
    assert session.phase is Phase.PURGE
    assert session.held_by == "test-host:1"


def test_second_start_hits_the_lock(manager, storage, db_path, corpus, orchestrator) -> None:
    first = manager.start(True, True, PHRASE)
    other = JobSessionManager(storage, db_path, corpus, orchestrator, held_by="other-host:2")

    with pytest.raises(AlreadyLocked) as excinfo:
        other.start(True, True, PHRASE)

    assert excinfo.value.session_id == first["session_id"]
    assert excinfo.value.held_by == "test-host:1"


def test_purge_in_batches(manager, filled_corpus) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]

    batches = [manager.purge_batch(session_id) for _ in range(3)]

    assert [b["deleted_this_batch"] for b in batches] == [2, 2, 1]
    assert [b["total_deleted"] for b in batches] == [2, 4, 5]
    assert [b["remaining"] for b in batches] == [3, 1, 0]
    assert [b["done"] for b in batches] == [False, False, True]
    assert manager.active().phase is Phase.RESCAN
    assert filled_corpus.count() == 0

    again = manager.purge_batch(session_id)
    assert again == {"deleted_this_batch": 0, "total_deleted": 5, "remaining": 0, "done": True}


def test_overlapping_purge_calls_count_every_row(manager, filled_corpus, monkeypatch) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    real_delete = filled_corpus.delete_batch_in
    landed: list[bool] = []
    overlapped: list[dict] = []

    def delete_with_retry_landing(conn, limit):
        # A retried client request arrives while the first batch is in flight.
        if not landed:
            landed.append(True)
            overlapped.append(manager.purge_batch(session_id))
        return real_delete(conn, limit)

    monkeypatch.setattr(filled_corpus, "delete_batch_in", delete_with_retry_landing)

    first = manager.purge_batch(session_id)
    last = first
    while not last["done"]:
        last = manager.purge_batch(session_id)

    assert overlapped[0]["total_deleted"] == 2
    assert first["total_deleted"] == 4
    assert last["total_deleted"] == 5
    assert manager.active().deleted_rows_count == 5
    assert filled_corpus.count() == 0


def test_rescan_while_purging_is_rejected(manager, filled_corpus) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    manager.purge_batch(session_id)

    with pytest.raises(InvalidTransition):
        manager.rescan(session_id)
    assert manager.active().phase is Phase.PURGE


def test_step_rejects_events_that_end_the_session(manager, filled_corpus) -> None:
    manager.start(True, True, PHRASE)

    with pytest.raises(InvalidTransition, match="cannot end a session"):
        manager._step(manager.active(), Cancel())



def test_rescan_repopulates_and_finishes(manager, filled_corpus) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    while not manager.purge_batch(session_id)["done"]:
        pass

    result = manager.rescan(session_id)

    assert result.added == 3
    assert result.status == "ok"
    assert filled_corpus.count() == 3
    assert manager.active() is None
    finished = manager.status()
    assert finished.phase is Phase.DONE
    assert finished.deleted_rows_count == 5
    assert finished.last_result["added"] == 3

    # A finished session no longer holds the lock.
    assert manager.start(True, True, PHRASE)["total_rows"] == 3


def test_client_paced_rescan_merges_slices(manager, sources) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    manager.purge_batch(session_id)

    first = manager.rescan_source(session_id, sources[0].id, is_last=False)
    assert first.added == 1
    assert manager.active().phase is Phase.RESCAN
    assert manager.active().last_result["added"] == 1

    final = manager.rescan_source(session_id, sources[1].id, is_last=True)
    assert final.added == 3
    assert list(final.per_source) == ["a.example", "b.example"]
    assert manager.active() is None
    assert manager.status().last_result["added"] == 3


def test_cancel_releases_lock_without_restoring(manager, filled_corpus) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    manager.purge_batch(session_id)

    assert manager.cancel(session_id) == {"ok": True}
    assert manager.active() is None
    assert filled_corpus.count() == 3
    with pytest.raises(SessionNotFound):
        manager.purge_batch(session_id)

    assert manager.start(True, True, PHRASE)["total_rows"] == 3


def test_unknown_session_id(manager) -> None:
    manager.start(True, True, PHRASE)
    with pytest.raises(SessionNotFound):
        manager.purge_batch("not-the-session")
    with pytest.raises(SessionNotFound):
        manager.cancel("not-the-session")


def test_resume_continues_from_persisted_phase(
    storage, db_path, corpus, orchestrator, manager, filled_corpus
) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    manager.purge_batch(session_id)

    # A new process picks the job up from the database.
    restarted = JobSessionManager(
        storage, db_path, corpus, orchestrator, config=ResetConfig(batch_size=2)
    )
    purged = restarted.resume(session_id)
    assert purged["phase"] == "purge"
    assert purged["purge"]["done"] is True
    assert purged["purge"]["total_deleted"] == 5

    rescanned = restarted.resume(session_id)
    assert rescanned["phase"] == "rescan"
    assert rescanned["result"]["added"] == 3
    assert restarted.active() is None


def test_run_to_completion(manager, filled_corpus) -> None:
    batches: list[dict] = []

    result = manager.run_to_completion(True, True, PHRASE, on_batch=batches.append)

    assert [b["deleted_this_batch"] for b in batches] == [2, 2, 1]
    assert result.added == 3
    assert manager.status().phase is Phase.DONE


def test_session_operation_aliases(manager, filled_corpus) -> None:
    started = manager.start_session(True, True, PHRASE)

    assert manager.cancel_session(started["session_id"]) == {"ok": True}
    assert manager.active() is None


def test_resume_after_interrupted_rescan_adds_no_duplicates(
    storage, db_path, corpus, orchestrator, manager, filled_corpus
) -> None:
    session_id = manager.start(True, True, PHRASE)["session_id"]
    while not manager.purge_batch(session_id)["done"]:
        pass
    # The first rescan stored every record, then the process died before finishing.
    assert orchestrator.run().added == 3
    assert manager.active().phase is Phase.RESCAN

    restarted = JobSessionManager(
        storage, db_path, corpus, orchestrator, config=ResetConfig(batch_size=2)
    )
    resumed = restarted.resume(session_id)

    assert resumed["phase"] == "rescan"
    assert resumed["result"]["added"] == 0
    assert resumed["result"]["skipped"] == 3
    assert corpus.count() == 3
    assert restarted.status().phase is Phase.DONE
