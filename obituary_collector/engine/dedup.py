"""Two-tier duplicate detection against the corpus and the current run."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import TYPE_CHECKING, Iterable, Iterator

from ..records import Obituary

if TYPE_CHECKING:
    from ..infra.corpus import CorpusStore

EXACT = "exact"
FUZZY = "fuzzy"


def normalize_name(name: str) -> str:
    """Lower-case ``name`` and collapse internal whitespace."""

    return " ".join(name.split()).lower()


def _name_tokens(name: str) -> list[str]:
    tokens = (token.strip(".,;") for token in name.lower().split())
    return [token for token in tokens if token]


def fingerprint_exact(record: Obituary) -> tuple[str, date]:
    return normalize_name(record.name), record.date_of_death


def fingerprint_fuzzy(record: Obituary) -> tuple[str, str, date] | None:
    """Return (last name, first initial, date of death), or None for single-token names."""

    tokens = _name_tokens(record.name)
    if len(tokens) < 2:
        return None
    return tokens[-1], tokens[0][0], record.date_of_death


@dataclass(slots=True)
class DedupMatch:
    tier: str
    existing: Obituary | None = None


def match(candidate: Obituary, existing: Obituary) -> DedupMatch | None:
    if fingerprint_exact(candidate) == fingerprint_exact(existing):
        return DedupMatch(EXACT, existing)
    fuzzy = fingerprint_fuzzy(candidate)
    if fuzzy is not None and fuzzy == fingerprint_fuzzy(existing):
        return DedupMatch(FUZZY, existing)
    return None


def find_duplicate(candidate: Obituary, window: Iterable[Obituary]) -> DedupMatch | None:
    """Return the first exact match in ``window``, else the first fuzzy one."""

    fuzzy_hit: DedupMatch | None = None
    for existing in window:
        hit = match(candidate, existing)
        if hit is None:
            continue
        if hit.tier == EXACT:
            return hit
        if fuzzy_hit is None:
            fuzzy_hit = hit
    return fuzzy_hit


def is_duplicate(candidate: Obituary, window: Iterable[Obituary]) -> bool:
    return find_duplicate(candidate, window) is not None


class RunWindow:
    """Records accepted during the current run, indexed by date of death."""

    def __init__(self) -> None:
        self._by_date: dict[date, list[Obituary]] = defaultdict(list)
        self._size = 0

    def add(self, record: Obituary) -> None:
        self._by_date[record.date_of_death].append(record)
        self._size += 1

    def candidates_for(self, date_of_death: date) -> list[Obituary]:
        return list(self._by_date.get(date_of_death, ()))

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[Obituary]:
        for records in self._by_date.values():
            yield from records


class Deduplicator:
    """Check a candidate against run window and corpus, then insert it if novel."""

    def __init__(self, corpus: "CorpusStore") -> None:
        self.corpus = corpus
        self._lock = Lock()

    def check(self, candidate: Obituary, run_window: RunWindow | None = None) -> DedupMatch | None:
        if run_window is not None:
            hit = find_duplicate(candidate, run_window.candidates_for(candidate.date_of_death))
            if hit is not None:
                return hit
        return find_duplicate(candidate, self.corpus.query_by_fingerprint(candidate.date_of_death))

    def check_and_insert(
        self, candidate: Obituary, run_window: RunWindow | None = None
    ) -> tuple[Obituary | None, DedupMatch | None]:
        """Return ``(stored, None)`` for a novel record or ``(None, match)`` for a duplicate."""

        with self._lock:
            hit = self.check(candidate, run_window)
            if hit is not None:
                return None, hit
            stored = self.corpus.insert(candidate)
            if stored is None:
                # Another writer landed the same exact key between check and insert.
                return None, DedupMatch(EXACT)
            if run_window is not None:
                run_window.add(stored)
            return stored, None


__all__ = [
    "DedupMatch",
    "Deduplicator",
    "EXACT",
    "FUZZY",
    "RunWindow",
    "find_duplicate",
    "fingerprint_exact",
    "fingerprint_fuzzy",
    "is_duplicate",
    "match",
    "normalize_name",
]
