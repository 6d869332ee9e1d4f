"""Engine components: fetch → normalize → dedup."""

from .dedup import DedupMatch, Deduplicator, RunWindow, find_duplicate, is_duplicate
from .fetcher import FetchDiagnostics, FetchResponse, Fetcher
from .normalizer import Normalizer

__all__ = [
    "DedupMatch",
    "Deduplicator",
    "FetchDiagnostics",
    "FetchResponse",
    "Fetcher",
    "Normalizer",
    "RunWindow",
    "find_duplicate",
    "is_duplicate",
]
