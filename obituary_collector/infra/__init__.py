"""Infra layer: SQLite storage, corpus, source registry, backups."""

from .backup import export_backup
from .corpus import CorpusStore
from .registry import SourceRegistry
from .storage import KeyValueStore, SQLiteManager

__all__ = ["CorpusStore", "KeyValueStore", "SQLiteManager", "SourceRegistry", "export_backup"]
