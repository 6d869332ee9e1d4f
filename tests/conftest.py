"""Shared fixtures: isolated collector home, SQLite stores and record builders."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest

from obituary_collector.config import (
    ConfigLocator,
    ConfigRepository,
    FetchPolicy,
    SourceConfig,
)
from obituary_collector.engine import Fetcher
from obituary_collector.infra import CorpusStore, KeyValueStore, SQLiteManager, SourceRegistry
from obituary_collector.records import Obituary


@pytest.fixture(autouse=True)
def collector_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("OBITUARY_COLLECTOR_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "obituaries.db"


@pytest.fixture
def corpus(storage: SQLiteManager, db_path: Path) -> CorpusStore:
    return CorpusStore(storage, db_path)


@pytest.fixture
def registry(storage: SQLiteManager, db_path: Path) -> SourceRegistry:
    return SourceRegistry(storage, db_path)


@pytest.fixture
def kv(storage: SQLiteManager, db_path: Path) -> KeyValueStore:
    storage.connect(db_path)
    return KeyValueStore(storage, db_path)


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator(project_root=tmp_path))


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {
            "domain": "funeral.example",
            "name": "Example Funeral Home",
            "base_url": "https://funeral.example/obituaries",
            "adapter_type": "generic_html",
            "city": "Oakville",
        }
        base.update(overrides)
        return SourceConfig(**base)

    return _builder


@pytest.fixture
def make_obituary() -> Callable[..., Obituary]:
    def _builder(**overrides: Any) -> Obituary:
        base: dict[str, Any] = {
            "name": "Jane Doe",
            "date_of_death": date(2024, 3, 5),
            "source_domain": "funeral.example",
            "source_type": "generic_html",
        }
        base.update(overrides)
        return Obituary(**base)

    return _builder


@pytest.fixture
def mock_fetcher() -> Callable[..., Fetcher]:
    """Build a Fetcher over ``httpx.MockTransport`` that never really sleeps."""

    def _builder(handler: Callable[[httpx.Request], httpx.Response], **policy: Any) -> Fetcher:
        policy.setdefault("base_backoff", 0.0)
        client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
        return Fetcher(FetchPolicy(**policy), client=client, sleep=lambda _delay: None)

    return _builder


@pytest.fixture
def listing_html() -> Callable[..., str]:
    """Render a generic listing page from ``(name, href, date text)`` tuples."""

    def _render(*cards: tuple[str, str, str]) -> str:
        items = "\n".join(
            f"""
            <div class="obituary-item">
              <h3><a href="{href}">{name}</a></h3>
              <span class="date">{dates}</span>
            </div>
            """
            for name, href, dates in cards
        )
        return f"<html><body><section>{items}</section></body></html>"

    return _render
