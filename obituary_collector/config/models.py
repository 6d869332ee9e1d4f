"""Pydantic models describing global and per-source collector configuration."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ObituaryCollector/1.0)"
DEFAULT_CONFIRM_PHRASE = "DELETE ALL OBITUARIES"

_TIME_OF_DAY = re.compile(r"^(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)$")


class FetchPolicy(BaseModel):
    """Timeout and retry behaviour for a single HTTP fetch."""

    timeout: float = 30.0
    max_retries: int = 2
    base_backoff: float = 0.5
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "en-CA,en;q=0.9"

    @model_validator(mode="after")
    def _validate_bounds(self) -> "FetchPolicy":
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_backoff < 0:
            raise ValueError("base_backoff must be >= 0")
        return self


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)


class NormalizerConfig(BaseModel):
    min_name_length: int = Field(default=3, ge=1)
    description_max_length: int = Field(default=5000, ge=1)
    location_max_length: int = Field(default=255, ge=1)


class ResetConfig(BaseModel):
    """Reset & Rescan knobs."""

    batch_size: int = Field(default=200, ge=1)
    confirm_phrase: str = DEFAULT_CONFIRM_PHRASE
    # Listing pages per source during rescan; None keeps each source's max_pages.
    rescan_page_cap: int | None = 1

    @field_validator("rescan_page_cap")
    @classmethod
    def _positive_cap(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("rescan_page_cap must be >= 1 or null")
        return value


class SourceConfig(BaseModel):
    """Definition of one external obituary site."""

    domain: str
    name: str = ""
    base_url: str
    adapter_type: str = "generic_html"
    enabled: bool = True
    city: str = ""
    region: str = ""
    max_pages: int = Field(default=5, ge=1)
    min_request_interval: float = Field(default=0.0, ge=0.0)
    selectors: dict[str, str] = Field(default_factory=dict)
    pagination_param: str | None = None
    pagination_style: Literal["query", "path"] = "query"
    funeral_home: str | None = None
    fetch: FetchPolicy | None = None

    @field_validator("domain")
    @classmethod
    def _normalise_domain(cls, value: str) -> str:
        slug = value.strip().lower()
        if slug.startswith(("http://", "https://")):
            slug = slug.split("://", 1)[1]
        if slug.startswith("www."):
            slug = slug[4:]
        slug = slug.rstrip("/")
        if not slug:
            raise ValueError("domain cannot be empty")
        return slug

    @model_validator(mode="after")
    def _default_name(self) -> "SourceConfig":
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must be an absolute http(s) URL")
        if not self.name:
            self.name = self.domain
        return self

    def fetch_policy(self, default: FetchPolicy) -> FetchPolicy:
        return self.fetch or default


class GlobalConfig(BaseModel):
    """Settings shared by every pipeline component."""

    database_path: Path = Field(default=Path("data/obituaries.db"))
    backups_dir: Path = Field(default=Path("data/backups"))
    fetch: FetchPolicy = Field(default_factory=FetchPolicy)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    normalizer: NormalizerConfig = Field(default_factory=NormalizerConfig)
    reset: ResetConfig = Field(default_factory=ResetConfig)
    collector_workers: int = Field(default=1, ge=1, le=4)
    max_age_days: int = Field(default=7, ge=1)
    schedule_time: str = "03:00"

    @field_validator("database_path", "backups_dir", mode="before")
    @classmethod
    def _coerce_paths(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("schedule_time")
    @classmethod
    def _validate_schedule_time(cls, value: str) -> str:
        if not _TIME_OF_DAY.match(value.strip()):
            raise ValueError("schedule_time must look like HH:MM")
        return value.strip()

    def resolve(self, path: Path, root: Path) -> Path:
        """Return ``path`` anchored at ``root`` when it is relative."""

        if path.is_absolute():
            return path
        return (root / path).resolve()


__all__ = [
    "CircuitBreakerConfig",
    "DEFAULT_CONFIRM_PHRASE",
    "DEFAULT_USER_AGENT",
    "FetchPolicy",
    "GlobalConfig",
    "NormalizerConfig",
    "ResetConfig",
    "SourceConfig",
]
