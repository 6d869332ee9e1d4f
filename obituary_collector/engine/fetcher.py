"""HTTP fetching with timeout, bounded retry and exponential backoff."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict

import httpx
import structlog

from ..config import FetchPolicy
from ..errors import FetchError, FetchHttpError, FetchTransportError

RETRYABLE_STATUS = frozenset({429})


@dataclass(slots=True)
class FetchDiagnostics:
    """What happened while fetching one URL, reported upward on every outcome."""

    url: str
    http_status: int | None = None
    final_url: str | None = None
    duration_ms: int = 0
    error_message: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    diagnostics: FetchDiagnostics
    raw: httpx.Response | None = field(repr=False, default=None)


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS


def backoff_delay(base_backoff: float, attempt: int) -> float:
    """Delay slept after failed ``attempt`` (1-based) before the next one."""

    return base_backoff * (2 ** (attempt - 1))


class Fetcher:
    """Execute GET requests according to a :class:`FetchPolicy`."""

    def __init__(
        self,
        policy: FetchPolicy,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.policy = policy
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True, timeout=policy.timeout)
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("obituary_collector.fetcher")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def fetch(self, url: str, policy: FetchPolicy | None = None) -> FetchResponse:
        """Fetch ``url`` or raise a :class:`FetchError` carrying diagnostics."""

        policy = policy or self.policy
        diagnostics = FetchDiagnostics(url=url)
        headers = {"User-Agent": policy.user_agent, "Accept-Language": policy.accept_language}
        max_attempts = 1 + policy.max_retries
        started = time.monotonic()
        error_type: type[FetchError] = FetchTransportError
        last_message = ""

        for attempt in range(1, max_attempts + 1):
            diagnostics.attempts = attempt
            try:
                response = self._client.get(url, headers=headers, timeout=policy.timeout)
            except httpx.HTTPError as exc:
                error_type = FetchTransportError
                last_message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
            else:
                diagnostics.http_status = response.status_code
                diagnostics.final_url = str(response.url)
                if response.status_code < 400:
                    diagnostics.duration_ms = _elapsed_ms(started)
                    diagnostics.error_message = None
                    return FetchResponse(
                        url=str(response.url),
                        status_code=response.status_code,
                        text=response.text,
                        headers=dict(response.headers),
                        diagnostics=diagnostics,
                        raw=response,
                    )
                error_type = FetchHttpError
                last_message = f"HTTP {response.status_code}"
                if not is_retryable_status(response.status_code):
                    diagnostics.duration_ms = _elapsed_ms(started)
                    diagnostics.error_message = last_message
                    self.logger.warning(
                        "fetch_failed", url=url, status=response.status_code, attempt=attempt
                    )
                    raise FetchHttpError(last_message, diagnostics)

            if attempt < max_attempts:
                delay = backoff_delay(policy.base_backoff, attempt)
                self.logger.info(
                    "fetch_retry", url=url, attempt=attempt, delay=delay, error=last_message
                )
                self._sleep(delay)

        diagnostics.duration_ms = _elapsed_ms(started)
        diagnostics.error_message = f"exhausted retries after {max_attempts} attempts ({last_message})"
        self.logger.warning("fetch_exhausted", url=url, attempts=max_attempts, error=last_message)
        raise error_type(diagnostics.error_message, diagnostics)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = [
    "FetchDiagnostics",
    "FetchResponse",
    "Fetcher",
    "backoff_delay",
    "is_retryable_status",
]
