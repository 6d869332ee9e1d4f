from __future__ import annotations

import httpx
import pytest

from obituary_collector.config import FetchPolicy
from obituary_collector.engine.fetcher import Fetcher, backoff_delay, is_retryable_status
from obituary_collector.errors import FetchHttpError, FetchTransportError


def _build(handler, **policy) -> tuple[Fetcher, list[float]]:
    sleeps: list[float] = []
    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
    fetcher = Fetcher(FetchPolicy(**policy), client=client, sleep=sleeps.append)
    return fetcher, sleeps


def _sequence(*responses):
    """Handler replaying ``responses`` (status codes or exceptions) in order."""

    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, text=f"status {item}")

    return handler, calls


def test_fetch_success_sends_policy_headers() -> None:
    handler, calls = _sequence(200)
    fetcher, sleeps = _build(handler, user_agent="TestAgent/1.0", accept_language="en-CA")

    response = fetcher.fetch("https://funeral.example/obituaries")
    fetcher.close()

    assert response.status_code == 200
    assert response.text == "status 200"
    assert response.diagnostics.http_status == 200
    assert response.diagnostics.attempts == 1
    assert response.diagnostics.final_url == "https://funeral.example/obituaries"
    assert calls[0].headers["User-Agent"] == "TestAgent/1.0"
    assert calls[0].headers["Accept-Language"] == "en-CA"
    assert sleeps == []


def test_server_errors_are_retried_with_exponential_backoff() -> None:
    handler, calls = _sequence(503, 502, 200)
    fetcher, sleeps = _build(handler, max_retries=2, base_backoff=0.5)

    response = fetcher.fetch("https://funeral.example/")

    assert response.status_code == 200
    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]
    assert response.diagnostics.attempts == 3


def test_exhausted_server_errors_raise_http_error() -> None:
    handler, calls = _sequence(503)
    fetcher, sleeps = _build(handler, max_retries=2, base_backoff=0.5)

    with pytest.raises(FetchHttpError) as excinfo:
        fetcher.fetch("https://funeral.example/")

    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]
    assert "exhausted retries after 3 attempts" in str(excinfo.value)
    assert excinfo.value.status_code == 503
    assert excinfo.value.diagnostics.attempts == 3
    assert excinfo.value.diagnostics.error_message == str(excinfo.value)


def test_client_errors_fail_immediately() -> None:
    handler, calls = _sequence(404)
    fetcher, sleeps = _build(handler, max_retries=3)

    with pytest.raises(FetchHttpError) as excinfo:
        fetcher.fetch("https://funeral.example/missing")

    assert len(calls) == 1
    assert sleeps == []
    assert str(excinfo.value) == "HTTP 404"
    assert excinfo.value.diagnostics.http_status == 404


def test_rate_limit_is_retried() -> None:
    handler, calls = _sequence(429, 200)
    fetcher, sleeps = _build(handler, max_retries=1, base_backoff=2.0)

    assert fetcher.fetch("https://funeral.example/").status_code == 200
    assert len(calls) == 2
    assert sleeps == [2.0]


def test_transport_errors_raise_transport_error() -> None:
    handler, calls = _sequence(httpx.ConnectError("connection refused"))
    fetcher, sleeps = _build(handler, max_retries=1, base_backoff=0.25)

    with pytest.raises(FetchTransportError) as excinfo:
        fetcher.fetch("https://down.example/")

    assert len(calls) == 2
    assert sleeps == [0.25]
    assert "exhausted retries after 2 attempts" in str(excinfo.value)
    assert "ConnectError" in str(excinfo.value)
    assert excinfo.value.diagnostics.http_status is None


def test_transport_error_then_success_recovers() -> None:
    handler, _calls = _sequence(httpx.ReadTimeout("slow"), 200)
    fetcher, _sleeps = _build(handler, max_retries=1)

    response = fetcher.fetch("https://funeral.example/")

    assert response.status_code == 200
    assert response.diagnostics.error_message is None


def test_per_call_policy_overrides_default() -> None:
    handler, calls = _sequence(500)
    fetcher, _sleeps = _build(handler, max_retries=3)

    with pytest.raises(FetchHttpError):
        fetcher.fetch("https://funeral.example/", FetchPolicy(max_retries=0))

    assert len(calls) == 1


def test_zero_retries_makes_exactly_one_attempt() -> None:
    handler, calls = _sequence(httpx.ConnectError("refused"))
    fetcher, sleeps = _build(handler, max_retries=0)

    with pytest.raises(FetchTransportError):
        fetcher.fetch("https://down.example/")

    assert len(calls) == 1
    assert sleeps == []


def test_retry_helpers() -> None:
    assert is_retryable_status(500)
    assert is_retryable_status(503)
    assert is_retryable_status(429)
    assert not is_retryable_status(404)
    assert not is_retryable_status(403)
    assert [backoff_delay(0.5, attempt) for attempt in (1, 2, 3)] == [0.5, 1.0, 2.0]


def test_owned_client_is_closed() -> None:
    fetcher = Fetcher(FetchPolicy())
    with fetcher:
        pass
    assert fetcher._client.is_closed
