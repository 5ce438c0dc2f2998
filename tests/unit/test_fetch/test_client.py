"""Unit tests for HttpFetcher against a scripted transport."""

import random

import pytest

from src.fetch.breaker import CircuitState
from src.fetch.client import HttpFetcher
from src.fetch.config import CircuitBreakerConfig, FetchConfig
from src.fetch.errors import (
    CircuitOpenError,
    FetchFailedError,
    ResponseParseError,
    TransientBackendError,
)
from src.fetch.models import RetryPolicy
from tests.helpers.fakes import (
    BrokenCacheStore,
    ManualClock,
    MemoryCacheStore,
    ScriptedTransport,
    json_response,
    not_modified,
    status_response,
    timeout_error,
)


URL = "https://esi.example.com/markets/10000002/orders/"


def make_fetcher(
    transport: ScriptedTransport,
    store: MemoryCacheStore | BrokenCacheStore | None = None,
    clock: ManualClock | None = None,
    max_retries: int = 3,
    failure_threshold: int = 5,
    min_open_duration_ms: int = 30_000,
) -> HttpFetcher:
    config = FetchConfig(
        user_agent="market-ingest-tests/1.0",
        timeout_seconds=7.5,
        retry_policy=RetryPolicy(max_retries=max_retries),
        breaker=CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            min_open_duration_ms=min_open_duration_ms,
        ),
    )
    return HttpFetcher(
        config,
        store if store is not None else MemoryCacheStore(),
        transport=transport,
        clock=clock or ManualClock(),
        rng=random.Random(0),
    )


@pytest.mark.unit
class TestConditionalRequests:
    """Tests for ETag revalidation."""

    def test_second_call_revalidates_and_hits(self) -> None:
        """Test that a repeat call sends If-None-Match and reports a 304 hit."""
        store = MemoryCacheStore()
        transport = ScriptedTransport(
            [json_response([1, 2, 3], etag='"v1"'), not_modified('"v1"')]
        )
        fetcher = make_fetcher(transport, store)

        first = fetcher.fetch_json(URL, {"page": 1})
        second = fetcher.fetch_json(URL, {"page": 1})

        assert first.status_code == 200
        assert first.body == [1, 2, 3]
        assert first.from_cache is False
        assert "If-None-Match" not in transport.requests[0].headers
        assert transport.requests[1].headers["If-None-Match"] == '"v1"'
        assert second.status_code == 304
        assert second.from_cache is True
        assert second.body is None
        assert fetcher.get_metrics().total_cache_hits_304 == 1
        assert store.upserts == 1

    def test_304_keeps_cached_validators(self) -> None:
        """Test that a bare 304 reports the cached ETag and Last-Modified."""
        transport = ScriptedTransport(
            [
                json_response(
                    [], etag='"v1"', last_modified="Mon, 01 Jan 2024 00:00:00 GMT"
                ),
                not_modified(),
            ]
        )
        fetcher = make_fetcher(transport)

        fetcher.fetch_json(URL)
        result = fetcher.fetch_json(URL)

        assert result.etag == '"v1"'
        assert result.last_modified == "Mon, 01 Jan 2024 00:00:00 GMT"

    def test_unconditional_skips_validator(self) -> None:
        """Test that conditional=False sends no If-None-Match."""
        transport = ScriptedTransport(
            [json_response([1], etag='"v1"'), json_response([1], etag='"v1"')]
        )
        fetcher = make_fetcher(transport)

        fetcher.fetch_json(URL)
        fetcher.fetch_json(URL, conditional=False)

        assert "If-None-Match" not in transport.requests[1].headers

    def test_store_failure_does_not_fail_fetch(self) -> None:
        """Test that a broken cache store degrades to plain requests."""
        transport = ScriptedTransport([json_response([1], etag='"v1"')])
        fetcher = make_fetcher(transport, BrokenCacheStore())

        result = fetcher.fetch_json(URL)

        assert result.body == [1]
        assert "If-None-Match" not in transport.requests[0].headers


@pytest.mark.unit
class TestRequestShape:
    """Tests for outgoing request details."""

    def test_identifier_and_timeout(self) -> None:
        """Test that every attempt carries the User-Agent and the timeout."""
        transport = ScriptedTransport([status_response(500), json_response([])])
        fetcher = make_fetcher(transport)

        fetcher.fetch_json(URL, {"page": 2})

        for request in transport.requests:
            assert request.method == "GET"
            assert request.url == f"{URL}?page=2"
            assert request.headers["User-Agent"] == "market-ingest-tests/1.0"
            assert request.timeout == 7.5


@pytest.mark.unit
class TestRetries:
    """Tests for the bounded retry loop."""

    def test_transient_5xx_recovers(self) -> None:
        """Test that 5xx responses are retried until success."""
        clock = ManualClock()
        transport = ScriptedTransport(
            [status_response(502), status_response(503), json_response({"ok": 1})]
        )
        fetcher = make_fetcher(transport, clock=clock)

        result = fetcher.fetch_json(URL)

        metrics = fetcher.get_metrics()
        assert result.body == {"ok": 1}
        assert metrics.total_retries == 2
        assert len(clock.sleeps) == 2
        assert clock.sleeps[0] <= 0.25
        assert clock.sleeps[1] <= 0.5
        assert fetcher.breaker.consecutive_failures == 0

    def test_exhausted_retries_count_one_failure(self) -> None:
        """Test that one logical call adds one breaker failure."""
        transport = ScriptedTransport([status_response(500, "boom")] * 4)
        fetcher = make_fetcher(transport, max_retries=3, failure_threshold=2)

        with pytest.raises(TransientBackendError) as exc_info:
            fetcher.fetch_json(URL)

        assert transport.calls == 4
        assert exc_info.value.status_code == 500
        assert exc_info.value.body_snippet == "boom"
        assert fetcher.breaker.consecutive_failures == 1
        assert fetcher.breaker.state == CircuitState.CLOSED
        assert fetcher.get_metrics().failures_by_class == {"HTTP_5XX": 1}

    def test_retry_after_honored(self) -> None:
        """Test that a 429 waits at least the advertised Retry-After."""
        clock = ManualClock()
        transport = ScriptedTransport(
            [status_response(429, headers={"Retry-After": "5"}), json_response([])]
        )
        fetcher = make_fetcher(transport, clock=clock)

        fetcher.fetch_json(URL)

        assert clock.sleeps == [5.0]

    def test_retry_after_capped(self) -> None:
        """Test that absurd Retry-After values are capped at 60 s."""
        clock = ManualClock()
        transport = ScriptedTransport(
            [status_response(429, headers={"Retry-After": "3600"}), json_response([])]
        )
        fetcher = make_fetcher(transport, clock=clock)

        fetcher.fetch_json(URL)

        assert clock.sleeps == [60.0]

    def test_zero_retries(self) -> None:
        """Test that max_retries=0 makes exactly one attempt."""
        transport = ScriptedTransport([status_response(503)])
        fetcher = make_fetcher(transport, max_retries=0)

        with pytest.raises(TransientBackendError):
            fetcher.fetch_json(URL)

        assert transport.calls == 1


@pytest.mark.unit
class TestCircuitBreakerIntegration:
    """Tests for breaker decisions around fetch_json."""

    def test_fail_fast_after_threshold(self) -> None:
        """Test that the third call after two failed ones never hits the network."""
        transport = ScriptedTransport([status_response(500), status_response(500)])
        fetcher = make_fetcher(transport, max_retries=0, failure_threshold=2)

        for _ in range(2):
            with pytest.raises(TransientBackendError):
                fetcher.fetch_json(URL)

        with pytest.raises(CircuitOpenError) as exc_info:
            fetcher.fetch_json(URL)

        assert transport.calls == 2
        assert exc_info.value.metrics is not None
        assert exc_info.value.metrics.circuit_state == "OPEN"
        assert exc_info.value.metrics.circuit_opened_reason == "consecutive_failures"
        assert exc_info.value.retry_in_ms > 0

    def test_circuit_open_is_not_a_fetch_failure(self) -> None:
        """Test that the fail-fast error is distinguishable by type."""
        assert not issubclass(CircuitOpenError, FetchFailedError)

    def test_probe_after_cooldown_closes(self) -> None:
        """Test that a successful probe closes the breaker."""
        clock = ManualClock()
        transport = ScriptedTransport(
            [status_response(500), status_response(500), json_response([7])]
        )
        fetcher = make_fetcher(
            transport,
            clock=clock,
            max_retries=0,
            failure_threshold=2,
            min_open_duration_ms=1000,
        )
        for _ in range(2):
            with pytest.raises(TransientBackendError):
                fetcher.fetch_json(URL)

        clock.advance(1.0)
        result = fetcher.fetch_json(URL)

        assert result.body == [7]
        assert fetcher.breaker.state == CircuitState.CLOSED

    def test_4xx_not_counted(self) -> None:
        """Test that client errors are returned and do not trip the breaker."""
        transport = ScriptedTransport([status_response(404, '{"error":"nope"}')] * 3)
        fetcher = make_fetcher(transport, failure_threshold=2)

        for _ in range(3):
            result = fetcher.fetch_json(URL)
            assert result.status_code == 404
            assert result.is_success is False

        assert fetcher.breaker.state == CircuitState.CLOSED
        assert fetcher.get_metrics().total_retries == 0

    def test_timeout_counts_as_failure(self) -> None:
        """Test that a timed-out attempt counts against the breaker."""
        transport = ScriptedTransport([timeout_error()])
        fetcher = make_fetcher(transport)

        with pytest.raises(FetchFailedError) as exc_info:
            fetcher.fetch_json(URL)

        assert exc_info.value.status_code is None
        assert transport.calls == 1
        assert fetcher.breaker.consecutive_failures == 1
        assert fetcher.get_metrics().failures_by_class == {"NETWORK_TIMEOUT": 1}


@pytest.mark.unit
class TestBodies:
    """Tests for body parsing."""

    def test_invalid_json(self) -> None:
        """Test that invalid JSON raises without caching or tripping the breaker."""
        store = MemoryCacheStore()
        transport = ScriptedTransport([status_response(200, "<html>oops</html>")])
        fetcher = make_fetcher(transport, store)

        with pytest.raises(ResponseParseError) as exc_info:
            fetcher.fetch_json(URL)

        assert exc_info.value.body_snippet == "<html>oops</html>"
        assert store.upserts == 0
        assert fetcher.breaker.consecutive_failures == 0
        assert transport.calls == 1

    def test_empty_body_is_none(self) -> None:
        """Test that an empty 2xx body parses to None."""
        transport = ScriptedTransport([status_response(204)])
        fetcher = make_fetcher(transport)

        assert fetcher.fetch_json(URL).body is None


@pytest.mark.unit
class TestMetrics:
    """Tests for fetcher metrics."""

    def test_rate_limit_budget_recorded(self) -> None:
        """Test that the advertised request budget is observed."""
        transport = ScriptedTransport(
            [
                json_response(
                    [],
                    extra_headers={
                        "X-ESI-Error-Limit-Remain": "87",
                        "X-ESI-Error-Limit-Reset": "42",
                    },
                )
            ]
        )
        fetcher = make_fetcher(transport)

        fetcher.fetch_json(URL, {"page": 1})

        metrics = fetcher.get_metrics()
        assert metrics.last_rate_limit_remaining == 87
        assert metrics.last_rate_limit_reset == 42
        assert metrics.total_requests == 1
        assert metrics.last_status == 200
        assert metrics.last_url == f"{URL}?page=1"
        assert metrics.circuit_state == "CLOSED"

    def test_metrics_are_per_instance(self) -> None:
        """Test that two fetchers never share counters."""
        first = make_fetcher(ScriptedTransport([json_response([])]))
        second = make_fetcher(ScriptedTransport([]))

        first.fetch_json(URL)

        assert first.get_metrics().total_requests == 1
        assert second.get_metrics().total_requests == 0
