"""HTTP client with conditional caching, retries, and a circuit breaker."""

import json
import random
from email.utils import parsedate_to_datetime
from typing import Any, NoReturn

import structlog

from src.fetch.breaker import CircuitBreaker
from src.fetch.cache import (
    CacheManager,
    CacheStore,
    QueryParams,
    build_url,
    compute_cache_key,
)
from src.fetch.clock import Clock, SystemClock
from src.fetch.config import FetchConfig
from src.fetch.constants import (
    HEADER_RETRY_AFTER,
    HTTP_STATUS_NOT_MODIFIED,
    HTTP_STATUS_SERVER_ERROR_MAX,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_STATUS_TOO_MANY_REQUESTS,
    MAX_RETRY_AFTER_SECONDS,
)
from src.fetch.errors import (
    CircuitOpenError,
    FetchFailedError,
    ResponseParseError,
    TransientBackendError,
)
from src.fetch.metrics import FetchMetrics, FetchMetricsSnapshot
from src.fetch.models import AttemptKind, AttemptOutcome, FetchErrorClass, FetchResult
from src.fetch.redact import redact_headers, redact_url, truncate_snippet
from src.fetch.transport import (
    HttpxTransport,
    Transport,
    TransportError,
    TransportResponse,
    TransportTimeoutError,
)


logger = structlog.get_logger()


class HttpFetcher:
    """Breaker-bearing JSON client for one external endpoint.

    Provides GET operations with:
    - ETag conditional requests backed by a persistent cache store
    - Bounded full-jitter retries for 5xx and 429 responses
    - A circuit breaker that fails fast while the endpoint is unhealthy
    - Running metrics, including the API's advertised request budget

    Construct exactly one instance per endpoint and share it with every call
    site; breaker state is only coherent within one instance.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: FetchConfig,
        store: CacheStore,
        transport: Transport | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Fetch configuration.
            store: Storage for cache entries.
            transport: Request transport; an httpx transport when omitted.
            clock: Time source and delay primitive.
            rng: Random source for backoff jitter.
            breaker: Circuit breaker; one is built from ``config`` when omitted.
        """
        self._config = config
        self._clock = clock or SystemClock()
        self._rng = rng
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport()
        self._cache = CacheManager(store, config.endpoint)
        self._breaker = breaker or CircuitBreaker(
            config.endpoint, config.breaker, self._clock
        )
        self._metrics = FetchMetrics()
        self._log = logger.bind(component="fetch", endpoint=config.endpoint)

    @property
    def config(self) -> FetchConfig:
        """Get the fetch configuration."""
        return self._config

    @property
    def breaker(self) -> CircuitBreaker:
        """Get the circuit breaker guarding this endpoint."""
        return self._breaker

    @property
    def clock(self) -> Clock:
        """Get the clock used by this fetcher."""
        return self._clock

    def get_metrics(self) -> FetchMetricsSnapshot:
        """Get a consistent copy of the running metrics."""
        breaker = self._breaker.snapshot()
        return self._metrics.snapshot(
            circuit_state=breaker.state.value,
            circuit_opened_reason=breaker.opened_reason,
        )

    def close(self) -> None:
        """Release the transport if this fetcher created it."""
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            self._transport.close()

    def fetch_json(
        self,
        url: str,
        query: QueryParams | None = None,
        *,
        conditional: bool = True,
    ) -> FetchResult:
        """Fetch a JSON resource.

        Args:
            url: Base URL.
            query: Query parameters.
            conditional: Send If-None-Match from the cache when available.

        Returns:
            FetchResult; 304 responses come back with ``from_cache=True`` and
            ``body=None``. Non-retryable 4xx responses are returned, not raised.

        Raises:
            CircuitOpenError: The breaker refused the call; nothing was sent.
            TransientBackendError: 5xx/429 persisted after all retries.
            ResponseParseError: The body was not valid JSON.
            FetchFailedError: The transport failed or timed out.
        """
        start = self._clock.monotonic()
        full_url = build_url(url, query)
        safe_url = redact_url(full_url)
        cache_key = compute_cache_key(url, query)
        log = self._log.bind(url=safe_url)

        entry = self._cache.lookup(cache_key)

        if not self._breaker.allow_request():
            remaining_ms = self._breaker.remaining_open_ms()
            log.warning("circuit_open_fail_fast", retry_in_ms=round(remaining_ms))
            raise CircuitOpenError(
                self._config.endpoint, remaining_ms, self.get_metrics()
            )

        headers = self._build_headers()
        if conditional:
            headers.update(self._cache.conditional_headers(entry))

        try:
            outcome = self._execute_with_retry(full_url, headers, log)
        except Exception:
            self._breaker.record_failure()
            raise

        self._metrics.record_duration((self._clock.monotonic() - start) * 1000)

        if outcome.kind != AttemptKind.SUCCESS or outcome.response is None:
            self._fail(outcome, safe_url, log)

        response = outcome.response
        self._metrics.record_request(safe_url, response.status_code)

        if response.status_code == HTTP_STATUS_NOT_MODIFIED and entry is not None:
            self._metrics.record_cache_hit()
            self._breaker.record_success()
            log.info("fetch_complete", status_code=304, cache_hit=True)
            return FetchResult(
                status_code=HTTP_STATUS_NOT_MODIFIED,
                url=full_url,
                headers=self._cache.merge_not_modified_headers(
                    response.headers, entry
                ),
                body=None,
                from_cache=True,
            )

        body = self._parse_body(response, safe_url, log)
        self._cache.record(cache_key, full_url, response, self._clock.now())
        self._breaker.record_success()

        log.info(
            "fetch_complete",
            status_code=response.status_code,
            cache_hit=False,
            bytes=len(response.body_text),
        )
        return FetchResult(
            status_code=response.status_code,
            url=full_url,
            headers=response.headers,
            body=body,
            from_cache=False,
        )

    def _build_headers(self) -> dict[str, str]:
        """Build request headers carrying the client identifier."""
        headers: dict[str, str] = {
            "User-Agent": self._config.user_agent,
            "Accept": "application/json",
        }
        headers.update(self._config.extra_headers)
        return headers

    def _execute_with_retry(
        self,
        url: str,
        headers: dict[str, str],
        log: structlog.stdlib.BoundLogger,
    ) -> AttemptOutcome:
        """Run the bounded attempt loop.

        Args:
            url: Full URL to fetch.
            headers: Request headers.
            log: Bound logger.

        Returns:
            The outcome of the last attempt.
        """
        policy = self._config.retry_policy
        outcome = AttemptOutcome(kind=AttemptKind.FATAL)

        for attempt in range(policy.max_retries + 1):
            outcome = self._execute_single(url, headers, log, attempt)

            if outcome.kind != AttemptKind.RETRYABLE:
                return outcome
            if outcome.error_class is None or not policy.should_retry(
                outcome.error_class, attempt
            ):
                return outcome

            delay_ms = policy.get_delay_ms(attempt, self._rng)
            retry_after = self._retry_after_seconds(outcome.response)
            if retry_after:
                delay_ms = max(delay_ms, min(retry_after, MAX_RETRY_AFTER_SECONDS) * 1000)

            self._metrics.record_retry()
            log.info(
                "retry_attempt",
                status_code=outcome.response.status_code if outcome.response else None,
                attempt=attempt + 1,
                delay_ms=int(delay_ms),
                max_retries=policy.max_retries,
                rate_limit_remaining=self._metrics.last_rate_limit_remaining,
                rate_limit_reset=self._metrics.last_rate_limit_reset,
            )
            self._clock.sleep(delay_ms / 1000.0)

        return outcome

    def _execute_single(
        self,
        url: str,
        headers: dict[str, str],
        log: structlog.stdlib.BoundLogger,
        attempt: int,
    ) -> AttemptOutcome:
        """Execute one request and classify it.

        Args:
            url: Full URL to fetch.
            headers: Request headers.
            log: Bound logger.
            attempt: Current attempt number.

        Returns:
            Tagged outcome of the attempt.
        """
        log.debug("request_sent", attempt=attempt, headers=redact_headers(headers))

        try:
            response = self._transport.send(
                "GET", url, headers, self._config.timeout_seconds
            )
        except TransportTimeoutError as e:
            return AttemptOutcome(
                kind=AttemptKind.FATAL,
                error_class=FetchErrorClass.NETWORK_TIMEOUT,
                message=str(e),
            )
        except TransportError as e:
            return AttemptOutcome(
                kind=AttemptKind.FATAL,
                error_class=FetchErrorClass.CONNECTION_ERROR,
                message=str(e),
            )

        self._record_rate_limit(response)

        status = response.status_code
        if status == HTTP_STATUS_TOO_MANY_REQUESTS:
            return AttemptOutcome(
                kind=AttemptKind.RETRYABLE,
                response=response,
                error_class=FetchErrorClass.RATE_LIMITED,
                message="Rate limited (429 Too Many Requests)",
            )
        if HTTP_STATUS_SERVER_ERROR_MIN <= status < HTTP_STATUS_SERVER_ERROR_MAX:
            return AttemptOutcome(
                kind=AttemptKind.RETRYABLE,
                response=response,
                error_class=FetchErrorClass.HTTP_5XX,
                message=f"Server error ({status})",
            )
        return AttemptOutcome(kind=AttemptKind.SUCCESS, response=response)

    def _fail(
        self,
        outcome: AttemptOutcome,
        safe_url: str,
        log: structlog.stdlib.BoundLogger,
    ) -> NoReturn:
        """Record a failed logical call and raise the matching error.

        Counts exactly one breaker failure regardless of internal retries.

        Raises:
            TransientBackendError: For exhausted 5xx/429 responses.
            FetchFailedError: For transport failures.
        """
        error_class = outcome.error_class or FetchErrorClass.UNKNOWN
        response = outcome.response
        status = response.status_code if response else None

        self._metrics.record_request(safe_url, status)
        self._metrics.record_failure(error_class)
        self._breaker.record_failure()

        log.warning(
            "fetch_failed",
            status_code=status,
            error_class=error_class.value,
            message=outcome.message,
            circuit_state=self._breaker.state.value,
        )

        message = outcome.message or "Fetch failed"
        if response is not None:
            raise TransientBackendError(
                f"{message} after {self._config.retry_policy.max_retries} retries",
                url=safe_url,
                status_code=status,
                body_snippet=truncate_snippet(
                    response.body_text, self._config.max_body_snippet_chars
                ),
            )
        raise FetchFailedError(message, url=safe_url)

    def _parse_body(
        self,
        response: TransportResponse,
        safe_url: str,
        log: structlog.stdlib.BoundLogger,
    ) -> Any:
        """Parse a JSON body; empty bodies become None.

        A parse failure is not a sign of backend instability: the breaker
        records a success and nothing is cached.

        Raises:
            ResponseParseError: If the body is not valid JSON.
        """
        if not response.body_text.strip():
            return None
        try:
            return json.loads(response.body_text)
        except json.JSONDecodeError as e:
            self._metrics.record_failure(FetchErrorClass.PARSE_ERROR)
            self._breaker.record_success()
            log.warning(
                "fetch_parse_failed",
                status_code=response.status_code,
                error=str(e),
            )
            raise ResponseParseError(
                f"Invalid JSON in response ({response.status_code}): {e}",
                url=safe_url,
                status_code=response.status_code,
                body_snippet=truncate_snippet(
                    response.body_text, self._config.max_body_snippet_chars
                ),
            ) from e

    def _record_rate_limit(self, response: TransportResponse) -> None:
        """Track the request budget headers when the API advertises them."""
        remaining = _parse_int(
            response.headers.get(self._config.rate_limit_remaining_header)
        )
        reset = _parse_int(response.headers.get(self._config.rate_limit_reset_header))
        if remaining is None and reset is None:
            return
        self._metrics.record_rate_limit(remaining, reset)
        self._log.debug(
            "rate_limit_budget",
            remaining=remaining,
            reset=reset,
            status_code=response.status_code,
        )

    def _retry_after_seconds(self, response: TransportResponse | None) -> int | None:
        """Parse a Retry-After header (seconds or HTTP date).

        Returns:
            Seconds to wait, or None if absent or not parseable.
        """
        if response is None:
            return None
        value = response.headers.get(HEADER_RETRY_AFTER)
        if not value:
            return None

        seconds = _parse_int(value)
        if seconds is not None:
            return max(0, seconds)

        try:
            delta = parsedate_to_datetime(value) - self._clock.now()
        except (ValueError, TypeError):
            return None
        return max(0, int(delta.total_seconds()))


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None
