"""Per-endpoint circuit breaker state machine."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

import structlog

from src.fetch.clock import Clock, SystemClock
from src.fetch.config import CircuitBreakerConfig


logger = structlog.get_logger()

OPENED_REASON_THRESHOLD = "consecutive_failures"
OPENED_REASON_PROBE_FAILED = "half_open_probe_failed"


class CircuitState(str, Enum):
    """Circuit breaker states.

    State transitions:
        CLOSED -> OPEN: consecutive failures reached the threshold
        OPEN -> HALF_OPEN: cooldown elapsed, one probe admitted
        HALF_OPEN -> CLOSED: probe succeeded
        HALF_OPEN -> OPEN: probe failed
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitStateError(Exception):
    """Raised when an invalid breaker transition is attempted."""

    def __init__(self, from_state: CircuitState, to_state: CircuitState) -> None:
        """Initialize the error.

        Args:
            from_state: The current state.
            to_state: The attempted target state.
        """
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid circuit transition: {from_state.name} -> {to_state.name}"
        )


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals for metrics and logging.

    Attributes:
        state: Current state.
        consecutive_failures: Failures counted since the last success.
        opened_at: Monotonic seconds when the breaker last opened.
        opened_reason: Why the breaker last opened.
        failure_threshold: Failures needed to open.
        min_open_duration_ms: Cooldown before a probe is admitted.
    """

    state: CircuitState
    consecutive_failures: int
    opened_at: float | None
    opened_reason: str | None
    failure_threshold: int
    min_open_duration_ms: int


class CircuitBreaker:
    """Fails fast while the protected endpoint is unhealthy.

    One instance guards one endpoint; callers must share it to get coherent
    protection. Callers ask ``allow_request()`` before each logical call and
    report its outcome once with ``record_success()`` or ``record_failure()``.
    """

    VALID_TRANSITIONS: ClassVar[dict[CircuitState, set[CircuitState]]] = {
        CircuitState.CLOSED: {CircuitState.OPEN},
        CircuitState.OPEN: {CircuitState.HALF_OPEN},
        CircuitState.HALF_OPEN: {CircuitState.CLOSED, CircuitState.OPEN},
    }

    def __init__(
        self,
        endpoint: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the breaker in CLOSED state.

        Args:
            endpoint: Name of the protected endpoint, for logging.
            config: Thresholds; defaults apply when omitted.
            clock: Time source; the system clock when omitted.
        """
        self._endpoint = endpoint
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._opened_reason: str | None = None
        self._probe_in_flight = False
        self._log = logger.bind(component="breaker", endpoint=endpoint)

    @property
    def endpoint(self) -> str:
        """Get the protected endpoint name."""
        return self._endpoint

    @property
    def state(self) -> CircuitState:
        """Get the current state."""
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        """Get the failure count since the last success."""
        with self._lock:
            return self._consecutive_failures

    def snapshot(self) -> BreakerSnapshot:
        """Capture the breaker internals."""
        with self._lock:
            return BreakerSnapshot(
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                opened_at=self._opened_at,
                opened_reason=self._opened_reason,
                failure_threshold=self._config.failure_threshold,
                min_open_duration_ms=self._config.min_open_duration_ms,
            )

    def remaining_open_ms(self) -> float:
        """Milliseconds until the cooldown elapses (0 when not OPEN)."""
        with self._lock:
            return self._remaining_open_ms_locked()

    def allow_request(self) -> bool:
        """Decide whether a call may reach the transport.

        OPEN moves to HALF_OPEN once the cooldown has elapsed, admitting the
        caller as the single probe. While a probe is in flight every other
        caller is refused.

        Returns:
            True if the call may proceed.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._remaining_open_ms_locked() > 0:
                    return False
                self._transition_locked(CircuitState.HALF_OPEN)
                self._probe_in_flight = True
                return True

            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def record_success(self) -> None:
        """Record a successful logical call."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._transition_locked(CircuitState.CLOSED)
                self._opened_at = None
            self._consecutive_failures = 0

    def record_failure(self) -> None:
        """Record a failed logical call (transport error, exhausted 5xx/429)."""
        with self._lock:
            self._consecutive_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._open_locked(OPENED_REASON_PROBE_FAILED)
                return

            if (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._config.failure_threshold
            ):
                self._open_locked(OPENED_REASON_THRESHOLD)

    def _open_locked(self, reason: str) -> None:
        """Enter OPEN and start the cooldown. Must hold the lock."""
        self._transition_locked(CircuitState.OPEN)
        self._opened_at = self._clock.monotonic()
        self._opened_reason = reason
        self._log.warning(
            "circuit_opened",
            reason=reason,
            consecutive_failures=self._consecutive_failures,
            min_open_duration_ms=self._config.min_open_duration_ms,
        )

    def _remaining_open_ms_locked(self) -> float:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        elapsed_ms = (self._clock.monotonic() - self._opened_at) * 1000
        return max(0.0, self._config.min_open_duration_ms - elapsed_ms)

    def _transition_locked(self, to_state: CircuitState) -> None:
        """Apply a transition. Must hold the lock.

        Raises:
            CircuitStateError: If the transition is invalid.
        """
        if to_state not in self.VALID_TRANSITIONS[self._state]:
            self._log.error(
                "invariant_violation",
                error_type="illegal_state_transition",
                from_state=self._state.name,
                to_state=to_state.name,
            )
            raise CircuitStateError(self._state, to_state)

        old_state = self._state
        self._state = to_state
        self._log.info(
            "circuit_state_transition",
            from_state=old_state.name,
            to_state=to_state.name,
            consecutive_failures=self._consecutive_failures,
        )
