"""Circuit breaker guarding calls to an external service."""

import logging
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised without calling the service while the breaker is open."""

    def __init__(self, breaker_name: str, message: Optional[str] = None):
        self.breaker_name = breaker_name
        super().__init__(message or f'Circuit breaker "{breaker_name}" is OPEN')


class CircuitBreaker:
    """Opens after repeated failures inside a sliding window and probes for recovery.

    CLOSED: calls pass through; each failure is timestamped and the breaker
    opens once ``failure_threshold`` failures fall inside ``monitor_window``
    seconds. A success while CLOSED clears the count.

    OPEN: calls fail fast with CircuitOpenError. After ``reset_timeout``
    seconds one call is let through as a probe (HALF_OPEN).

    HALF_OPEN: other callers fail fast while the probe runs. A successful
    probe closes the breaker; a failed one re-opens it and restarts the timer.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        monitor_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Service name used in errors and stats
            failure_threshold: Failures inside the window that open the breaker
            reset_timeout: Seconds to stay open before admitting a probe
            monitor_window: Length of the failure window in seconds
            clock: Monotonic time source (injectable for tests)
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.monitor_window = monitor_window
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._failure_times: List[float] = []
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self.last_failure: Optional[float] = None  # wall-clock timestamp
        self.last_success: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "failures": self._failures,
            "last_failure": self.last_failure,
            "last_success": self.last_success,
        }

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info(f"Circuit breaker {self.name}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._failures = 0
            self._failure_times = []
            self._opened_at = None

    def _before_call(self) -> bool:
        """Admit or reject a call.

        Returns:
            True when the admitted call is the HALF_OPEN probe
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return False
            if self._state == CircuitState.OPEN:
                if self._opened_at is not None and self._clock() - self._opened_at >= self.reset_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                    self._probe_in_flight = True
                    return True
                raise CircuitOpenError(self.name)
            # HALF_OPEN
            if self._probe_in_flight:
                raise CircuitOpenError(self.name)
            self._probe_in_flight = True
            return True

    def _on_success(self, probe: bool) -> None:
        with self._lock:
            self.last_success = time.time()
            if probe:
                self._probe_in_flight = False
                self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failures = 0
                self._failure_times = []

    def _on_failure(self, probe: bool) -> None:
        with self._lock:
            now = self._clock()
            self.last_failure = time.time()
            self._failures += 1
            self._failure_times.append(now)
            window_start = now - self.monitor_window
            self._failure_times = [t for t in self._failure_times if t >= window_start]

            if probe:
                self._probe_in_flight = False
                # Re-opening restarts the reset timer
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and len(self._failure_times) >= self.failure_threshold:
                self._transition(CircuitState.OPEN)
                logger.warning(f"Circuit breaker {self.name} opened after {self._failures} failures")

    def _release(self, probe: bool) -> None:
        """Give up a probe slot without recording an outcome (e.g. task cancellation)."""
        if probe:
            with self._lock:
                self._probe_in_flight = False

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run a coroutine function through the breaker."""
        probe = self._before_call()
        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self._on_failure(probe)
            raise
        except BaseException:
            self._release(probe)
            raise
        self._on_success(probe)
        return result

    def call_sync(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking function through the breaker."""
        probe = self._before_call()
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure(probe)
            raise
        except BaseException:
            self._release(probe)
            raise
        self._on_success(probe)
        return result
