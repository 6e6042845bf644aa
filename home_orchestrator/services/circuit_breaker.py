"""Circuit breaker pattern for backend calls.

Prevents cascading failures by opening the circuit after threshold failures.
Automatically attempts recovery after the cool-down period.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Circuit broken, requests fail fast
- HALF_OPEN: Testing recovery, single probe request allowed
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from home_orchestrator.core.errors import (
    BackendUnavailableError,
    CapabilityNotSupportedError,
    RequestValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

HealthProbe = Callable[[], Awaitable[bool]]
StateListener = Callable[[str, "CircuitState", "CircuitState"], None]


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"          # Normal operation
    OPEN = "open"              # Failing, reject requests
    HALF_OPEN = "half_open"    # Testing recovery


class CircuitBreakerOpen(BackendUnavailableError):
    """Exception raised when circuit breaker rejects a call."""

    def __init__(self, message: str, backend: str | None = None, health_failed: bool = False) -> None:
        self.health_failed = health_failed
        super().__init__(message, backend)


class CircuitBreaker:
    """Circuit breaker to prevent cascading failures.

    Usage:
        breaker = CircuitBreaker(name="ollama", failure_threshold=5)
        result = await breaker.call(my_async_function, arg1, arg2)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "circuit",
        health_probe: HealthProbe | None = None,
        window: int = 20,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateListener | None = None,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before allowing a probe
            name: Circuit name (backend id) for logging
            health_probe: Optional health check run before each probe
            window: Number of recent outcomes used for the success rate
            clock: Monotonic clock in seconds
            on_state_change: Called with (name, old_state, new_state)
            ignored_exceptions: Exceptions that mean the backend answered
                (e.g. unsupported action); they pass through without counting
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")

        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.health_probe = health_probe
        self.on_state_change = on_state_change
        self.ignored_exceptions = ignored_exceptions
        self._clock = clock

        self.failures = 0
        self.last_failure_time: float | None = None
        self.last_failure_at: datetime | None = None
        self.state = CircuitState.CLOSED
        self.probe_in_flight = False
        self._outcomes: deque[bool] = deque(maxlen=window)
        self._lock = asyncio.Lock()

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        probe_timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Execute function with circuit breaker protection.

        Args:
            func: Async function to call
            *args: Positional arguments for func
            probe_timeout: Seconds allowed for the health probe, if one runs
            **kwargs: Keyword arguments for func

        Returns:
            Function result

        Raises:
            CircuitBreakerOpen: If the circuit rejects the call
            Exception: Original exception from func (when the call was admitted)
        """
        is_probe = await self._admit(probe_timeout)

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            if is_probe:
                async with self._lock:
                    self._reopen("probe cancelled")
            raise
        except self.ignored_exceptions:
            async with self._lock:
                self._on_success(is_probe)
            raise
        except Exception:
            async with self._lock:
                self._on_failure(is_probe)
            raise

        async with self._lock:
            self._on_success(is_probe)
        return result

    def is_available(self) -> bool:
        """Check without side effects whether a call would be admitted now."""
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            return self._should_attempt_reset()
        return not self.probe_in_flight

    @property
    def success_rate(self) -> float:
        """Share of successful calls among recent outcomes (1.0 with no history)."""
        if not self._outcomes:
            return 1.0
        return sum(self._outcomes) / len(self._outcomes)

    async def _admit(self, probe_timeout: float | None = None) -> bool:
        """Admit a call or raise. Returns True if the call is the half-open probe.

        The health probe runs outside the lock; probe_in_flight keeps every
        other caller out while it runs.
        """
        async with self._lock:
            if self.state == CircuitState.CLOSED:
                return False

            if self.state == CircuitState.HALF_OPEN or not self._should_attempt_reset():
                raise CircuitBreakerOpen(self._rejection_message(), backend=self.name)

            logger.info(f"[{self.name}] Circuit transitioning to HALF_OPEN")
            self._transition(CircuitState.HALF_OPEN)
            self.probe_in_flight = True

        if self.health_probe is None:
            return True

        try:
            healthy = await self._check_health(probe_timeout)
        except asyncio.CancelledError:
            async with self._lock:
                self._reopen("health probe cancelled")
            raise

        if not healthy:
            async with self._lock:
                self._reopen("health check failed")
            raise CircuitBreakerOpen(
                "Health check failed before probe",
                backend=self.name,
                health_failed=True,
            )
        return True

    async def _check_health(self, timeout: float | None) -> bool:
        """Run the health probe. A timeout or an exception counts as unhealthy."""
        try:
            if timeout is None:
                return bool(await self.health_probe())
            return bool(await asyncio.wait_for(self.health_probe(), timeout=max(timeout, 0.0)))
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Health probe timed out after {timeout:.3f}s")
            return False
        except Exception as e:
            logger.warning(f"[{self.name}] Health probe raised: {e}")
            return False

    def _on_success(self, is_probe: bool) -> None:
        """Handle successful call."""
        self._outcomes.append(True)

        if is_probe:
            self.probe_in_flight = False
            logger.info(f"[{self.name}] Circuit recovered, transitioning to CLOSED")
            self.failures = 0
            self.last_failure_time = None
            self._transition(CircuitState.CLOSED)
            return

        if self.state == CircuitState.CLOSED:
            if self.failures > 0:
                logger.info(
                    f"[{self.name}] Call succeeded after {self.failures} failures"
                )
            self.failures = 0

    def _on_failure(self, is_probe: bool) -> None:
        """Handle failed call."""
        self._outcomes.append(False)

        if is_probe:
            self._reopen("probe failed")
            return

        self.failures += 1
        self._mark_failure_time()

        logger.warning(
            f"[{self.name}] Failure {self.failures}/{self.failure_threshold}"
        )

        if self.failures >= self.failure_threshold and self.state == CircuitState.CLOSED:
            logger.error(
                f"[{self.name}] Circuit breaker OPENED "
                f"({self.failures} failures, will retry in {self.recovery_timeout}s)"
            )
            self._transition(CircuitState.OPEN)

    def _reopen(self, reason: str) -> None:
        """Return to OPEN and restart the cool-down."""
        self.probe_in_flight = False
        self._mark_failure_time()
        logger.error(
            f"[{self.name}] Circuit breaker re-OPENED ({reason}, "
            f"will retry in {self.recovery_timeout}s)"
        )
        self._transition(CircuitState.OPEN)

    def _mark_failure_time(self) -> None:
        self.last_failure_time = self._clock()
        self.last_failure_at = datetime.now()

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state
        if old_state != new_state and self.on_state_change is not None:
            try:
                self.on_state_change(self.name, old_state, new_state)
            except Exception as e:
                logger.warning(f"[{self.name}] State change listener failed: {e}")

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed since the last failure."""
        elapsed = self._elapsed_since_failure()
        if elapsed is None:
            return False
        return elapsed >= self.recovery_timeout

    def _elapsed_since_failure(self) -> float | None:
        """Seconds elapsed since last failure, or None if no failures."""
        if self.last_failure_time is None:
            return None
        return self._clock() - self.last_failure_time

    def _rejection_message(self) -> str:
        if self.state == CircuitState.HALF_OPEN:
            return f"Circuit breaker HALF_OPEN for {self.name} (probe in flight)"
        remaining = self.recovery_timeout - (self._elapsed_since_failure() or 0)
        return f"Circuit breaker OPEN for {self.name} (retry in {max(0.0, remaining):.0f}s)"

    def get_status(self) -> dict[str, Any]:
        """Get current circuit breaker status.

        Returns:
            Status dictionary with state, failures, and timing info
        """
        status: dict[str, Any] = {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "success_rate": round(self.success_rate, 3),
        }

        if self.last_failure_at:
            elapsed = self._elapsed_since_failure()
            status["last_failure"] = self.last_failure_at.isoformat()
            status["elapsed_seconds"] = elapsed

            if self.state == CircuitState.OPEN and elapsed is not None:
                status["retry_in_seconds"] = max(0, self.recovery_timeout - elapsed)

        return status

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        logger.info(f"[{self.name}] Manually resetting circuit breaker")
        self.failures = 0
        self.last_failure_time = None
        self.last_failure_at = None
        self.probe_in_flight = False
        self._outcomes.clear()
        self._transition(CircuitState.CLOSED)


class CircuitBreakerBoard:
    """One circuit breaker per backend id.

    Each breaker carries its own lock, so contention on one backend never
    blocks decisions about another.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        window: int = 20,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: StateListener | None = None,
        ignored_exceptions: tuple[type[BaseException], ...] = (
            CapabilityNotSupportedError,
            RequestValidationError,
        ),
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.window = window
        self.on_state_change = on_state_change
        self.ignored_exceptions = ignored_exceptions
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, backend_id: str, health_probe: HealthProbe | None = None) -> CircuitBreaker:
        """Get (or create) the breaker for a backend."""
        breaker = self._breakers.get(backend_id)
        if breaker is None:
            breaker = CircuitBreaker(
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                name=backend_id,
                health_probe=health_probe,
                window=self.window,
                clock=self._clock,
                on_state_change=self._notify,
                ignored_exceptions=self.ignored_exceptions,
            )
            self._breakers[backend_id] = breaker
        elif health_probe is not None and breaker.health_probe is None:
            breaker.health_probe = health_probe
        return breaker

    def is_available(self, backend_id: str) -> bool:
        breaker = self._breakers.get(backend_id)
        return breaker.is_available() if breaker else True

    def success_rate(self, backend_id: str) -> float:
        breaker = self._breakers.get(backend_id)
        return breaker.success_rate if breaker else 1.0

    def state_of(self, backend_id: str) -> CircuitState:
        breaker = self._breakers.get(backend_id)
        return breaker.state if breaker else CircuitState.CLOSED

    def statuses(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def _notify(self, name: str, old: CircuitState, new: CircuitState) -> None:
        if self.on_state_change is not None:
            self.on_state_change(name, old, new)
