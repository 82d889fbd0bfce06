"""Retry and circuit breaker wrappers for collaborator calls."""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import RetryExhaustedError, ServiceUnavailableError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]

_TRANSIENT_MARKERS = ("rate limit", "timeout")


def is_transient_error(error: BaseException) -> bool:
    """Return True if a failure is likely to succeed on retry.

    Network errors, timeouts and ``TransientError`` are transient, as is
    any error whose message mentions a rate limit or a timeout.
    """
    if isinstance(error, (TransientError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class RetryPolicy:
    """Retry transient failures with exponential backoff.

    The delay before attempt ``n + 1`` is ``base_delay ** n`` seconds
    (2s, 4s, 8s, ... by default). Non-transient failures are raised
    immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the retry policy.

        Args:
            max_attempts: Total number of attempts, first call included
            base_delay: Base of the exponential backoff in seconds
            sleep: Coroutine used to wait between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        return self.base_delay ** attempt

    async def execute(
        self,
        operation: Operation[T],
        operation_name: str,
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run an operation, retrying transient failures.

        Raises:
            RetryExhaustedError: If every attempt failed transiently
        """
        attempts = max_attempts or self.max_attempts

        attempt = 1
        while True:
            try:
                logger.debug(f"Executing {operation_name} (attempt {attempt})")
                return await operation()
            except Exception as e:
                if not is_transient_error(e):
                    raise
                if attempt >= attempts:
                    logger.error(f"{operation_name} failed after {attempts} attempts: {e}")
                    raise RetryExhaustedError(operation_name, attempts, e) from e

                delay = self.delay_for(attempt)
                logger.warning(f"Retry {attempt} for {operation_name} after {delay}s due to: {e}")
                await self._sleep(delay)
            attempt += 1


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stop calling a failing dependency for a cooldown period.

    After ``failure_threshold`` consecutive failures the circuit opens and
    every call fails fast with ``ServiceUnavailableError``. Once
    ``recovery_timeout`` seconds have passed, a single trial call is let
    through: success closes the circuit, failure opens it again.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the circuit breaker.

        Args:
            name: Operation name used in errors and logs
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds the circuit stays open
            clock: Time source in seconds
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state; an open circuit past its cooldown reports HALF_OPEN."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._cooldown_elapsed():
                return CircuitState.HALF_OPEN
            return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    async def call(self, operation: Operation[T]) -> T:
        """Run an operation through the breaker.

        Raises:
            ServiceUnavailableError: If the circuit is open
        """
        self._before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            with self._lock:
                self._trial_in_flight = False
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force the circuit closed."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_in_flight = False

    def _cooldown_elapsed(self) -> bool:
        return self._clock() - self._opened_at >= self.recovery_timeout

    def _before_call(self) -> None:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    retry_after = self.recovery_timeout - (self._clock() - self._opened_at)
                    logger.error(f"Circuit breaker is open for {self.name}")
                    raise ServiceUnavailableError(self.name, retry_after)
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker for {self.name} half-open, testing...")

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise ServiceUnavailableError(self.name)
                self._trial_in_flight = True

    def _on_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info(f"Circuit breaker for {self.name} reset")
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_in_flight = False

    def _on_failure(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.error(
                    f"Circuit breaker for {self.name} opened for {self.recovery_timeout}s "
                    f"after {self._failures} consecutive failures"
                )


class ResilienceService:
    """Shared retry policy plus one circuit breaker per operation name."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retry_policy = RetryPolicy(max_attempts, base_delay, sleep=sleep)
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_breaker(self, operation_name: str) -> CircuitBreaker:
        """Get or create the breaker for an operation name."""
        with self._lock:
            breaker = self._breakers.get(operation_name)
            if breaker is None:
                breaker = CircuitBreaker(
                    operation_name,
                    self.failure_threshold,
                    self.recovery_timeout,
                    clock=self._clock,
                )
                self._breakers[operation_name] = breaker
            return breaker

    async def execute_with_retry(
        self,
        operation: Operation[T],
        operation_name: str,
        max_attempts: Optional[int] = None,
    ) -> T:
        return await self.retry_policy.execute(operation, operation_name, max_attempts)

    async def execute_with_circuit_breaker(
        self,
        operation: Operation[T],
        operation_name: str,
    ) -> T:
        return await self.get_breaker(operation_name).call(operation)
