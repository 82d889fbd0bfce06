"""Tests for retry and circuit breaker behaviour."""

import asyncio

import pytest

from ragpipe import (
    CircuitBreaker,
    CircuitState,
    ResilienceService,
    RetryExhaustedError,
    RetryPolicy,
    ServiceUnavailableError,
    TransientError,
    is_transient_error,
)


class FlakyOperation:
    """Callable that fails a number of times before succeeding."""

    def __init__(self, failures: int, error: Exception, result: str = "ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class TestIsTransientError:
    """Tests for transient failure classification."""

    @pytest.mark.parametrize(
        "error",
        [
            TransientError("upstream hiccup"),
            ConnectionError("reset by peer"),
            TimeoutError(),
            asyncio.TimeoutError(),
            RuntimeError("Rate limit exceeded, slow down"),
            RuntimeError("Request TIMEOUT"),
        ],
    )
    def test_transient(self, error):
        """Test network, timeout and rate limit failures are transient."""
        assert is_transient_error(error) is True

    @pytest.mark.parametrize("error", [ValueError("bad input"), KeyError("missing")])
    def test_not_transient(self, error):
        """Test other failures are not retried."""
        assert is_transient_error(error) is False


class TestRetryPolicy:
    """Tests for the retry policy."""

    @pytest.mark.asyncio
    async def test_recovers_from_transient_failures(self, sleep):
        """Test transient failures are retried with exponential backoff."""
        policy = RetryPolicy(max_attempts=3, base_delay=2.0, sleep=sleep)
        operation = FlakyOperation(2, TransientError("blip"))

        assert await policy.execute(operation, "embed") == "ok"
        assert operation.calls == 3
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_transient_passes_through(self, sleep):
        """Test non-transient failures are raised at once."""
        policy = RetryPolicy(sleep=sleep)
        operation = FlakyOperation(5, ValueError("bad input"))

        with pytest.raises(ValueError, match="bad input"):
            await policy.execute(operation, "embed")

        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self, sleep):
        """Test persistent transient failures end in RetryExhaustedError."""
        policy = RetryPolicy(max_attempts=3, base_delay=2.0, sleep=sleep)
        error = TransientError("still down")
        operation = FlakyOperation(10, error)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.execute(operation, "embed")

        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "embed"
        assert exc_info.value.last_error is error
        assert exc_info.value.__cause__ is error
        assert operation.calls == 3
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_max_attempts_override(self, sleep):
        """Test a per-call attempt limit."""
        policy = RetryPolicy(max_attempts=5, sleep=sleep)
        operation = FlakyOperation(10, TransientError("down"))

        with pytest.raises(RetryExhaustedError):
            await policy.execute(operation, "embed", max_attempts=1)

        assert operation.calls == 1
        assert sleep.delays == []

    def test_invalid_attempts(self):
        """Test at least one attempt is required."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestCircuitBreaker:
    """Tests for the circuit breaker."""

    async def _trip(self, breaker: CircuitBreaker, operation) -> None:
        for _ in range(breaker.failure_threshold):
            with pytest.raises(RuntimeError):
                await breaker.call(operation)

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, clock):
        """Test consecutive failures open the circuit and calls fail fast."""
        breaker = CircuitBreaker("generate_answer", failure_threshold=5, clock=clock)
        operation = FlakyOperation(100, RuntimeError("model down"))

        await self._trip(breaker, operation)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(ServiceUnavailableError, match="unavailable for generate_answer"):
            await breaker.call(operation)
        assert operation.calls == 5

    @pytest.mark.asyncio
    async def test_recovers_after_cooldown(self, clock):
        """Test a successful trial call after the cooldown closes the circuit."""
        breaker = CircuitBreaker("op", failure_threshold=5, recovery_timeout=30.0, clock=clock)
        operation = FlakyOperation(5, RuntimeError("down"))
        await self._trip(breaker, operation)

        clock.advance(29)
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await breaker.call(operation)
        assert exc_info.value.retry_after == pytest.approx(1.0)

        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call(operation) == "ok"
        assert operation.calls == 6
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, clock):
        """Test a failed trial call opens the circuit for a fresh cooldown."""
        breaker = CircuitBreaker("op", failure_threshold=5, recovery_timeout=30.0, clock=clock)
        operation = FlakyOperation(100, RuntimeError("down"))
        await self._trip(breaker, operation)

        clock.advance(30)
        with pytest.raises(RuntimeError):
            await breaker.call(operation)
        assert breaker.state == CircuitState.OPEN

        clock.advance(29)
        with pytest.raises(ServiceUnavailableError):
            await breaker.call(operation)
        assert operation.calls == 6

    @pytest.mark.asyncio
    async def test_half_open_allows_single_trial(self, clock):
        """Test concurrent callers are rejected while a trial call runs."""
        breaker = CircuitBreaker("op", failure_threshold=1, recovery_timeout=10.0, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call(FlakyOperation(1, RuntimeError("down")))

        clock.advance(10)
        gate = asyncio.Event()

        async def slow_trial():
            await gate.wait()
            return "recovered"

        trial = asyncio.create_task(breaker.call(slow_trial))
        await asyncio.sleep(0)

        with pytest.raises(ServiceUnavailableError):
            await breaker.call(FlakyOperation(0, RuntimeError("unused")))

        gate.set()
        assert await trial == "recovered"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, clock):
        """Test failures must be consecutive to open the circuit."""
        breaker = CircuitBreaker("op", failure_threshold=3, clock=clock)
        failing = FlakyOperation(100, RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)
        await breaker.call(FlakyOperation(0, RuntimeError("unused")))
        assert breaker.consecutive_failures == 0

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        """Test forcing the circuit closed."""
        breaker = CircuitBreaker("op", failure_threshold=1, clock=clock)
        with pytest.raises(RuntimeError):
            await breaker.call(FlakyOperation(1, RuntimeError("down")))
        assert breaker.state == CircuitState.OPEN

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(FlakyOperation(0, RuntimeError("unused"))) == "ok"


class TestResilienceService:
    """Tests for the resilience service."""

    def test_breakers_are_named(self, resilience):
        """Test one breaker per operation name."""
        assert resilience.get_breaker("a") is resilience.get_breaker("a")
        assert resilience.get_breaker("a") is not resilience.get_breaker("b")

    @pytest.mark.asyncio
    async def test_breakers_are_independent(self, sleep, clock):
        """Test an open circuit does not affect other operations."""
        service = ResilienceService(failure_threshold=2, sleep=sleep, clock=clock)
        failing = FlakyOperation(100, RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await service.execute_with_circuit_breaker(failing, "generate_answer")

        with pytest.raises(ServiceUnavailableError):
            await service.execute_with_circuit_breaker(failing, "generate_answer")

        healthy = FlakyOperation(0, RuntimeError("unused"))
        assert await service.execute_with_circuit_breaker(healthy, "other") == "ok"

    @pytest.mark.asyncio
    async def test_execute_with_retry(self, resilience, sleep):
        """Test retries go through the shared policy."""
        operation = FlakyOperation(1, ConnectionError("reset"))

        assert await resilience.execute_with_retry(operation, "embed_query") == "ok"
        assert sleep.delays == [2.0]
