"""Tests for circuit breakers and the breaker registry."""

import pytest

from hoparb.errors import QuoteValidationError, VenueError
from hoparb.utils.circuit_breaker import (
    BREAKER_PRESETS,
    QUOTE_BREAKER,
    SWAP_BREAKER,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerRegistry,
    CircuitState,
    create_preset_breakers,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _fail():
    raise VenueError("venue down", venue="test")


async def _ok():
    return "ok"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout=15, monitoring_window=30)
    return CircuitBreaker("quote", config, clock=clock)


async def _trip(breaker, count):
    for _ in range(count):
        with pytest.raises(VenueError):
            await breaker.execute(_fail)


class TestCircuitBreakerStates:
    """Tests for the CLOSED/OPEN/HALF_OPEN state machine."""

    @pytest.mark.asyncio
    async def test_two_failures_then_rejected(self, clock):
        """Test threshold two: two failures open it and the third call never runs."""
        breaker = CircuitBreaker("swap-execution", CircuitBreakerConfig(failure_threshold=2), clock=clock)
        await _trip(breaker, 2)
        calls = []

        async def operation():
            calls.append(1)

        with pytest.raises(CircuitBreakerError):
            await breaker.execute(operation)
        assert calls == []

    @pytest.mark.asyncio
    async def test_opens_at_failure_threshold(self, breaker):
        """Test three failures in the window open the breaker."""
        await _trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

        await _trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_breaker_rejects_without_calling(self, breaker, clock):
        """Test an open breaker fails fast and never invokes the operation."""
        await _trip(breaker, 3)
        calls = []

        async def operation():
            calls.append(1)
            return "ok"

        clock.advance(10)
        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.execute(operation)

        assert calls == []
        assert exc_info.value.code == "CIRCUIT_OPEN"
        assert exc_info.value.retry_after == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_half_open_after_timeout_then_closes(self, breaker, clock):
        """Test the first call after the timeout probes and successes close the breaker."""
        await _trip(breaker, 3)
        clock.advance(16)

        assert breaker.can_execute()
        assert await breaker.execute(_ok) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.execute(_ok)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        """Test a failure in HALF_OPEN reopens with a fresh timeout."""
        await _trip(breaker, 3)
        clock.advance(16)

        await _trip(breaker, 1)

        assert breaker.state == CircuitState.OPEN
        assert breaker.next_attempt_time == pytest.approx(clock.now + 15)

    @pytest.mark.asyncio
    async def test_failures_outside_window_do_not_count(self, breaker, clock):
        """Test failures older than the monitoring window are pruned."""
        await _trip(breaker, 2)
        clock.advance(31)
        await _trip(breaker, 1)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_status()["failures_in_window"] == 1

    @pytest.mark.asyncio
    async def test_success_in_closed_clears_failures(self, breaker):
        """Test a success while closed resets the failure count."""
        await _trip(breaker, 2)
        await breaker.execute(_ok)
        await _trip(breaker, 2)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_ignored_exceptions_not_counted(self, clock):
        """Test validation errors pass through without counting as failures."""
        breaker = CircuitBreaker(
            "quote",
            CircuitBreakerConfig(failure_threshold=1),
            ignored_exceptions=(QuoteValidationError,),
            clock=clock,
        )

        async def invalid():
            raise QuoteValidationError("bad amount")

        with pytest.raises(QuoteValidationError):
            await breaker.execute(invalid)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_force_state_and_reset(self, breaker):
        """Test operator overrides."""
        breaker.force_state(CircuitState.OPEN)
        assert not breaker.can_execute()

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_execute()

    @pytest.mark.asyncio
    async def test_status_snapshot(self, breaker, clock):
        """Test status reports time until the next attempt while open."""
        await _trip(breaker, 3)
        clock.advance(5)

        status = breaker.get_status()

        assert status["name"] == "quote"
        assert status["state"] == "OPEN"
        assert status["failure_count"] == 3
        assert status["time_until_next_attempt"] == pytest.approx(10.0)


class TestCircuitBreakerRegistry:
    """Tests for the registry and presets."""

    def test_presets(self):
        """Test preset thresholds per dependency."""
        registry = CircuitBreakerRegistry()
        breakers = create_preset_breakers(registry)

        assert set(breakers) == set(BREAKER_PRESETS)
        assert breakers[QUOTE_BREAKER].config.failure_threshold == 3
        assert breakers[SWAP_BREAKER].config.failure_threshold == 2
        assert breakers[SWAP_BREAKER].config.timeout == 60

    def test_get_or_create_returns_existing(self):
        """Test presets are registered once."""
        registry = CircuitBreakerRegistry()
        first = create_preset_breakers(registry)
        second = create_preset_breakers(registry)

        assert first[QUOTE_BREAKER] is second[QUOTE_BREAKER]

    def test_health_summary(self):
        """Test counts per state and severity flags."""
        registry = CircuitBreakerRegistry()
        breakers = create_preset_breakers(registry)

        summary = registry.get_health_summary()
        assert summary["total"] == 4
        assert summary["healthy"] is True
        assert summary["critical"] is False

        breakers[QUOTE_BREAKER].force_state(CircuitState.OPEN)
        breakers[SWAP_BREAKER].force_state(CircuitState.OPEN)
        summary = registry.get_health_summary()

        assert summary["open"] == 2
        assert summary["healthy"] is False
        assert summary["degraded"] is True
        assert summary["critical"] is True

        registry.reset_all()
        assert registry.get_health_summary()["closed"] == 4
