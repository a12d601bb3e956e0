"""Tests for the hop execution pipeline."""

import asyncio
from decimal import Decimal

import pytest
from pydantic import ValidationError

from hoparb.arbitrage.models import ExecutionStatus
from hoparb.config import Settings
from hoparb.errors import QuoteValidationError, SwapSubmissionError
from hoparb.routing.base import FeeTier, TxStatus
from hoparb.routing.dry_run import SimulatedVenue
from hoparb.signing.local import DryRunSigner
from hoparb.swap.executor import ExecutionConfig, ExecutionPipeline
from hoparb.utils.circuit_breaker import CircuitBreaker, CircuitState
from hoparb.utils.precision import quantize_amount


class FlakyVenue(SimulatedVenue):
    """Refuses the nth submission."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.attempts = 0

    async def submit_swap(self, *args, **kwargs):
        self.attempts += 1
        if self.attempts == self.fail_on:
            raise SwapSubmissionError("nonce too low", venue=self.name)
        return await super().submit_swap(*args, **kwargs)


class FakeSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep()


def _seed(venue):
    for symbol in ("SILK", "TOWN", "GUSDC"):
        venue.add_pool("GALA", symbol, Decimal("1000000"), Decimal("1000000"), FeeTier.STANDARD)
    venue.add_pool("SILK", "TOWN", Decimal("1000000"), Decimal("1000000"), FeeTier.STANDARD)
    return venue


def _pipeline(venue, probe, learning_store=None, sleep=None):
    return ExecutionPipeline(
        venue=venue,
        probe=probe,
        signer=DryRunSigner(),
        swap_breaker=CircuitBreaker("swap-execution"),
        monitor_breaker=CircuitBreaker("transaction-monitor"),
        learning_store=learning_store,
        config=ExecutionConfig(),
        sleep=sleep or FakeSleep(),
    )


@pytest.fixture
def sim_venue():
    return _seed(SimulatedVenue())


@pytest.fixture
def sim_probe(sim_venue, quote_breaker):
    from hoparb.routing.probe import LiquidityProbe

    return LiquidityProbe(sim_venue, quote_breaker, fee_tiers=(FeeTier.STANDARD,))


class TestExecuteRoute:
    """Tests for single-route execution."""

    @pytest.mark.asyncio
    async def test_successful_route(self, sim_venue, sim_probe, learning_store, route_factory):
        """Test every hop is submitted in order and the outcome is recorded."""
        route = route_factory(("GALA", "SILK", "TOWN", "GALA"))
        pipeline = _pipeline(sim_venue, sim_probe, learning_store)

        result = await pipeline.execute_route(route)

        assert result.status == ExecutionStatus.SUCCESS
        assert result.executed_hops == 3
        assert result.transaction_ids == [h.tx_id for h in sim_venue.submitted]
        assert [(h.asset_in.symbol, h.asset_out.symbol) for h in result.hops] == [
            ("GALA", "SILK"),
            ("SILK", "TOWN"),
            ("TOWN", "GALA"),
        ]
        assert result.hops[0].confirmation == "CONFIRMED"
        assert result.hops[0].block_number is not None
        assert result.hops[-1].confirmation is None
        assert result.final_amount < route.input_amount
        assert result.realized_profit == result.final_amount - route.input_amount
        assert result.realized_profit_percent < 0

        perf = learning_store.get_performance(route.signature)
        assert perf.attempts == 1
        assert perf.successes == 1

    @pytest.mark.asyncio
    async def test_slippage_protection(self, sim_venue, sim_probe, route_factory):
        """Test min output and the next hop's input sit below the quote."""
        route = route_factory(("GALA", "SILK", "GALA"))
        pipeline = _pipeline(sim_venue, sim_probe)

        result = await pipeline.execute_route(route)

        first, second = result.hops
        assert first.min_amount_out == quantize_amount(first.quoted_output * Decimal("0.98"), 8)
        assert second.amount_in == quantize_amount(first.quoted_output * Decimal("0.995"), 8)
        assert second.amount_in < first.quoted_output

    @pytest.mark.asyncio
    async def test_first_submission_failure(self, sim_venue, sim_probe, learning_store, route_factory):
        """Test a refused first hop fails the route with nothing executed."""
        sim_venue.fail_next_submissions(1)
        route = route_factory(("GALA", "SILK", "GALA"))
        pipeline = _pipeline(sim_venue, sim_probe, learning_store)

        result = await pipeline.execute_route(route)

        assert result.status == ExecutionStatus.FAILED
        assert result.hops == []
        assert "submission failed" in result.error
        perf = learning_store.get_performance(route.signature)
        assert perf.attempts == 1
        assert perf.successes == 0

    @pytest.mark.asyncio
    async def test_later_submission_failure_is_partial(self, quote_breaker, route_factory):
        """Test completed hops are kept when a later submission fails."""
        from hoparb.routing.probe import LiquidityProbe

        venue = _seed(FlakyVenue(fail_on=2))
        probe = LiquidityProbe(venue, quote_breaker, fee_tiers=(FeeTier.STANDARD,))
        pipeline = _pipeline(venue, probe)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "TOWN", "GALA")))

        assert result.status == ExecutionStatus.PARTIAL
        assert result.executed_hops == 1
        assert result.realized_profit is None

    @pytest.mark.asyncio
    async def test_failed_confirmation_aborts(self, sim_venue, sim_probe, route_factory):
        """Test a FAILED confirmation stops the remaining hops."""
        sim_venue.script_confirmations(TxStatus.FAILED)
        pipeline = _pipeline(sim_venue, sim_probe)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "TOWN", "GALA")))

        assert result.status == ExecutionStatus.PARTIAL
        assert result.executed_hops == 1
        assert result.hops[0].confirmation == "FAILED"
        assert len(sim_venue.submitted) == 1

    @pytest.mark.asyncio
    async def test_unknown_confirmation_aborts(self, sim_venue, sim_probe, route_factory):
        """Test an UNKNOWN confirmation is treated like a failure."""
        sim_venue.script_confirmations(TxStatus.CONFIRMED, TxStatus.UNKNOWN)
        pipeline = _pipeline(sim_venue, sim_probe)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "TOWN", "GALA")))

        assert result.status == ExecutionStatus.PARTIAL
        assert result.executed_hops == 2

    @pytest.mark.asyncio
    async def test_timeout_proceeds_after_grace_delay(self, sim_venue, sim_probe, route_factory):
        """Test a confirmation timeout waits once more and continues."""
        sim_venue.script_confirmations(TxStatus.TIMEOUT)
        sleep = FakeSleep()
        pipeline = _pipeline(sim_venue, sim_probe, sleep=sleep)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "GALA")))

        assert result.status == ExecutionStatus.SUCCESS
        assert result.hops[0].confirmation == "TIMEOUT"
        assert sleep.calls == [5.0]

    @pytest.mark.asyncio
    async def test_monitor_breaker_open_aborts(self, sim_venue, sim_probe, route_factory):
        """Test an unavailable status dependency aborts after the submitted hop."""
        pipeline = _pipeline(sim_venue, sim_probe)
        pipeline.monitor_breaker.force_state(CircuitState.OPEN)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "GALA")))

        assert result.status == ExecutionStatus.PARTIAL
        assert result.hops[0].confirmation == "UNKNOWN"

    @pytest.mark.asyncio
    async def test_swap_breaker_open_submits_nothing(self, sim_venue, sim_probe, route_factory):
        """Test an open swap breaker fails the route before any submission."""
        pipeline = _pipeline(sim_venue, sim_probe)
        pipeline.swap_breaker.force_state(CircuitState.OPEN)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "GALA")))

        assert result.status == ExecutionStatus.FAILED
        assert sim_venue.submitted == []
        assert not result.skipped

    @pytest.mark.asyncio
    async def test_missing_pool_at_execution(self, sim_venue, sim_probe, route_factory):
        """Test a route whose pool vanished fails without raising."""
        pipeline = _pipeline(sim_venue, sim_probe)

        result = await pipeline.execute_route(route_factory(("GALA", "ETIME", "GALA")))

        assert result.status == ExecutionStatus.FAILED
        assert "Failed to get quote" in result.error

    @pytest.mark.asyncio
    async def test_stop_finishes_current_hop(self, sim_venue, sim_probe, route_factory):
        """Test a stop request lets the current hop finish and skips the rest."""
        sim_venue.script_confirmations(TxStatus.TIMEOUT)
        pipeline = _pipeline(sim_venue, sim_probe)
        pipeline._sleep = FakeSleep(on_sleep=pipeline.request_stop)

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "TOWN", "GALA")))

        assert result.status == ExecutionStatus.PARTIAL
        assert result.executed_hops == 1
        assert "Shutdown" in result.error

    @pytest.mark.asyncio
    async def test_stop_before_first_hop_is_not_recorded(self, sim_venue, sim_probe, learning_store, route_factory):
        """Test a route skipped by a stop request leaves its history untouched."""
        route = route_factory(("GALA", "SILK", "GALA"))
        pipeline = _pipeline(sim_venue, sim_probe, learning_store)
        pipeline.request_stop()

        result = await pipeline.execute_route(route)

        assert result.status == ExecutionStatus.FAILED
        assert sim_venue.submitted == []
        assert result.skipped
        assert learning_store.get_performance(route.signature) is None
        assert learning_store.global_stats.total_attempted_trades == 0

    @pytest.mark.asyncio
    async def test_stop_after_a_submitted_hop_is_recorded(self, sim_venue, sim_probe, learning_store, route_factory):
        """Test a route stopped midway still counts as a failed attempt."""
        sim_venue.script_confirmations(TxStatus.TIMEOUT)
        route = route_factory(("GALA", "SILK", "TOWN", "GALA"))
        pipeline = _pipeline(sim_venue, sim_probe, learning_store)
        pipeline._sleep = FakeSleep(on_sleep=pipeline.request_stop)

        result = await pipeline.execute_route(route)

        assert result.status == ExecutionStatus.PARTIAL
        assert not result.skipped
        perf = learning_store.get_performance(route.signature)
        assert perf.attempts == 1
        assert perf.successes == 0


class TestSlippageBounds:
    """Tests for rejecting unsafe slippage settings."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"exit_safety_margin": Decimal("1.5")},
            {"exit_safety_margin": Decimal("0.06")},
            {"exit_safety_margin": Decimal("-0.01")},
            {"inter_hop_slippage_buffer": Decimal("-0.2")},
            {"inter_hop_slippage_buffer": Decimal("1")},
        ],
    )
    def test_execution_config_rejects_out_of_bounds(self, kwargs):
        """Test margins outside [0, 5%] are refused before anything is submitted."""
        with pytest.raises(QuoteValidationError):
            ExecutionConfig(**kwargs)

    def test_execution_config_accepts_bounds(self):
        """Test the limits themselves are allowed."""
        config = ExecutionConfig(exit_safety_margin=Decimal("0.05"), inter_hop_slippage_buffer=Decimal("0"))

        assert config.exit_safety_margin == Decimal("0.05")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"exit_safety_margin": Decimal("1.5")},
            {"inter_hop_slippage_buffer": Decimal("-0.2")},
        ],
    )
    def test_settings_reject_out_of_bounds(self, kwargs):
        """Test configuration refuses unsafe slippage values."""
        with pytest.raises(ValidationError):
            Settings(**kwargs)

    @pytest.mark.asyncio
    async def test_min_output_never_negative(self, sim_venue, sim_probe, route_factory):
        """Test the widest allowed margin still protects every hop."""
        pipeline = _pipeline(sim_venue, sim_probe)
        pipeline.config = ExecutionConfig(exit_safety_margin=Decimal("0.05"))

        result = await pipeline.execute_route(route_factory(("GALA", "SILK", "GALA")))

        assert result.status == ExecutionStatus.SUCCESS
        for hop in result.hops:
            assert Decimal("0") < hop.min_amount_out < hop.quoted_output


class TestExecuteBatches:
    """Tests for batch sequencing."""

    @pytest.mark.asyncio
    async def test_batches_run_sequentially(self, sim_venue, sim_probe, route_factory):
        """Test batch n+1 starts only after batch n finished."""
        pipeline = _pipeline(sim_venue, sim_probe)
        events = []

        async def fake_execute(route):
            events.append(("start", route.signature))
            await asyncio.sleep(0)
            events.append(("end", route.signature))
            return route.signature

        pipeline.execute_route = fake_execute
        a = route_factory(("GALA", "SILK", "GALA"))
        b = route_factory(("GUSDC", "TOWN", "GUSDC"))
        c = route_factory(("GALA", "TOWN", "GALA"))

        results = await pipeline.execute_batches([[a, b], [c]])

        assert results == [a.signature, b.signature, c.signature]
        # Both batch-one routes started before either finished
        assert events[:2] == [("start", a.signature), ("start", b.signature)]
        assert events.index(("start", c.signature)) > events.index(("end", b.signature))
        assert events.index(("start", c.signature)) > events.index(("end", a.signature))

    @pytest.mark.asyncio
    async def test_stop_skips_remaining_batches(self, sim_venue, sim_probe, route_factory):
        """Test no batch starts after a stop request."""
        pipeline = _pipeline(sim_venue, sim_probe)
        pipeline.request_stop()

        results = await pipeline.execute_batches([[route_factory(("GALA", "SILK", "GALA"))]])

        assert results == []
        assert sim_venue.submitted == []

    @pytest.mark.asyncio
    async def test_real_batches(self, sim_venue, sim_probe, route_factory):
        """Test a failed route does not stop its batch or later batches."""
        sim_venue.fail_next_submissions(1)
        pipeline = _pipeline(sim_venue, sim_probe)
        a = route_factory(("GALA", "SILK", "GALA"))
        b = route_factory(("GALA", "TOWN", "GALA"))

        results = await pipeline.execute_batches([[a], [b]])

        assert [r.status for r in results] == [ExecutionStatus.FAILED, ExecutionStatus.SUCCESS]
