"""Tests for the liquidity probe and position sizing."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from hoparb.errors import QuoteValidationError, VenueError
from hoparb.routing.base import FeeTier, VenueQuote
from hoparb.routing.probe import (
    LiquidityProbe,
    SizingConfig,
    implied_slippage,
    size_for_slippage,
)
from hoparb.utils.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


def _quote(asset_in, asset_out, amount, output, tier):
    return VenueQuote(asset_in=asset_in, asset_out=asset_out, amount_in=amount, output_amount=Decimal(output), fee_tier=tier)


class TestValidation:
    """Tests for request validation."""

    @pytest.mark.asyncio
    async def test_same_asset_rejected_before_io(self, probe, venue, assets):
        """Test quoting an asset against itself never reaches the venue."""
        with pytest.raises(QuoteValidationError):
            await probe.quote(assets["GALA"], assets["GALA"], Decimal("1"))
        assert venue.quote_calls == 0

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, probe, venue, assets):
        """Test zero and negative amounts are invalid."""
        for amount in (Decimal("0"), Decimal("-1")):
            with pytest.raises(QuoteValidationError):
                await probe.quote(assets["GALA"], assets["SILK"], amount)
        assert venue.quote_calls == 0

    @pytest.mark.asyncio
    async def test_validation_errors_do_not_trip_breaker(self, venue, assets):
        """Test invalid requests leave the breaker closed."""
        breaker = CircuitBreaker(
            "quote",
            CircuitBreakerConfig(failure_threshold=1),
            ignored_exceptions=(QuoteValidationError,),
        )
        probe = LiquidityProbe(venue, breaker)

        with pytest.raises(QuoteValidationError):
            await probe.quote_tier(assets["GALA"], assets["GALA"], Decimal("1"), FeeTier.STANDARD)

        assert breaker.state == CircuitState.CLOSED


class TestQuoting:
    """Tests for single and multi-tier quotes."""

    @pytest.mark.asyncio
    async def test_single_tier_quote(self, probe, assets):
        """Test a quote through an existing pool."""
        quote = await probe.quote(assets["GALA"], assets["SILK"], Decimal("10"))

        assert quote is not None
        assert quote.fee_tier == FeeTier.STANDARD
        assert Decimal("9.9") < quote.output_amount < Decimal("10")

    @pytest.mark.asyncio
    async def test_no_pool_returns_none(self, probe, assets):
        """Test a missing pool is not an error."""
        assert await probe.quote(assets["SILK"], assets["TOWN"], Decimal("10")) is None

    @pytest.mark.asyncio
    async def test_best_tier_keeps_highest_output(self, assets, quote_breaker):
        """Test every tier is quoted and the best output wins."""
        gala, silk = assets["GALA"], assets["SILK"]
        outputs = {500: "9.0", 3000: "9.7", 10000: "9.5"}
        venue = AsyncMock()
        venue.quote.side_effect = lambda a, b, amount, tier: _quote(a, b, amount, outputs[tier], tier)

        probe = LiquidityProbe(venue, quote_breaker)
        quote = await probe.quote(gala, silk, Decimal("10"))

        assert venue.quote.await_count == 3
        assert quote.fee_tier == 3000
        assert quote.output_amount == Decimal("9.7")

    @pytest.mark.asyncio
    async def test_best_tier_tolerates_failing_tiers(self, assets, quote_breaker):
        """Test a failing tier is skipped."""
        gala, silk = assets["GALA"], assets["SILK"]

        async def quote(a, b, amount, tier):
            if tier == 500:
                raise VenueError("timeout", venue="test")
            if tier == 10000:
                return None
            return _quote(a, b, amount, "9.7", tier)

        venue = AsyncMock()
        venue.quote.side_effect = quote

        probe = LiquidityProbe(venue, quote_breaker)
        result = await probe.quote(gala, silk, Decimal("10"))

        assert result.fee_tier == 3000

    @pytest.mark.asyncio
    async def test_all_tiers_failing_returns_none(self, assets, quote_breaker):
        """Test None when no tier produced a quote."""
        venue = AsyncMock()
        venue.quote.side_effect = VenueError("down", venue="test")

        probe = LiquidityProbe(venue, quote_breaker)

        assert await probe.quote(assets["GALA"], assets["SILK"], Decimal("10")) is None

    @pytest.mark.asyncio
    async def test_single_tier_errors_become_none(self, assets, quote_breaker):
        """Test venue errors are absorbed by quote() but propagate from quote_tier()."""
        venue = AsyncMock()
        venue.quote.side_effect = VenueError("down", venue="test")
        probe = LiquidityProbe(venue, quote_breaker, use_multi_fee_tier=False)

        assert await probe.quote(assets["GALA"], assets["SILK"], Decimal("10")) is None
        with pytest.raises(VenueError):
            await probe.quote_tier(assets["GALA"], assets["SILK"], Decimal("10"), FeeTier.STANDARD)

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self, assets, quote_breaker):
        """Test no venue call is made while the quote breaker is open."""
        venue = AsyncMock()
        quote_breaker.force_state(CircuitState.OPEN)
        probe = LiquidityProbe(venue, quote_breaker)

        assert await probe.quote(assets["GALA"], assets["SILK"], Decimal("10")) is None
        assert venue.quote.await_count == 0


class TestSizing:
    """Tests for slippage-based position sizing."""

    def test_implied_slippage(self):
        """Test slippage from a 1x and 2x quote."""
        assert implied_slippage(Decimal("10"), Decimal("20")) == Decimal("0")
        assert implied_slippage(Decimal("10"), Decimal("19")) == Decimal("5")

    def test_size_curve_bounds(self):
        """Test extremes of the sizing curve."""
        config = SizingConfig()

        assert size_for_slippage(Decimal("0.001"), config) == Decimal("100")
        assert size_for_slippage(Decimal("0.05"), config) == Decimal("75")
        assert size_for_slippage(Decimal("5"), config) == Decimal("5")

    def test_size_is_non_increasing_in_slippage(self):
        """Test more slippage never produces a larger position."""
        config = SizingConfig(test_amount=Decimal("100"))
        slippages = [Decimal(s) for s in ("0.001", "0.05", "0.1", "0.25", "0.5", "1", "2", "3", "4")]
        sizes = [size_for_slippage(s, config) for s in slippages]

        assert sizes == sorted(sizes, reverse=True)
        assert all(config.min_size <= size <= config.max_size for size in sizes)

    @pytest.mark.asyncio
    async def test_deep_pool_gets_max_size(self, probe, assets):
        """Test a deep pool shows negligible slippage."""
        size = await probe.estimate_optimal_size(assets["GALA"], assets["SILK"])

        assert size == Decimal("100")

    @pytest.mark.asyncio
    async def test_missing_pool_gets_min_size(self, probe, assets):
        """Test min size when the trial quotes fail."""
        size = await probe.estimate_optimal_size(assets["SILK"], assets["TOWN"])

        assert size == Decimal("5")
