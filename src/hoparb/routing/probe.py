"""Liquidity probe.

Issues breaker-gated trial quotes against the venue: single-tier quotes,
best-of-tiers quotes fired concurrently, and a two-point depth probe used to
size positions.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from hoparb.errors import QuoteValidationError
from hoparb.routing.base import Asset, FeeTier, SwapVenue, VenueQuote
from hoparb.utils.circuit_breaker import CircuitBreaker
from hoparb.utils.precision import HUNDRED, clamp, floor_units

logger = logging.getLogger(__name__)

DEFAULT_FEE_TIERS: tuple[int, ...] = (FeeTier.STABLE, FeeTier.STANDARD, FeeTier.VOLATILE)


@dataclass(frozen=True)
class SizingConfig:
    """Position sizing bounds. Impacts are percentages."""
    min_size: Decimal = Decimal("5")
    max_size: Decimal = Decimal("100")
    target_impact: Decimal = Decimal("1.0")
    max_impact: Decimal = Decimal("3.0")
    test_amount: Decimal = Decimal("1")


def implied_slippage(single_output: Decimal, double_output: Decimal) -> Decimal:
    """Slippage (%) implied by quoting x and 2x.

    With no price impact the 2x quote returns exactly twice the 1x quote.
    """
    linear = single_output * 2
    return (linear - double_output) / linear * HUNDRED


def size_for_slippage(slippage: Decimal, config: SizingConfig) -> Decimal:
    """Map measured slippage to a position size.

    Non-increasing in slippage: near-zero slippage gets max_size, anything
    above max_impact gets min_size. The square-root band never exceeds the
    0.75 * max_size step below it.
    """
    if slippage > config.max_impact:
        return config.min_size
    if slippage < Decimal("0.01"):
        return config.max_size
    reduced_max = max(config.min_size, floor_units(config.max_size * Decimal("0.75")))
    if slippage < Decimal("0.1"):
        return reduced_max

    scale = (config.target_impact / slippage).sqrt() * Decimal("0.7")
    size = config.test_amount * 2 * scale
    return floor_units(clamp(size, config.min_size, reduced_max))


class LiquidityProbe:
    """Breaker-gated quoting front end for discovery and execution."""

    def __init__(
        self,
        venue: SwapVenue,
        breaker: CircuitBreaker,
        fee_tiers: Sequence[int] = DEFAULT_FEE_TIERS,
        use_multi_fee_tier: bool = True,
        sizing: Optional[SizingConfig] = None,
    ):
        self.venue = venue
        self.breaker = breaker
        self.fee_tiers = tuple(fee_tiers)
        self.use_multi_fee_tier = use_multi_fee_tier
        self.sizing = sizing or SizingConfig()

    @staticmethod
    def validate(asset_in: Asset, asset_out: Asset, amount: Decimal) -> None:
        """Reject requests that must never reach the venue.

        Raises:
            QuoteValidationError: Same asset on both sides or non-positive amount
        """
        if asset_in == asset_out:
            raise QuoteValidationError(f"Cannot quote {asset_in} against itself")
        if amount <= 0:
            raise QuoteValidationError(f"Quote amount must be positive, got {amount}")

    async def quote_tier(
        self,
        asset_in: Asset,
        asset_out: Asset,
        amount: Decimal,
        fee_tier: int,
    ) -> Optional[VenueQuote]:
        """Quote a single tier through the breaker. Venue errors propagate."""
        self.validate(asset_in, asset_out, amount)
        return await self.breaker.execute(
            lambda: self.venue.quote(asset_in, asset_out, amount, fee_tier)
        )

    async def quote_best_tier(
        self,
        asset_in: Asset,
        asset_out: Asset,
        amount: Decimal,
    ) -> Optional[VenueQuote]:
        """Quote every configured tier concurrently and keep the best output.

        Individual tier failures are tolerated. Returns None when no tier
        produced a quote.
        """
        self.validate(asset_in, asset_out, amount)
        results = await asyncio.gather(
            *(self.quote_tier(asset_in, asset_out, amount, tier) for tier in self.fee_tiers),
            return_exceptions=True,
        )

        quotes: list[VenueQuote] = []
        for tier, result in zip(self.fee_tiers, results):
            if isinstance(result, BaseException):
                logger.debug(f"Tier {tier} quote {asset_in}->{asset_out} failed: {result}")
            elif result is not None:
                quotes.append(result)

        if not quotes:
            return None
        return max(quotes, key=lambda q: q.output_amount)

    async def quote(
        self,
        asset_in: Asset,
        asset_out: Asset,
        amount: Decimal,
        multi_tier: Optional[bool] = None,
    ) -> Optional[VenueQuote]:
        """Quote a hop, returning None for no pool or a failed dependency.

        Args:
            asset_in: Asset sold
            asset_out: Asset bought
            amount: Amount of asset_in
            multi_tier: Override use_multi_fee_tier for this call

        Returns:
            Best available quote, or None

        Raises:
            QuoteValidationError: Invalid request (no I/O was attempted)
        """
        self.validate(asset_in, asset_out, amount)
        use_all = self.use_multi_fee_tier if multi_tier is None else multi_tier

        if use_all:
            return await self.quote_best_tier(asset_in, asset_out, amount)

        try:
            return await self.quote_tier(asset_in, asset_out, amount, FeeTier.STANDARD)
        except QuoteValidationError:
            raise
        except Exception as e:
            logger.debug(f"Quote {amount} {asset_in}->{asset_out} failed: {e}")
            return None

    async def estimate_optimal_size(self, asset_in: Asset, asset_out: Asset) -> Decimal:
        """Size a position from the pair's measured price impact.

        Falls back to min_size when either trial quote is unavailable.
        """
        test_amount = self.sizing.test_amount
        single = await self.quote(asset_in, asset_out, test_amount)
        double = await self.quote(asset_in, asset_out, test_amount * 2)

        if single is None or double is None or single.output_amount <= 0:
            logger.debug(f"No depth data for {asset_in}->{asset_out}, using min size")
            return self.sizing.min_size

        slippage = implied_slippage(single.output_amount, double.output_amount)
        size = size_for_slippage(slippage, self.sizing)
        logger.debug(f"Sized {asset_in}->{asset_out}: slippage {slippage:.4f}% -> {size}")
        return size
