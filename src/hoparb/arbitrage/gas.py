"""Gas estimates used by discovery and gas bids placed before each hop."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from hoparb.arbitrage.models import Route

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GasSchedule:
    """Estimated network cost per route, denominated in the base asset."""
    triangular: Decimal = Decimal("0.1")
    cross_pair: Decimal = Decimal("0.15")
    base: Decimal = Decimal("0.08")
    per_hop: Decimal = Decimal("0.04")

    def estimate(self, hop_count: int) -> Decimal:
        """Gas for a route with hop_count swaps."""
        if hop_count == 2:
            return self.triangular
        if hop_count == 3:
            return self.cross_pair
        return self.base + self.per_hop * hop_count


class GasBidStrategy(ABC):
    """Prices the gas bid attached to a hop submission."""

    @abstractmethod
    async def bid(self, route: Route, hop_index: int) -> Optional[Decimal]:
        """Return the bid for this hop, or None to use the venue default."""
        pass


class FixedGasBid(GasBidStrategy):
    """Same bid for every hop (None means venue default)."""

    def __init__(self, amount: Optional[Decimal] = None):
        self.amount = amount

    async def bid(self, route: Route, hop_index: int) -> Optional[Decimal]:
        return self.amount


class ProfitProtectedGasBid(GasBidStrategy):
    """Scale bids with expected profit, never spending more than a share of it.

    Larger opportunities justify more aggressive bids; the total across all
    hops is capped at max_budget_percent of expected net profit.
    """

    PROFIT_MULTIPLIERS: tuple[tuple[Decimal, Decimal], ...] = (
        (Decimal("1000"), Decimal("2.5")),
        (Decimal("100"), Decimal("2.0")),
        (Decimal("10"), Decimal("1.5")),
    )
    DEFAULT_MULTIPLIER = Decimal("1.1")

    def __init__(
        self,
        schedule: Optional[GasSchedule] = None,
        max_budget_percent: Decimal = Decimal("0.15"),
    ):
        self.schedule = schedule or GasSchedule()
        self.max_budget_percent = max_budget_percent

    def multiplier_for(self, profit: Decimal) -> Decimal:
        for floor, multiplier in self.PROFIT_MULTIPLIERS:
            if profit >= floor:
                return multiplier
        return self.DEFAULT_MULTIPLIER

    async def bid(self, route: Route, hop_index: int) -> Optional[Decimal]:
        per_hop = route.estimated_gas / route.hop_count
        desired = per_hop * self.multiplier_for(route.net_profit)

        if route.net_profit <= 0:
            return per_hop

        cap = route.net_profit * self.max_budget_percent / route.hop_count
        if desired > cap:
            logger.debug(f"Gas bid for {route.signature} hop {hop_index} capped at {cap}")
            return max(per_hop, cap)
        return desired
