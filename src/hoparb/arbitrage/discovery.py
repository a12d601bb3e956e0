"""Route discovery.

Searches for cycles base -> ... -> base whose quoted output beats the input
by more than gas and the profit threshold:

- triangular:  base -> T -> base            (2 swaps)
- cross-pair:  base -> A -> B -> base       (3 swaps)
- multi-hop:   depth-first search, 4 to 6 swaps, under a leaf-route budget

All profit arithmetic is Decimal. A candidate whose quotes fail or find no
pool is dropped and logged at debug level; one bad pair never aborts a scan.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from hoparb.arbitrage.gas import GasSchedule
from hoparb.arbitrage.models import Confidence, Route
from hoparb.routing.base import Asset
from hoparb.routing.probe import LiquidityProbe
from hoparb.utils.precision import HUNDRED, percentage_change

logger = logging.getLogger(__name__)

MIN_MULTI_HOP = 4
MAX_MULTI_HOP = 6
DEEP_ROUTE_DEPTH = 5


@dataclass
class SearchBudget:
    """Leaf-route budget threaded through the recursive search."""

    max_routes: int
    explored: int = 0

    @property
    def exhausted(self) -> bool:
        return self.explored >= self.max_routes

    def consume(self) -> None:
        self.explored += 1


@dataclass(frozen=True)
class DiscoveryConfig:
    """Discovery tunables. Percentages are plain numbers (1.0 means 1%)."""
    min_profit_threshold: Decimal = Decimal("1.0")
    default_trade_size: Decimal = Decimal("10")
    dynamic_sizing: bool = True
    max_routes_to_explore: int = 150
    step_loss_floor: Optional[Decimal] = Decimal("-5")
    high_confidence_multiple: Decimal = Decimal("2.0")
    medium_confidence_multiple: Decimal = Decimal("1.5")
    gas: GasSchedule = field(default_factory=GasSchedule)


def classify_confidence(
    net_profit_percent: Decimal,
    threshold: Decimal,
    high_multiple: Decimal = Decimal("2.0"),
    medium_multiple: Decimal = Decimal("1.5"),
) -> Confidence:
    if net_profit_percent > threshold * high_multiple:
        return Confidence.HIGH
    if net_profit_percent > threshold * medium_multiple:
        return Confidence.MEDIUM
    return Confidence.LOW


def calculate_market_volatility(routes: Iterable[Route]) -> float:
    """Mean absolute gross profit (%) across observed routes.

    Display-grade number fed to the learning store's volatility history.
    """
    values = [abs(route.profit_percent) for route in routes]
    if not values:
        return 0.0
    return float(sum(values) / len(values))


class RouteDiscoveryEngine:
    """Finds profitable cycles through the liquidity probe."""

    def __init__(
        self,
        probe: LiquidityProbe,
        assets: dict[str, Asset],
        config: Optional[DiscoveryConfig] = None,
        cross_pair_assets: Optional[Sequence[str]] = None,
        deep_route_assets: Optional[Sequence[str]] = None,
    ):
        """Initialize engine.

        Args:
            probe: Breaker-gated quoting front end
            assets: Asset universe keyed by symbol
            config: Discovery tunables
            cross_pair_assets: Candidate intermediates for 3-swap routes (all assets when None)
            deep_route_assets: Candidate universe for routes of 5+ swaps (all assets when None)
        """
        self.probe = probe
        self.assets = assets
        self.config = config or DiscoveryConfig()
        self.cross_pair_assets = list(cross_pair_assets) if cross_pair_assets is not None else None
        self.deep_route_assets = list(deep_route_assets) if deep_route_assets is not None else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _candidates(self, base: Asset, symbols: Optional[Sequence[str]] = None) -> list[Asset]:
        pool = symbols if symbols is not None else list(self.assets)
        return [self.assets[s] for s in pool if s in self.assets and s != base.symbol]

    async def _input_size(self, base: Asset, first: Asset, input_amount: Optional[Decimal]) -> Decimal:
        if input_amount is not None:
            return input_amount
        if self.config.dynamic_sizing:
            return await self.probe.estimate_optimal_size(base, first)
        return self.config.default_trade_size

    async def _walk(self, path: Sequence[Asset], amount: Decimal) -> Optional[tuple[Decimal, list[int]]]:
        """Quote a path hop by hop. None as soon as a hop has no quote."""
        tiers: list[int] = []
        for asset_in, asset_out in zip(path, path[1:]):
            quote = await self.probe.quote(asset_in, asset_out, amount)
            if quote is None:
                return None
            tiers.append(quote.fee_tier)
            amount = quote.output_amount
        return amount, tiers

    def evaluate(
        self,
        path: Sequence[Asset],
        fee_tiers: Sequence[int],
        input_amount: Decimal,
        final_amount: Decimal,
        threshold: Decimal,
    ) -> Optional[Route]:
        """Build a Route if the cycle clears gas and the threshold."""
        hop_count = len(path) - 1
        profit = final_amount - input_amount
        profit_percent = profit / input_amount * HUNDRED
        gas = self.config.gas.estimate(hop_count)
        net_profit = profit - gas
        net_percent = net_profit / input_amount * HUNDRED

        if net_percent < threshold:
            return None

        return Route(
            assets=tuple(path),
            fee_tiers=tuple(fee_tiers),
            input_amount=input_amount,
            expected_output=final_amount,
            profit_amount=profit,
            profit_percent=profit_percent,
            net_profit=net_profit,
            net_profit_percent=net_percent,
            estimated_gas=gas,
            confidence=classify_confidence(
                net_percent,
                threshold,
                self.config.high_confidence_multiple,
                self.config.medium_confidence_multiple,
            ),
        )

    async def _try_path(
        self,
        path: Sequence[Asset],
        threshold: Decimal,
        input_amount: Optional[Decimal],
    ) -> Optional[Route]:
        try:
            size = await self._input_size(path[0], path[1], input_amount)
            walked = await self._walk(path, size)
            if walked is None:
                return None
            final_amount, tiers = walked
            return self.evaluate(path, tiers, size, final_amount, threshold)
        except Exception as e:
            logger.debug(f"Candidate {'→'.join(a.symbol for a in path)} failed: {e}")
            return None

    @staticmethod
    def _ranked(routes: Iterable[Route]) -> list[Route]:
        return sorted(routes, key=lambda r: r.net_profit_percent, reverse=True)

    # ------------------------------------------------------------------
    # Fixed-depth motifs
    # ------------------------------------------------------------------

    async def discover_triangular(
        self,
        base: Asset,
        threshold: Optional[Decimal] = None,
        input_amount: Optional[Decimal] = None,
    ) -> list[Route]:
        """base -> T -> base for every other asset T."""
        threshold = self.config.min_profit_threshold if threshold is None else threshold
        routes = []
        for token in self._candidates(base):
            route = await self._try_path([base, token, base], threshold, input_amount)
            if route:
                logger.info(f"Triangular opportunity {route.signature}: {route.net_profit_percent:.2f}% net")
                routes.append(route)
        return self._ranked(routes)

    async def discover_cross_pair(
        self,
        base: Asset,
        threshold: Optional[Decimal] = None,
        input_amount: Optional[Decimal] = None,
    ) -> list[Route]:
        """base -> A -> B -> base for every unordered candidate pair."""
        threshold = self.config.min_profit_threshold if threshold is None else threshold
        candidates = self._candidates(base, self.cross_pair_assets)
        routes = []
        for i, first in enumerate(candidates):
            for second in candidates[i + 1:]:
                route = await self._try_path([base, first, second, base], threshold, input_amount)
                if route:
                    logger.info(f"Cross-pair opportunity {route.signature}: {route.net_profit_percent:.2f}% net")
                    routes.append(route)
        return self._ranked(routes)

    # ------------------------------------------------------------------
    # Variable depth
    # ------------------------------------------------------------------

    async def discover_multi_hop(
        self,
        base: Asset,
        max_hops: int,
        threshold: Optional[Decimal] = None,
        input_amount: Optional[Decimal] = None,
        budget: Optional[SearchBudget] = None,
    ) -> list[Route]:
        """Depth-first search for cycles of exactly max_hops swaps.

        Args:
            base: Start and end asset
            max_hops: Number of swaps (4 to 6)
            threshold: Minimum net profit (%)
            input_amount: Fixed input size (sized per first hop when None)
            budget: Leaf-route budget; a fresh one from config when None

        Returns:
            Profitable routes found before the budget ran out, best first

        Raises:
            ValueError: max_hops outside 4..6
        """
        if not MIN_MULTI_HOP <= max_hops <= MAX_MULTI_HOP:
            raise ValueError(f"max_hops must be between {MIN_MULTI_HOP} and {MAX_MULTI_HOP}, got {max_hops}")

        threshold = self.config.min_profit_threshold if threshold is None else threshold
        budget = budget or SearchBudget(self.config.max_routes_to_explore)
        if max_hops >= DEEP_ROUTE_DEPTH:
            candidates = self._candidates(base, self.deep_route_assets)
        else:
            candidates = self._candidates(base)

        results: list[Route] = []
        await self._explore(
            path=[base],
            tiers=[],
            amount=input_amount,
            start_amount=input_amount,
            candidates=candidates,
            max_hops=max_hops,
            threshold=threshold,
            budget=budget,
            results=results,
        )
        logger.info(
            f"{max_hops}-hop search explored {budget.explored}/{budget.max_routes} routes, "
            f"found {len(results)} opportunities"
        )
        return self._ranked(results)

    async def _explore(
        self,
        path: list[Asset],
        tiers: list[int],
        amount: Optional[Decimal],
        start_amount: Optional[Decimal],
        candidates: Sequence[Asset],
        max_hops: int,
        threshold: Decimal,
        budget: SearchBudget,
        results: list[Route],
    ) -> None:
        if budget.exhausted:
            return

        base = path[0]
        if len(path) == max_hops:
            budget.consume()
            try:
                quote = await self.probe.quote(path[-1], base, amount)
            except Exception as e:
                logger.debug(f"Closing hop {path[-1]}->{base} failed: {e}")
                return
            if quote is None:
                return
            route = self.evaluate(
                [*path, base], [*tiers, quote.fee_tier], start_amount, quote.output_amount, threshold
            )
            if route:
                logger.info(f"{max_hops}-hop opportunity {route.signature}: {route.net_profit_percent:.2f}% net")
                results.append(route)
            return

        for candidate in candidates:
            if budget.exhausted:
                return
            if candidate == base or candidate in path:
                continue

            try:
                amount_in = amount
                start = start_amount
                if len(path) == 1:
                    amount_in = await self._input_size(base, candidate, start_amount)
                    start = amount_in

                quote = await self.probe.quote(path[-1], candidate, amount_in)
                if quote is None:
                    continue

                floor = self.config.step_loss_floor
                if floor is not None and percentage_change(amount_in, quote.output_amount) < floor:
                    logger.debug(f"Pruned {path[-1]}->{candidate}: step return below {floor}%")
                    continue

                await self._explore(
                    path=[*path, candidate],
                    tiers=[*tiers, quote.fee_tier],
                    amount=quote.output_amount,
                    start_amount=start,
                    candidates=candidates,
                    max_hops=max_hops,
                    threshold=threshold,
                    budget=budget,
                    results=results,
                )
            except Exception as e:
                logger.debug(f"Error exploring hop to {candidate}: {e}")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def discover(
        self,
        base_asset: Asset,
        depth_range: tuple[int, int] = (2, 4),
        min_profit_threshold: Optional[Decimal] = None,
        input_amount: Optional[Decimal] = None,
    ) -> list[Route]:
        """Run every strategy whose swap count falls inside depth_range.

        Args:
            base_asset: Start and end asset
            depth_range: Inclusive (min, max) number of swaps, within 2..6
            min_profit_threshold: Minimum net profit (%)
            input_amount: Fixed input size (dynamic or default sizing when None)

        Returns:
            Routes de-duplicated by signature, best net profit first
        """
        low, high = depth_range
        if low > high or low < 2 or high > MAX_MULTI_HOP:
            raise ValueError(f"Invalid depth range {depth_range}")

        threshold = self.config.min_profit_threshold if min_profit_threshold is None else min_profit_threshold
        found: list[Route] = []

        if low <= 2 <= high:
            found.extend(await self.discover_triangular(base_asset, threshold, input_amount))
        if low <= 3 <= high:
            found.extend(await self.discover_cross_pair(base_asset, threshold, input_amount))
        for hops in range(max(low, MIN_MULTI_HOP), high + 1):
            found.extend(await self.discover_multi_hop(base_asset, hops, threshold, input_amount))

        best: dict[str, Route] = {}
        for route in found:
            current = best.get(route.signature)
            if current is None or route.net_profit_percent > current.net_profit_percent:
                best[route.signature] = route

        routes = self._ranked(best.values())
        logger.info(f"Discovery from {base_asset} found {len(routes)} routes (hops {low}-{high})")
        return routes
