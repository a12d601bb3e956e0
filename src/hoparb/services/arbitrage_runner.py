"""Arbitrage runner.

Connects discovery and execution through an asyncio.Queue: a producer scans
for routes on an interval, a consumer filters them through the adaptive
threshold, batches them and executes the batches. Outcomes are written to
the execution ledger and reported to the operator chat.

Usage:
    runner = build_runner(get_settings())
    await runner.run()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from hoparb.arbitrage.discovery import (
    DiscoveryConfig,
    RouteDiscoveryEngine,
    calculate_market_volatility,
)
from hoparb.arbitrage.emergency import EmergencyStop, EmergencyTriggers
from hoparb.arbitrage.gas import GasSchedule, ProfitProtectedGasBid
from hoparb.arbitrage.learning import THRESHOLD_FLOOR, LearningStore
from hoparb.arbitrage.models import ExecutionResult, Route
from hoparb.arbitrage.persistence import JsonFileLearningPersistence
from hoparb.arbitrage.scheduler import get_batch_stats, identify_batches
from hoparb.config import Settings, get_settings
from hoparb.ledger.database import get_db
from hoparb.ledger.repository import ExecutionRepository
from hoparb.notifications.telegram import TelegramNotifier
from hoparb.routing.base import Asset, SwapVenue
from hoparb.routing.factory import create_assets, create_breakers, create_probe, create_venue
from hoparb.signing import create_signer
from hoparb.swap.executor import ExecutionConfig, ExecutionPipeline
from hoparb.utils.circuit_breaker import (
    MONITOR_BREAKER,
    SWAP_BREAKER,
    VENUE_API_BREAKER,
    CircuitBreakerRegistry,
    breaker_registry,
)

logger = logging.getLogger(__name__)

# Largest reduction a route's confidence can apply to the threshold
MAX_CONFIDENCE_BONUS = Decimal("0.5")


@dataclass
class CycleReport:
    """Summary of one discover-and-execute cycle."""

    discovered: int = 0
    eligible: int = 0
    batches: int = 0
    volatility: float = 0.0
    threshold: Decimal = Decimal("0")
    results: list[ExecutionResult] = field(default_factory=list)
    halted: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def successes(self) -> int:
        return sum(1 for r in self.results if r.success)


class ArbitrageRunner:
    """Runs discovery and execution cycles."""

    def __init__(
        self,
        engine: RouteDiscoveryEngine,
        pipeline: ExecutionPipeline,
        learning_store: LearningStore,
        base_asset: Asset,
        registry: Optional[CircuitBreakerRegistry] = None,
        notifier: Optional[TelegramNotifier] = None,
        min_profit_threshold: Decimal = Decimal("1.0"),
        depth_range: tuple[int, int] = (2, 4),
        scan_interval: float = 5.0,
        execution_enabled: bool = True,
        record_ledger: bool = True,
        emergency: Optional[EmergencyStop] = None,
    ):
        self.engine = engine
        self.pipeline = pipeline
        self.learning_store = learning_store
        self.base_asset = base_asset
        self.registry = registry or breaker_registry
        self.notifier = notifier
        self.min_profit_threshold = min_profit_threshold
        self.depth_range = depth_range
        self.scan_interval = scan_interval
        self.execution_enabled = execution_enabled
        self.record_ledger = record_ledger
        self.emergency = emergency or EmergencyStop()

        self.queue: asyncio.Queue[Optional[list[Route]]] = asyncio.Queue(maxsize=1)
        self._stop = asyncio.Event()
        self.cycles = 0

    @property
    def execution_allowed(self) -> bool:
        return self.execution_enabled and not self.emergency.active

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def scan(self, record_volatility: bool = True) -> list[Route]:
        """Discover routes and, unless disabled, record the market volatility they imply."""
        global_threshold = self.learning_store.adaptive_threshold(self.min_profit_threshold)
        discovery_threshold = max(THRESHOLD_FLOOR, global_threshold.final_threshold - MAX_CONFIDENCE_BONUS)

        routes = await self.engine.discover(self.base_asset, self.depth_range, discovery_threshold)
        if routes and record_volatility:
            await self.learning_store.record_volatility(calculate_market_volatility(routes))
        return routes

    def select(self, routes: Sequence[Route]) -> list[Route]:
        """Keep routes clearing their adaptive threshold, in execution priority order."""
        eligible = []
        for route in routes:
            threshold = self.learning_store.adaptive_threshold(self.min_profit_threshold, route)
            if route.net_profit_percent >= threshold.final_threshold:
                eligible.append(route)
            else:
                logger.debug(
                    f"Skipping {route.signature}: {route.net_profit_percent:.2f}% "
                    f"< {threshold.final_threshold}%"
                )
        return self.learning_store.prioritize(eligible)

    async def execute(self, routes: Sequence[Route]) -> list[ExecutionResult]:
        return await self._execute_batches(identify_batches(routes))

    async def _execute_batches(self, batches: list[list[Route]]) -> list[ExecutionResult]:
        if not batches:
            return []
        routes = [route for batch in batches for route in batch]
        stats = get_batch_stats(batches)
        logger.info(
            f"Executing {len(routes)} routes in {stats['total_batches']} batches "
            f"(max parallelism {stats['max_parallelism']})"
        )

        results: list[ExecutionResult] = []
        tripped = False
        for number, batch in enumerate(batches, 1):
            if self.emergency.active:
                logger.error(f"Emergency stop active, skipping {len(batches) - number + 1} remaining batches")
                break
            batch_results = await self.pipeline.execute_batches([batch])
            results.extend(batch_results)
            for result in batch_results:
                tripped = self.emergency.record(result) or tripped

        await self._record(results)
        await self._alert(results)
        if tripped:
            await self._alert_emergency()
        return results

    async def run_cycle(self) -> CycleReport:
        """Run one full discover, select and execute cycle."""
        threshold = self.learning_store.adaptive_threshold(self.min_profit_threshold)
        report = CycleReport(threshold=threshold.final_threshold)
        routes = await self.scan()
        report.discovered = len(routes)
        report.volatility = self.learning_store.avg_volatility

        selected = self.select(routes)
        report.eligible = len(selected)

        if selected and self.execution_allowed:
            batches = identify_batches(selected)
            report.batches = len(batches)
            report.results = await self._execute_batches(batches)

        report.halted = self.emergency.active
        report.finished_at = time.time()
        self.cycles += 1
        logger.info(
            f"Cycle {self.cycles}: {report.discovered} discovered, {report.eligible} eligible, "
            f"{report.successes}/{len(report.results)} executed successfully"
        )
        return report

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _record(self, results: Sequence[ExecutionResult]) -> None:
        results = [r for r in results if not r.skipped]
        if not self.record_ledger or not results:
            return
        try:
            async with get_db() as session:
                repo = ExecutionRepository(session)
                for result in results:
                    await repo.record_execution(result)
        except Exception as e:
            logger.error(f"Failed to record executions in ledger: {e}")

    async def _alert(self, results: Sequence[ExecutionResult]) -> None:
        if self.notifier is None or not self.notifier.enabled:
            return
        for result in results:
            if result.skipped:
                continue
            await self.notifier.notify_execution(result)
        await self.notifier.notify_breakers(self.registry.get_health_summary(), self.registry.get_all_status())

    async def _alert_emergency(self) -> None:
        if self.notifier is None or not self.notifier.enabled:
            return
        await self.notifier.notify_emergency(self.emergency.get_status())

    # ------------------------------------------------------------------
    # Producer / consumer loop
    # ------------------------------------------------------------------

    async def _produce(self) -> None:
        while not self._stop.is_set():
            try:
                routes = await self.scan()
                selected = self.select(routes)
            except Exception as e:
                logger.error(f"Discovery cycle failed: {e}")
                selected = []

            if selected:
                if self.queue.full():
                    self.queue.get_nowait()
                    logger.debug("Dropped stale candidate set")
                self.queue.put_nowait(selected)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.scan_interval)
            except asyncio.TimeoutError:
                pass

        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def _consume(self) -> None:
        while True:
            routes = await self.queue.get()
            if routes is None:
                break
            if self.execution_allowed:
                await self.execute(routes)

    async def run(self) -> None:
        """Run until stop() is called."""
        logger.info(
            f"Runner started: base {self.base_asset}, hops {self.depth_range}, "
            f"threshold {self.min_profit_threshold}%, interval {self.scan_interval}s"
        )
        await asyncio.gather(self._produce(), self._consume())
        logger.info("Runner stopped")

    def stop(self) -> None:
        """Stop scanning; in-flight routes finish their current hop."""
        self._stop.set()
        self.pipeline.request_stop()


def build_runner(
    settings: Optional[Settings] = None,
    registry: Optional[CircuitBreakerRegistry] = None,
    venue: Optional[SwapVenue] = None,
    learning_store: Optional[LearningStore] = None,
    notifier: Optional[TelegramNotifier] = None,
) -> ArbitrageRunner:
    """Wire venue, breakers, probe, discovery, learning and execution together."""
    settings = settings or get_settings()
    registry = registry or breaker_registry
    breakers = create_breakers(registry)
    venue = venue or create_venue(settings, breakers[VENUE_API_BREAKER])
    assets = create_assets(settings)
    probe = create_probe(venue, breakers, settings)

    gas = GasSchedule(
        triangular=settings.gas_triangular,
        cross_pair=settings.gas_cross_pair,
        base=settings.gas_base,
        per_hop=settings.gas_per_hop,
    )
    engine = RouteDiscoveryEngine(
        probe=probe,
        assets=assets,
        config=DiscoveryConfig(
            min_profit_threshold=settings.min_profit_threshold,
            default_trade_size=settings.default_trade_size,
            dynamic_sizing=settings.dynamic_sizing,
            max_routes_to_explore=settings.max_routes_to_explore,
            step_loss_floor=settings.step_loss_floor_percent,
            high_confidence_multiple=settings.confidence_high_multiple,
            medium_confidence_multiple=settings.confidence_medium_multiple,
            gas=gas,
        ),
        cross_pair_assets=settings.cross_pair_assets,
        deep_route_assets=settings.deep_route_assets,
    )

    if learning_store is None:
        learning_store = LearningStore(
            JsonFileLearningPersistence(
                settings.learning_data_path,
                retries=settings.learning_lock_retries,
                min_wait=settings.learning_lock_min_wait,
                max_wait=settings.learning_lock_max_wait,
                stale_after=settings.learning_lock_stale,
            ),
            max_failures=settings.learning_max_failures,
        )

    pipeline = ExecutionPipeline(
        venue=venue,
        probe=probe,
        signer=create_signer(settings),
        swap_breaker=breakers[SWAP_BREAKER],
        monitor_breaker=breakers[MONITOR_BREAKER],
        learning_store=learning_store,
        gas_strategy=ProfitProtectedGasBid(gas, settings.max_gas_budget_percent),
        config=ExecutionConfig(
            exit_safety_margin=settings.exit_safety_margin,
            inter_hop_slippage_buffer=settings.inter_hop_slippage_buffer,
            confirmation_timeout=settings.confirmation_timeout,
            timeout_grace_delay=settings.timeout_grace_delay,
        ),
    )

    return ArbitrageRunner(
        engine=engine,
        pipeline=pipeline,
        learning_store=learning_store,
        base_asset=assets[settings.base_asset],
        registry=registry,
        notifier=notifier if notifier is not None else TelegramNotifier(),
        min_profit_threshold=settings.min_profit_threshold,
        depth_range=(settings.min_hops, settings.max_hops),
        scan_interval=settings.scan_interval,
        execution_enabled=settings.execution_enabled,
        emergency=EmergencyStop(
            EmergencyTriggers(
                max_consecutive_failures=settings.emergency_max_consecutive_failures,
                max_realized_loss=settings.emergency_max_realized_loss,
            ),
            active=settings.emergency_stop,
        ),
    )
