"""Route execution pipeline.

Runs a route's hops strictly in order. Each hop gets a fresh quote in the
route's fee tier, is submitted with a minimum output below the quote, and
(except for the last hop) is watched until it confirms. The next hop trades
a buffered amount rather than the optimistic quote.

execute_route never raises: every outcome becomes an ExecutionResult so the
rest of a batch keeps running.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Sequence

from hoparb.arbitrage.gas import FixedGasBid, GasBidStrategy
from hoparb.arbitrage.learning import LearningStore
from hoparb.arbitrage.models import ExecutionResult, ExecutionStatus, HopResult, Route
from hoparb.errors import QuoteValidationError
from hoparb.routing.base import ConfirmationResult, SwapVenue, TransactionHandle, TxStatus
from hoparb.routing.probe import LiquidityProbe
from hoparb.signing.base import Signer
from hoparb.utils.circuit_breaker import CircuitBreaker
from hoparb.utils.precision import HUNDRED, quantize_amount, shave

logger = logging.getLogger(__name__)

MAX_SLIPPAGE = Decimal("0.05")


@dataclass(frozen=True)
class ExecutionConfig:
    """Slippage protection and confirmation timing."""
    exit_safety_margin: Decimal = Decimal("0.02")
    inter_hop_slippage_buffer: Decimal = Decimal("0.005")
    confirmation_timeout: float = 30.0
    timeout_grace_delay: float = 5.0

    def __post_init__(self):
        for name in ("exit_safety_margin", "inter_hop_slippage_buffer"):
            value = getattr(self, name)
            if not Decimal("0") <= value <= MAX_SLIPPAGE:
                raise QuoteValidationError(
                    f"{name} must be between 0 and {MAX_SLIPPAGE}, got {value}",
                    details={"field": name, "value": str(value)},
                )


class RouteAborted(Exception):
    """Internal signal ending a route early."""


class RouteStopped(RouteAborted):
    """A stop request ended the route before its next hop."""


class ExecutionPipeline:
    """Executes routes hop by hop and batches of routes concurrently."""

    def __init__(
        self,
        venue: SwapVenue,
        probe: LiquidityProbe,
        signer: Signer,
        swap_breaker: CircuitBreaker,
        monitor_breaker: CircuitBreaker,
        learning_store: Optional[LearningStore] = None,
        gas_strategy: Optional[GasBidStrategy] = None,
        config: Optional[ExecutionConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.venue = venue
        self.probe = probe
        self.signer = signer
        self.swap_breaker = swap_breaker
        self.monitor_breaker = monitor_breaker
        self.learning_store = learning_store
        self.gas_strategy = gas_strategy or FixedGasBid()
        self.config = config or ExecutionConfig()
        self._sleep = sleep
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        """Let in-flight routes finish their current hop, then stop."""
        logger.info("Execution stop requested")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    # Single route
    # ------------------------------------------------------------------

    async def execute_route(self, route: Route) -> ExecutionResult:
        """Execute every hop of a route.

        Returns:
            ExecutionResult with status success, failed or partially-executed
        """
        result = ExecutionResult(route=route, status=ExecutionStatus.FAILED)
        logger.info(f"Executing {route.signature} with {route.input_amount} {route.base_asset}")

        try:
            await self._run_hops(route, result)
        except RouteAborted as e:
            result.error = str(e)
            result.status = ExecutionStatus.PARTIAL if result.hops else ExecutionStatus.FAILED
            result.skipped = isinstance(e, RouteStopped) and not result.hops
        except Exception as e:
            logger.error(f"Unexpected error executing {route.signature}: {e}")
            result.error = str(e)
            result.status = ExecutionStatus.PARTIAL if result.hops else ExecutionStatus.FAILED

        result.finished_at = time.time()
        if result.success:
            logger.info(
                f"Route {route.signature} completed: {result.realized_profit_percent:.4f}% "
                f"({len(result.hops)} hops)"
            )
        else:
            logger.warning(
                f"Route {route.signature} {result.status.value} after {len(result.hops)} hops: {result.error}"
            )

        if result.skipped:
            logger.info(f"Route {route.signature} skipped by stop request, not recorded")
        else:
            await self._report(result)
        return result

    async def _run_hops(self, route: Route, result: ExecutionResult) -> None:
        amount = route.input_amount
        last_index = route.hop_count - 1

        for index, (asset_in, asset_out, fee_tier) in enumerate(route.hops()):
            if self._stop.is_set():
                raise RouteStopped(f"Shutdown requested before hop {index + 1}")

            try:
                quote = await self.probe.quote_tier(asset_in, asset_out, amount, fee_tier)
            except Exception as e:
                raise RouteAborted(f"Failed to get quote for hop {index + 1}: {e}") from e
            if quote is None:
                raise RouteAborted(f"Failed to get quote for hop {index + 1}: no pool")

            min_out = quantize_amount(
                shave(quote.output_amount, self.config.exit_safety_margin), asset_out.decimals
            )
            gas_bid = await self.gas_strategy.bid(route, index)

            try:
                handle = await self.swap_breaker.execute(
                    lambda: self.venue.submit_swap(
                        asset_in, asset_out, fee_tier, amount, min_out, self.signer, gas_bid
                    )
                )
            except Exception as e:
                raise RouteAborted(f"Hop {index + 1} submission failed: {e}") from e

            hop = HopResult(
                index=index,
                asset_in=asset_in,
                asset_out=asset_out,
                fee_tier=fee_tier,
                amount_in=amount,
                quoted_output=quote.output_amount,
                min_amount_out=min_out,
                tx_id=handle.tx_id,
            )
            result.hops.append(hop)
            logger.info(f"Hop {index + 1}/{route.hop_count} {asset_in}->{asset_out} submitted: {handle.tx_id}")

            amount = quantize_amount(
                shave(quote.output_amount, self.config.inter_hop_slippage_buffer), asset_out.decimals
            )

            if index == last_index:
                break

            confirmation = await self._monitor(handle)
            hop.confirmation = confirmation.status.value
            hop.block_number = confirmation.block_number

            if confirmation.status == TxStatus.CONFIRMED:
                continue
            if confirmation.status == TxStatus.TIMEOUT:
                logger.warning(
                    f"Hop {index + 1} of {route.signature} not confirmed within "
                    f"{self.config.confirmation_timeout}s, proceeding after {self.config.timeout_grace_delay}s"
                )
                await self._sleep(self.config.timeout_grace_delay)
                continue
            raise RouteAborted(
                f"Hop {index + 1} {confirmation.status.value}: {confirmation.error_message or 'no details'}"
            )

        result.final_amount = amount
        result.realized_profit = amount - route.input_amount
        result.realized_profit_percent = result.realized_profit / route.input_amount * HUNDRED
        result.status = ExecutionStatus.SUCCESS

    async def _monitor(self, handle: TransactionHandle) -> ConfirmationResult:
        try:
            return await self.monitor_breaker.execute(
                lambda: self.venue.await_confirmation(handle, self.config.confirmation_timeout)
            )
        except Exception as e:
            logger.warning(f"Monitoring {handle.tx_id} failed: {e}")
            return ConfirmationResult(status=TxStatus.UNKNOWN, error_message=str(e))

    async def _report(self, result: ExecutionResult) -> None:
        if self.learning_store is None:
            return
        try:
            await self.learning_store.record_outcome(
                result.route,
                result.success,
                result.realized_profit_percent if result.success else None,
            )
        except Exception as e:
            logger.error(f"Failed to record outcome for {result.route.signature}: {e}")

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def execute_batches(self, batches: Sequence[Sequence[Route]]) -> list[ExecutionResult]:
        """Run batches one after another, routes within a batch concurrently.

        A batch starts only after every route of the previous batch reached a
        terminal state.
        """
        results: list[ExecutionResult] = []
        for number, batch in enumerate(batches, 1):
            if self._stop.is_set():
                logger.info(f"Stop requested, skipping {len(batches) - number + 1} remaining batches")
                break
            logger.info(f"Executing batch {number}/{len(batches)} with {len(batch)} routes")
            results.extend(await asyncio.gather(*(self.execute_route(route) for route in batch)))
        return results
