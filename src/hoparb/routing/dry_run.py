"""Simulated venue for dry runs and tests.

Pools are constant-product (x * y = k) with one pool per pair and fee tier.
Default pools are seeded from SIMULATED_PRICES, with a few cross pools priced
slightly off so discovery has something to find.
"""

import asyncio
import itertools
import logging
import random
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from hoparb.errors import SwapSubmissionError
from hoparb.routing.base import (
    Asset,
    ConfirmationResult,
    FeeTier,
    SwapVenue,
    TransactionHandle,
    TxStatus,
    VenueQuote,
)
from hoparb.signing.base import Signer

logger = logging.getLogger(__name__)

FEE_DENOMINATOR = Decimal("1000000")

# Simulated prices denominated in GALA
SIMULATED_PRICES: dict[str, Decimal] = {
    "GALA": Decimal("1"),
    "GUSDC": Decimal("50"),
    "GUSDT": Decimal("50"),
    "GWETH": Decimal("150000"),
    "GWBTC": Decimal("3000000"),
    "ETIME": Decimal("5"),
    "SILK": Decimal("2"),
    "TOWN": Decimal("0.5"),
    "GTON": Decimal("1.2"),
}

# Cross pools whose price deviates from SIMULATED_PRICES (multiplier on asset_b per asset_a)
SIMULATED_MISPRICINGS: dict[tuple[str, str], Decimal] = {
    ("GUSDC", "ETIME"): Decimal("1.04"),
    ("GUSDT", "SILK"): Decimal("0.97"),
    ("GWETH", "GUSDC"): Decimal("1.025"),
}


@dataclass
class SimulatedPool:
    """Constant-product pool."""

    asset_a: str
    asset_b: str
    reserve_a: Decimal
    reserve_b: Decimal
    fee_tier: int

    def reserves(self, asset_in: str) -> tuple[Decimal, Decimal]:
        if asset_in == self.asset_a:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a

    def output_for(self, asset_in: str, amount: Decimal) -> Decimal:
        reserve_in, reserve_out = self.reserves(asset_in)
        amount_after_fee = amount * (1 - Decimal(self.fee_tier) / FEE_DENOMINATOR)
        return amount_after_fee * reserve_out / (reserve_in + amount_after_fee)

    def apply(self, asset_in: str, amount_in: Decimal, amount_out: Decimal) -> None:
        if asset_in == self.asset_a:
            self.reserve_a += amount_in
            self.reserve_b -= amount_out
        else:
            self.reserve_b += amount_in
            self.reserve_a -= amount_out


class SimulatedVenue(SwapVenue):
    """
    In-memory venue.

    Supports:
    - Per-tier constant-product pools
    - Optional random price variance on quotes
    - Scripted confirmation statuses and submission failures for tests
    """

    def __init__(
        self,
        add_random_variance: bool = False,
        apply_trades: bool = True,
        latency: float = 0.0,
    ):
        self.add_random_variance = add_random_variance
        self.apply_trades = apply_trades
        self.latency = latency
        self._pools: dict[tuple[frozenset, int], SimulatedPool] = {}
        self._pending: dict[str, TransactionHandle] = {}
        self._scripted_statuses: list[TxStatus] = []
        self._fail_submissions = 0
        self._block = itertools.count(1_000_000)

        self.quote_calls = 0
        self.submitted: list[TransactionHandle] = []

    @property
    def name(self) -> str:
        return "simulated"

    def add_pool(
        self,
        asset_a: str,
        asset_b: str,
        reserve_a: Decimal,
        reserve_b: Decimal,
        fee_tier: int = FeeTier.STANDARD,
    ) -> SimulatedPool:
        """Add or replace a pool."""
        pool = SimulatedPool(asset_a, asset_b, Decimal(reserve_a), Decimal(reserve_b), int(fee_tier))
        self._pools[(frozenset((asset_a, asset_b)), int(fee_tier))] = pool
        return pool

    def get_pool(self, asset_a: str, asset_b: str, fee_tier: int) -> Optional[SimulatedPool]:
        return self._pools.get((frozenset((asset_a, asset_b)), int(fee_tier)))

    def script_confirmations(self, *statuses: TxStatus) -> None:
        """Queue confirmation statuses returned by the next await_confirmation calls."""
        self._scripted_statuses.extend(statuses)

    def fail_next_submissions(self, count: int = 1) -> None:
        self._fail_submissions += count

    async def quote(
        self,
        asset_in: Asset,
        asset_out: Asset,
        amount: Decimal,
        fee_tier: int,
    ) -> Optional[VenueQuote]:
        self.quote_calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)

        pool = self.get_pool(asset_in.symbol, asset_out.symbol, fee_tier)
        if pool is None or amount <= 0:
            return None

        output = pool.output_for(asset_in.symbol, amount)
        if self.add_random_variance:
            output *= Decimal(str(random.uniform(0.998, 1.002)))
        if output <= 0:
            return None

        return VenueQuote(
            asset_in=asset_in,
            asset_out=asset_out,
            amount_in=amount,
            output_amount=output,
            fee_tier=int(fee_tier),
        )

    async def submit_swap(
        self,
        asset_in: Asset,
        asset_out: Asset,
        fee_tier: int,
        amount_in: Decimal,
        min_amount_out: Decimal,
        signer: Signer,
        gas_bid: Optional[Decimal] = None,
    ) -> TransactionHandle:
        if self._fail_submissions > 0:
            self._fail_submissions -= 1
            raise SwapSubmissionError("Simulated submission failure", venue=self.name)

        pool = self.get_pool(asset_in.symbol, asset_out.symbol, fee_tier)
        if pool is None:
            raise SwapSubmissionError(
                f"No {asset_in}/{asset_out} pool at fee tier {fee_tier}", venue=self.name
            )

        output = pool.output_for(asset_in.symbol, amount_in)
        if output < min_amount_out:
            raise SwapSubmissionError(
                f"Slippage exceeded: {output} < {min_amount_out}", venue=self.name
            )

        payload = {
            "tokenIn": asset_in.token_key,
            "tokenOut": asset_out.token_key,
            "fee": int(fee_tier),
            "amountIn": str(amount_in),
            "amountOutMinimum": str(min_amount_out),
            "signer": signer.address,
        }
        await signer.sign_payload(payload)

        if self.apply_trades:
            pool.apply(asset_in.symbol, amount_in, output)

        handle = TransactionHandle(
            tx_id=f"sim-{uuid.uuid4().hex[:16]}",
            asset_in=asset_in,
            asset_out=asset_out,
            fee_tier=int(fee_tier),
            amount_in=amount_in,
            min_amount_out=min_amount_out,
        )
        self._pending[handle.tx_id] = handle
        self.submitted.append(handle)
        logger.debug(f"Simulated swap {handle.tx_id}: {amount_in} {asset_in} -> {output} {asset_out}")
        return handle

    async def await_confirmation(self, handle: TransactionHandle, timeout: float) -> ConfirmationResult:
        if handle.tx_id not in self._pending:
            return ConfirmationResult(status=TxStatus.UNKNOWN, error_message="Unknown transaction")

        status = self._scripted_statuses.pop(0) if self._scripted_statuses else TxStatus.CONFIRMED
        if status == TxStatus.CONFIRMED:
            self._pending.pop(handle.tx_id)
            return ConfirmationResult(status=status, block_number=next(self._block), confirmation_time=0.0)
        if status == TxStatus.FAILED:
            self._pending.pop(handle.tx_id)
            return ConfirmationResult(status=status, error_message="Simulated on-chain failure")
        return ConfirmationResult(status=status)


def create_default_venue(
    depth_in_gala: Decimal = Decimal("1000000"),
    **kwargs,
) -> SimulatedVenue:
    """Build a SimulatedVenue seeded with GALA pools and a few mispriced cross pools.

    Args:
        depth_in_gala: GALA-denominated value on each side of every pool
        **kwargs: Forwarded to SimulatedVenue
    """
    venue = SimulatedVenue(**kwargs)

    for symbol, price in SIMULATED_PRICES.items():
        if symbol == "GALA":
            continue
        for tier in (FeeTier.STANDARD, FeeTier.VOLATILE):
            venue.add_pool("GALA", symbol, depth_in_gala, depth_in_gala / price, tier)

    venue.add_pool(
        "GUSDC", "GUSDT", depth_in_gala / 50, depth_in_gala / 50, FeeTier.STABLE
    )

    for (asset_a, asset_b), skew in SIMULATED_MISPRICINGS.items():
        price_a = SIMULATED_PRICES[asset_a]
        price_b = SIMULATED_PRICES[asset_b]
        venue.add_pool(
            asset_a,
            asset_b,
            depth_in_gala / price_a,
            depth_in_gala / price_b * skew,
            FeeTier.STANDARD,
        )

    return venue
