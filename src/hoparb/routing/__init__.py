"""Venue access: interface, simulated and HTTP venues, liquidity probe.

Venues:
- SimulatedVenue: in-memory constant-product pools (dry run, tests)
- HttpSwapVenue: GalaSwap-style REST backend
"""

from hoparb.routing.base import (
    Asset,
    ConfirmationResult,
    FeeTier,
    SwapVenue,
    TransactionHandle,
    TxStatus,
    VenueQuote,
)
from hoparb.routing.dry_run import SimulatedVenue, create_default_venue
from hoparb.routing.probe import LiquidityProbe, SizingConfig

__all__ = [
    "Asset",
    "ConfirmationResult",
    "FeeTier",
    "LiquidityProbe",
    "SimulatedVenue",
    "SizingConfig",
    "SwapVenue",
    "TransactionHandle",
    "TxStatus",
    "VenueQuote",
    "create_default_venue",
]
