"""Venue interface consumed by the engine.

A venue quotes swaps, accepts signed swap submissions and reports
transaction status. Quotes are side-effect free; a missing pool is reported
by returning None and is never an error.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from hoparb.signing.base import Signer

logger = logging.getLogger(__name__)


class FeeTier(IntEnum):
    """Pool fee levels in hundredths of a basis point."""
    STABLE = 500      # 0.05%
    STANDARD = 3000   # 0.3%
    VOLATILE = 10000  # 1%


@dataclass(frozen=True)
class Asset:
    """A tradable token."""

    symbol: str
    decimals: int = 8
    token_class: str = ""

    @property
    def token_key(self) -> str:
        """Venue identifier, e.g. GALA|Unit|none|none."""
        return self.token_class or f"{self.symbol}|Unit|none|none"

    def __str__(self) -> str:
        return self.symbol


def build_assets(symbols: Iterable[str], decimals: dict[str, int]) -> dict[str, Asset]:
    """Build the asset universe keyed by symbol."""
    return {symbol: Asset(symbol=symbol, decimals=decimals.get(symbol, 8)) for symbol in symbols}


@dataclass
class VenueQuote:
    """A single-tier quote."""

    asset_in: Asset
    asset_out: Asset
    amount_in: Decimal
    output_amount: Decimal
    fee_tier: int
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TransactionHandle:
    """Reference to a submitted swap."""

    tx_id: str
    asset_in: Asset
    asset_out: Asset
    fee_tier: int
    amount_in: Decimal
    min_amount_out: Decimal
    submitted_at: float = field(default_factory=time.time)


class TxStatus(str, Enum):
    """Confirmation outcome of a submitted swap."""
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


@dataclass
class ConfirmationResult:
    """Result of waiting for a transaction."""

    status: TxStatus
    block_number: Optional[int] = None
    error_message: Optional[str] = None
    confirmation_time: Optional[float] = None

    @property
    def is_final(self) -> bool:
        return self.status in (TxStatus.CONFIRMED, TxStatus.FAILED)


class SwapVenue(ABC):
    """Abstract base class for swap venues."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Venue name identifier."""
        pass

    @abstractmethod
    async def quote(
        self,
        asset_in: Asset,
        asset_out: Asset,
        amount: Decimal,
        fee_tier: int,
    ) -> Optional[VenueQuote]:
        """Quote a swap in one fee tier.

        Args:
            asset_in: Asset sold
            asset_out: Asset bought
            amount: Amount of asset_in
            fee_tier: Pool fee tier

        Returns:
            VenueQuote, or None when no pool exists for the pair and tier

        Raises:
            VenueError: The venue could not answer
        """
        pass

    @abstractmethod
    async def submit_swap(
        self,
        asset_in: Asset,
        asset_out: Asset,
        fee_tier: int,
        amount_in: Decimal,
        min_amount_out: Decimal,
        signer: "Signer",
        gas_bid: Optional[Decimal] = None,
    ) -> TransactionHandle:
        """Submit a signed swap.

        Raises:
            SwapSubmissionError: The venue refused the swap
        """
        pass

    @abstractmethod
    async def await_confirmation(self, handle: TransactionHandle, timeout: float) -> ConfirmationResult:
        """Wait up to timeout seconds for the swap to settle.

        Returns TIMEOUT rather than raising when the deadline passes.
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
