"""Route and execution result types."""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from hoparb.routing.base import Asset

SIGNATURE_SEPARATOR = "→"


class Confidence(str, Enum):
    """Discovery confidence in a route's profitability."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Route:
    """A discovered cycle starting and ending at the base asset.

    assets has hop_count + 1 entries; fee_tiers has one entry per hop.
    """

    assets: tuple[Asset, ...]
    fee_tiers: tuple[int, ...]
    input_amount: Decimal
    expected_output: Decimal
    profit_amount: Decimal
    profit_percent: Decimal
    net_profit: Decimal
    net_profit_percent: Decimal
    estimated_gas: Decimal
    confidence: Confidence = Confidence.LOW
    discovered_at: float = field(default_factory=time.time, compare=False)

    def __post_init__(self):
        if len(self.assets) < 3:
            raise ValueError("A route needs at least three assets")
        if self.assets[0] != self.assets[-1]:
            raise ValueError("A route must start and end at the same asset")
        if len(self.fee_tiers) != len(self.assets) - 1:
            raise ValueError("A route needs one fee tier per hop")

    @property
    def symbols(self) -> tuple[str, ...]:
        return tuple(asset.symbol for asset in self.assets)

    @property
    def base_asset(self) -> Asset:
        return self.assets[0]

    @property
    def hop_count(self) -> int:
        return len(self.assets) - 1

    @property
    def signature(self) -> str:
        """Symbol sequence used as the learning store key."""
        return SIGNATURE_SEPARATOR.join(self.symbols)

    @property
    def asset_set(self) -> frozenset[str]:
        """Base asset plus every intermediate, by symbol."""
        return frozenset(self.symbols)

    def hops(self) -> list[tuple[Asset, Asset, int]]:
        return [
            (self.assets[i], self.assets[i + 1], self.fee_tiers[i])
            for i in range(self.hop_count)
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API output."""
        return {
            "signature": self.signature,
            "symbols": list(self.symbols),
            "fee_tiers": list(self.fee_tiers),
            "input_amount": str(self.input_amount),
            "expected_output": str(self.expected_output),
            "profit_amount": str(self.profit_amount),
            "profit_percent": str(self.profit_percent),
            "net_profit": str(self.net_profit),
            "net_profit_percent": str(self.net_profit_percent),
            "estimated_gas": str(self.estimated_gas),
            "confidence": self.confidence.value,
        }


class ExecutionStatus(str, Enum):
    """Terminal state of a route execution."""
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partially-executed"


@dataclass
class HopResult:
    """One submitted hop."""

    index: int
    asset_in: Asset
    asset_out: Asset
    fee_tier: int
    amount_in: Decimal
    quoted_output: Decimal
    min_amount_out: Decimal
    tx_id: str
    confirmation: Optional[str] = None
    block_number: Optional[int] = None


@dataclass
class ExecutionResult:
    """Outcome of running one route."""

    route: Route
    status: ExecutionStatus
    hops: list[HopResult] = field(default_factory=list)
    final_amount: Optional[Decimal] = None
    realized_profit: Optional[Decimal] = None
    realized_profit_percent: Optional[Decimal] = None
    error: Optional[str] = None
    # Stopped before any hop was submitted
    skipped: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def transaction_ids(self) -> list[str]:
        return [hop.tx_id for hop in self.hops]

    @property
    def executed_hops(self) -> int:
        return len(self.hops)

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.route.signature,
            "status": self.status.value,
            "executed_hops": self.executed_hops,
            "transaction_ids": self.transaction_ids,
            "final_amount": str(self.final_amount) if self.final_amount is not None else None,
            "realized_profit": str(self.realized_profit) if self.realized_profit is not None else None,
            "realized_profit_percent": (
                str(self.realized_profit_percent) if self.realized_profit_percent is not None else None
            ),
            "error": self.error,
            "skipped": self.skipped,
            "duration": self.duration,
        }
