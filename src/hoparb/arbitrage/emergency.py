"""Emergency stop for automated execution.

Trips after a run of consecutive failed routes, or once the net realized
loss reaches a limit. While active the runner keeps scanning but executes
nothing. Only an operator reset clears it.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from hoparb.arbitrage.models import ExecutionResult

logger = logging.getLogger(__name__)


class EmergencyType(str, Enum):
    MANUAL_STOP = "manual-stop"
    CONSECUTIVE_FAILURES = "consecutive-failures"
    REALIZED_LOSS = "realized-loss"


@dataclass(frozen=True)
class EmergencyTriggers:
    """Limits that trip the emergency stop.

    max_realized_loss is in base asset units and compared against the net
    realized result of successful routes since the last reset.
    """
    max_consecutive_failures: int = 5
    max_realized_loss: Decimal = Decimal("50")


class EmergencyStop:
    """Kill switch consulted by the runner before every batch."""

    def __init__(self, triggers: Optional[EmergencyTriggers] = None, active: bool = False):
        self.triggers = triggers or EmergencyTriggers()

        self.active = False
        self.emergency_type: Optional[EmergencyType] = None
        self.reason: Optional[str] = None
        self.activated_at: Optional[float] = None

        self.consecutive_failures = 0
        self.realized_pnl = Decimal("0")
        self.history: list[dict[str, Any]] = []

        if active:
            self.activate(EmergencyType.MANUAL_STOP, "Emergency stop enabled at startup")

    def record(self, result: ExecutionResult) -> bool:
        """Account for one route outcome.

        Returns:
            True if this outcome tripped the stop
        """
        if result.skipped:
            return False

        if result.success:
            self.consecutive_failures = 0
            self.realized_pnl += result.realized_profit or Decimal("0")
        else:
            self.consecutive_failures += 1

        if self.active:
            return False

        if self.consecutive_failures >= self.triggers.max_consecutive_failures:
            self.activate(
                EmergencyType.CONSECUTIVE_FAILURES,
                f"{self.consecutive_failures} consecutive failed routes",
            )
            return True
        if -self.realized_pnl >= self.triggers.max_realized_loss:
            self.activate(
                EmergencyType.REALIZED_LOSS,
                f"Net realized loss {-self.realized_pnl} reached limit {self.triggers.max_realized_loss}",
            )
            return True
        return False

    def activate(self, emergency_type: EmergencyType, reason: str) -> None:
        if self.active:
            logger.warning(f"Emergency stop already active ({self.emergency_type.value}), ignoring: {reason}")
            return
        self.active = True
        self.emergency_type = emergency_type
        self.reason = reason
        self.activated_at = time.time()
        self.history.append(
            {"action": "activate", "type": emergency_type.value, "reason": reason, "timestamp": self.activated_at}
        )
        logger.error(f"EMERGENCY STOP ACTIVATED: {emergency_type.value} - {reason}")

    def deactivate(self, reason: str) -> None:
        """Clear the stop and every counter."""
        logger.warning(f"Deactivating emergency stop: {reason}")
        self.history.append(
            {
                "action": "deactivate",
                "type": self.emergency_type.value if self.emergency_type else None,
                "reason": reason,
                "timestamp": time.time(),
            }
        )
        self.active = False
        self.emergency_type = None
        self.reason = None
        self.activated_at = None
        self.consecutive_failures = 0
        self.realized_pnl = Decimal("0")

    def get_status(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "type": self.emergency_type.value if self.emergency_type else None,
            "reason": self.reason,
            "activated_at": self.activated_at,
            "consecutive_failures": self.consecutive_failures,
            "realized_pnl": str(self.realized_pnl),
            "triggers": {
                "max_consecutive_failures": self.triggers.max_consecutive_failures,
                "max_realized_loss": str(self.triggers.max_realized_loss),
            },
            "history": list(self.history[-20:]),
        }
