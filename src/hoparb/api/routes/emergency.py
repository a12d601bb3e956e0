"""Emergency stop endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from hoparb.api.deps import get_emergency
from hoparb.arbitrage.emergency import EmergencyStop, EmergencyType

router = APIRouter(prefix="/emergency")


class EmergencyRequest(BaseModel):
    reason: str = Field(default="Operator request", min_length=1, max_length=200)


@router.get("")
async def emergency_status(emergency: EmergencyStop = Depends(get_emergency)):
    return emergency.get_status()


@router.post("/stop")
async def emergency_stop(
    body: Optional[EmergencyRequest] = None,
    emergency: EmergencyStop = Depends(get_emergency),
):
    """Halt execution until reset. Scanning continues."""
    emergency.activate(EmergencyType.MANUAL_STOP, (body or EmergencyRequest()).reason)
    return emergency.get_status()


@router.post("/reset")
async def emergency_reset(
    body: Optional[EmergencyRequest] = None,
    emergency: EmergencyStop = Depends(get_emergency),
):
    """Clear the emergency stop and its counters so execution resumes."""
    emergency.deactivate((body or EmergencyRequest()).reason)
    return emergency.get_status()
