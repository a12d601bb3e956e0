"""Execution ledger endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from hoparb.arbitrage.models import ExecutionStatus
from hoparb.ledger.database import get_db
from hoparb.ledger.models import ArbitrageExecution
from hoparb.ledger.repository import ExecutionRepository

router = APIRouter(prefix="/executions")


def _serialize(execution: ArbitrageExecution) -> dict:
    return {
        "id": execution.id,
        "route_signature": execution.route_signature,
        "hop_count": execution.hop_count,
        "status": execution.status,
        "confidence": execution.confidence,
        "input_amount": str(execution.input_amount),
        "expected_net_profit_percent": str(execution.expected_net_profit_percent),
        "final_amount": str(execution.final_amount) if execution.final_amount is not None else None,
        "realized_profit_percent": (
            str(execution.realized_profit_percent) if execution.realized_profit_percent is not None else None
        ),
        "error": execution.error_message,
        "created_at": execution.created_at.isoformat() if execution.created_at else None,
        "transaction_ids": [hop.tx_id for hop in execution.hops],
    }


@router.get("/recent")
async def recent_executions(
    limit: int = Query(default=20, ge=1, le=200),
    status: Optional[str] = None,
):
    status_filter = None
    if status is not None:
        try:
            status_filter = ExecutionStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    async with get_db() as session:
        repo = ExecutionRepository(session)
        executions = await repo.get_recent_executions(limit=limit, status=status_filter)
        return {"executions": [_serialize(e) for e in executions]}


@router.get("/stats")
async def execution_stats():
    async with get_db() as session:
        repo = ExecutionRepository(session)
        return await repo.get_execution_stats()
