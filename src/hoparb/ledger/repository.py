"""Repository for execution ledger operations."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hoparb.arbitrage.models import ExecutionResult, ExecutionStatus
from hoparb.ledger.models import ArbitrageExecution, ExecutionHop


class ExecutionRepository:
    """Stores and queries route execution records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_execution(self, result: ExecutionResult) -> ArbitrageExecution:
        """Persist an execution result with its hops."""
        route = result.route
        completed_at = None
        if result.finished_at is not None:
            completed_at = datetime.fromtimestamp(result.finished_at, tz=timezone.utc)

        execution = ArbitrageExecution(
            route_signature=route.signature,
            hop_count=route.hop_count,
            status=result.status.value,
            confidence=route.confidence.value,
            input_amount=route.input_amount,
            expected_output=route.expected_output,
            expected_net_profit_percent=route.net_profit_percent,
            final_amount=result.final_amount,
            realized_profit_percent=result.realized_profit_percent,
            error_message=result.error,
            completed_at=completed_at,
            hops=[
                ExecutionHop(
                    hop_index=hop.index,
                    asset_in=hop.asset_in.symbol,
                    asset_out=hop.asset_out.symbol,
                    fee_tier=hop.fee_tier,
                    amount_in=hop.amount_in,
                    quoted_output=hop.quoted_output,
                    min_amount_out=hop.min_amount_out,
                    tx_id=hop.tx_id,
                    confirmation=hop.confirmation,
                    block_number=hop.block_number,
                )
                for hop in result.hops
            ],
        )
        self.session.add(execution)
        await self.session.flush()
        return execution

    async def get_recent_executions(
        self,
        limit: int = 20,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ArbitrageExecution]:
        """Most recent executions first."""
        stmt = select(ArbitrageExecution)
        if status is not None:
            stmt = stmt.where(ArbitrageExecution.status == status.value)
        stmt = stmt.order_by(ArbitrageExecution.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_execution_stats(self) -> dict[str, Any]:
        """Counts per status and average realized profit of successful runs."""
        stmt = select(ArbitrageExecution.status, func.count()).group_by(ArbitrageExecution.status)
        result = await self.session.execute(stmt)
        by_status = {status: count for status, count in result.all()}

        stmt = select(func.avg(ArbitrageExecution.realized_profit_percent)).where(
            ArbitrageExecution.status == ExecutionStatus.SUCCESS.value
        )
        avg_profit = (await self.session.execute(stmt)).scalar_one_or_none()

        total = sum(by_status.values())
        successes = by_status.get(ExecutionStatus.SUCCESS.value, 0)
        return {
            "total": total,
            "by_status": by_status,
            "success_rate": successes / total if total else 0.0,
            "avg_realized_profit_percent": str(Decimal(str(avg_profit))) if avg_profit is not None else None,
        }
