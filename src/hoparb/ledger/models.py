"""SQLAlchemy models for the execution ledger."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ArbitrageExecution(Base):
    """One attempt at executing a route."""

    __tablename__ = "arbitrage_executions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    route_signature: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    hop_count: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)  # ExecutionStatus value
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    input_amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    expected_output: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    expected_net_profit_percent: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    final_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(36, 18), nullable=True)
    realized_profit_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 8), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    hops: Mapped[list["ExecutionHop"]] = relationship(
        back_populates="execution", lazy="selectin", order_by="ExecutionHop.hop_index"
    )

    __table_args__ = (Index("ix_executions_status_created", "status", "created_at"),)


class ExecutionHop(Base):
    """A submitted hop of an execution."""

    __tablename__ = "execution_hops"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    execution_id: Mapped[int] = mapped_column(ForeignKey("arbitrage_executions.id"), nullable=False)
    hop_index: Mapped[int] = mapped_column(Integer, nullable=False)
    asset_in: Mapped[str] = mapped_column(String(20), nullable=False)
    asset_out: Mapped[str] = mapped_column(String(20), nullable=False)
    fee_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_in: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    quoted_output: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    min_amount_out: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    tx_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    confirmation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    execution: Mapped["ArbitrageExecution"] = relationship(back_populates="hops")
