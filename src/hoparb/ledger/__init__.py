"""Execution ledger."""

from hoparb.ledger.database import LedgerDatabase, close_db, get_database, get_db, init_db, use_database
from hoparb.ledger.models import ArbitrageExecution, Base, ExecutionHop
from hoparb.ledger.repository import ExecutionRepository

__all__ = [
    "ArbitrageExecution",
    "Base",
    "ExecutionHop",
    "ExecutionRepository",
    "LedgerDatabase",
    "close_db",
    "get_database",
    "get_db",
    "init_db",
    "use_database",
]
