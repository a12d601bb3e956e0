"""Long-running services."""

from hoparb.services.arbitrage_runner import ArbitrageRunner, CycleReport, build_runner

__all__ = ["ArbitrageRunner", "CycleReport", "build_runner"]
