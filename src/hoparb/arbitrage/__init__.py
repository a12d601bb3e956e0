"""Route discovery, learning and batch scheduling."""

from hoparb.arbitrage.discovery import DiscoveryConfig, RouteDiscoveryEngine, SearchBudget
from hoparb.arbitrage.learning import LearningStore, RoutePerformance
from hoparb.arbitrage.models import Confidence, ExecutionResult, ExecutionStatus, Route
from hoparb.arbitrage.scheduler import get_batch_stats, identify_batches

__all__ = [
    "Confidence",
    "DiscoveryConfig",
    "ExecutionResult",
    "ExecutionStatus",
    "LearningStore",
    "Route",
    "RouteDiscoveryEngine",
    "RoutePerformance",
    "SearchBudget",
    "get_batch_stats",
    "identify_batches",
]
