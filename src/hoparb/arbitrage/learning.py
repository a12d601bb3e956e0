"""Route learning store and adaptive profit threshold.

Every execution attempt updates the route's performance record. Recent
volatility and per-route confidence then move the discovery threshold: busy
markets and proven routes get a lower bar, quiet markets a higher one.

Statistics here are display-grade floats. Values compared against profit
percentages (the adaptive threshold) are returned as Decimal.
"""

import asyncio
import logging
import math
import time
from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import Any, Optional, Sequence

from hoparb.arbitrage.models import Route
from hoparb.arbitrage.persistence import LearningPersistence
from hoparb.errors import LearningPersistenceError
from hoparb.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
VOLATILITY_WINDOW = 20
PROFIT_WINDOW = 10
CONFIDENCE_SATURATION = 20
MIN_ATTEMPTS_FOR_RANKING = 3
THRESHOLD_FLOOR = Decimal("0.1")
PRIORITY_WINDOW = Decimal("0.5")

# Legacy camelCase keys written by older versions of the snapshot format
LEGACY_KEYS = {
    "routeSignature": "route_signature",
    "totalProfit": "total_profit",
    "avgProfitPercent": "avg_profit_percent",
    "lastExecutedAt": "last_executed_at",
    "successRate": "success_rate",
    "totalSuccessfulTrades": "total_successful_trades",
    "totalAttemptedTrades": "total_attempted_trades",
    "lastUpdateTime": "last_update_time",
    "avgVolatility": "avg_volatility",
    "recentProfitability": "recent_profitability",
    "globalStats": "global_stats",
    "volatilityHistory": "volatility_history",
    "profitHistory": "profit_history",
}


def route_confidence(attempts: int, success_rate: float) -> float:
    """Saturating confidence: about 92% of success_rate after 50 attempts."""
    return success_rate * (1 - math.exp(-attempts / CONFIDENCE_SATURATION))


@dataclass
class RoutePerformance:
    """Historical record for one route signature."""

    route_signature: str
    symbols: list[str] = field(default_factory=list)
    attempts: int = 0
    successes: int = 0
    total_profit: float = 0.0
    avg_profit_percent: float = 0.0
    success_rate: float = 0.0
    confidence: float = 0.0
    last_executed_at: Optional[float] = None

    def record(self, success: bool, realized_profit: Optional[float], when: float) -> None:
        self.attempts += 1
        if success:
            self.successes += 1
            self.total_profit += realized_profit or 0.0
        self.success_rate = self.successes / self.attempts
        self.avg_profit_percent = self.total_profit / self.successes if self.successes else 0.0
        self.confidence = route_confidence(self.attempts, self.success_rate)
        self.last_executed_at = when

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoutePerformance":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class GlobalStats:
    total_successful_trades: int = 0
    total_attempted_trades: int = 0
    total_profit: float = 0.0
    last_update_time: float = field(default_factory=time.time)
    avg_volatility: float = 0.0
    recent_profitability: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GlobalStats":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})


@dataclass(frozen=True)
class AdaptiveThreshold:
    """Breakdown of an adjusted profit threshold (all percentages)."""
    min_profit_threshold: Decimal
    volatility_adjustment: Decimal
    confidence_bonus: Decimal
    final_threshold: Decimal


def compute_adaptive_threshold(
    base_threshold: Decimal,
    volatility: float,
    route_confidence_value: Optional[float] = None,
) -> AdaptiveThreshold:
    """Adjust the threshold for volatility and route confidence.

    Volatility above 3% lowers it by 0.3, above 2% by 0.2; quiet markets
    (0 < volatility < 1%) raise it by 0.3. Confidence above 0.7 lowers it
    linearly, reaching -0.5 at confidence 1.0. Never below 0.1.
    """
    if volatility > 3:
        volatility_adjustment = Decimal("-0.3")
    elif volatility > 2:
        volatility_adjustment = Decimal("-0.2")
    elif 0 < volatility < 1:
        volatility_adjustment = Decimal("0.3")
    else:
        volatility_adjustment = Decimal("0")

    confidence_bonus = Decimal("0")
    if route_confidence_value is not None and route_confidence_value > 0.7:
        excess = Decimal(str(min(route_confidence_value, 1.0))) - Decimal("0.7")
        confidence_bonus = -(excess * Decimal("5") / Decimal("3"))

    final = max(THRESHOLD_FLOOR, base_threshold + volatility_adjustment + confidence_bonus)
    return AdaptiveThreshold(
        min_profit_threshold=base_threshold,
        volatility_adjustment=volatility_adjustment,
        confidence_bonus=confidence_bonus,
        final_threshold=final,
    )


def _require_mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise LearningPersistenceError(f"Malformed learning data: {what} is {type(value).__name__}, expected an object")
    return value


def _require_list(value: Any, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise LearningPersistenceError(f"Malformed learning data: {what} is {type(value).__name__}, expected a list")
    return value


def migrate_document(document: Any) -> dict[str, Any]:
    """Bring an older snapshot document up to the current shape.

    Raises:
        LearningPersistenceError: Document does not have the snapshot shape
    """
    doc = {LEGACY_KEYS.get(k, k): v for k, v in _require_mapping(document, "document").items()}

    if "routes" not in doc and "pairs" in doc:
        logger.warning("Migrating learning data from 'pairs' to 'routes'")
        doc["routes"] = doc.pop("pairs")

    routes = {}
    for signature, record in _require_mapping(doc.get("routes") or {}, "routes").items():
        record = {LEGACY_KEYS.get(k, k): v for k, v in _require_mapping(record, f"route {signature}").items()}
        record.setdefault("route_signature", signature)
        routes[signature] = record
    doc["routes"] = routes

    doc["global_stats"] = {
        LEGACY_KEYS.get(k, k): v
        for k, v in _require_mapping(doc.get("global_stats") or {}, "global_stats").items()
    }
    doc["volatility_history"] = list(_require_list(doc.get("volatility_history") or [], "volatility_history"))
    doc["profit_history"] = list(_require_list(doc.get("profit_history") or [], "profit_history"))
    return doc


class LearningStore:
    """Owns route performance history and persists it through a port."""

    def __init__(
        self,
        persistence: LearningPersistence,
        max_failures: int = 5,
        history_size: int = HISTORY_SIZE,
        autoload: bool = True,
    ):
        """Initialize store.

        Args:
            persistence: Snapshot backend
            max_failures: Consecutive save failures before writes are disabled
            history_size: Length of the rolling profit and volatility histories
            autoload: Load the stored snapshot immediately
        """
        self.persistence = persistence
        self.max_failures = max_failures
        self.history_size = history_size

        self.routes: dict[str, RoutePerformance] = {}
        self.global_stats = GlobalStats()
        self.volatility_history: list[float] = []
        self.profit_history: list[float] = []

        self.consecutive_failures = 0
        self.writes_disabled = False
        self._lock = asyncio.Lock()

        if autoload:
            self.load()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Replace in-memory state with the stored snapshot.

        An unreadable or malformed snapshot is logged and the store starts empty.
        """
        try:
            document = self.persistence.load()
            if document is None:
                return
            self.load_document(document)
        except (LearningPersistenceError, TypeError, ValueError) as e:
            logger.error(f"Failed to load learning data, starting fresh: {e}")
            return
        logger.info(f"Loaded learning data for {len(self.routes)} routes")

    def load_document(self, document: Any) -> None:
        """Replace in-memory state with a snapshot document.

        Raises:
            LearningPersistenceError: Document does not have the snapshot shape
            TypeError, ValueError: A record holds values of the wrong type
        """
        doc = migrate_document(document)
        routes = {sig: RoutePerformance.from_dict(rec) for sig, rec in doc["routes"].items()}
        global_stats = GlobalStats.from_dict(doc["global_stats"])
        volatility_history = [float(v) for v in doc["volatility_history"]][-self.history_size:]
        profit_history = [float(v) for v in doc["profit_history"]][-self.history_size:]

        self.routes = routes
        self.global_stats = global_stats
        self.volatility_history = volatility_history
        self.profit_history = profit_history

    def to_document(self) -> dict[str, Any]:
        return {
            "routes": {sig: asdict(perf) for sig, perf in self.routes.items()},
            "global_stats": asdict(self.global_stats),
            "volatility_history": list(self.volatility_history),
            "profit_history": list(self.profit_history),
        }

    async def persist(self) -> bool:
        """Save the snapshot. Returns False when the write failed or writes are disabled."""
        if self.writes_disabled:
            return False

        document = self.to_document()
        try:
            await asyncio.to_thread(self.persistence.save, document)
        except (LearningPersistenceError, LockTimeoutError, OSError) as e:
            self.consecutive_failures += 1
            logger.warning(
                f"Learning data save failed ({self.consecutive_failures}/{self.max_failures}): {e}"
            )
            if self.consecutive_failures >= self.max_failures:
                self.writes_disabled = True
                logger.error(
                    f"Learning data writes disabled after {self.consecutive_failures} consecutive failures"
                )
            return False

        self.consecutive_failures = 0
        return True

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _append(self, history: list[float], value: float) -> None:
        history.append(value)
        del history[:-self.history_size]

    async def record_outcome(
        self,
        route: Route,
        success: bool,
        realized_profit: Optional[Decimal] = None,
    ) -> RoutePerformance:
        """Record one execution attempt and persist.

        Args:
            route: Executed route
            success: Whether every hop went through
            realized_profit: Realized profit (%) when successful
        """
        async with self._lock:
            now = time.time()
            perf = self.routes.get(route.signature)
            if perf is None:
                perf = RoutePerformance(route_signature=route.signature, symbols=list(route.symbols))
                self.routes[route.signature] = perf

            profit = float(realized_profit) if realized_profit is not None else None
            perf.record(success, profit, now)

            stats = self.global_stats
            stats.total_attempted_trades += 1
            if success:
                stats.total_successful_trades += 1
                stats.total_profit += profit or 0.0
                self._append(self.profit_history, profit or 0.0)
                stats.recent_profitability = self.recent_profitability
            stats.last_update_time = now

            logger.debug(
                f"Route {route.signature}: {perf.successes}/{perf.attempts} ok, "
                f"confidence {perf.confidence:.2f}"
            )
            await self.persist()
            return perf

    async def record_volatility(self, volatility: float) -> None:
        async with self._lock:
            self._append(self.volatility_history, float(volatility))
            self.global_stats.avg_volatility = self.avg_volatility
            self.global_stats.last_update_time = time.time()
            await self.persist()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def avg_volatility(self) -> float:
        recent = self.volatility_history[-VOLATILITY_WINDOW:]
        return sum(recent) / len(recent) if recent else 0.0

    @property
    def recent_profitability(self) -> float:
        recent = self.profit_history[-PROFIT_WINDOW:]
        return sum(recent) / len(recent) if recent else 0.0

    def get_performance(self, signature: str) -> Optional[RoutePerformance]:
        return self.routes.get(signature)

    def adaptive_threshold(self, base_threshold: Decimal, route: Optional[Route] = None) -> AdaptiveThreshold:
        confidence = None
        if route is not None:
            perf = self.routes.get(route.signature)
            if perf is not None:
                confidence = perf.confidence
        return compute_adaptive_threshold(base_threshold, self.avg_volatility, confidence)

    def prioritize(self, routes: Sequence[Route]) -> list[Route]:
        """Order routes for execution.

        Routes are ranked by net profit. Routes within 0.5 points of the most
        profitable route of their group are reordered by historical confidence,
        then success rate, so a profit gap above 0.5 always decides.
        """
        by_profit = sorted(routes, key=lambda r: r.net_profit_percent, reverse=True)

        groups: list[list[Route]] = []
        for route in by_profit:
            if groups and groups[-1][0].net_profit_percent - route.net_profit_percent <= PRIORITY_WINDOW:
                groups[-1].append(route)
            else:
                groups.append([route])

        def history(route: Route) -> tuple[float, float]:
            perf = self.routes.get(route.signature)
            if perf is None:
                return 0.0, 0.0
            return perf.confidence, perf.success_rate

        ordered: list[Route] = []
        for group in groups:
            ordered.extend(sorted(group, key=history, reverse=True))
        return ordered

    def get_top_performing_routes(self, limit: int = 10) -> list[RoutePerformance]:
        ranked = [p for p in self.routes.values() if p.attempts >= MIN_ATTEMPTS_FOR_RANKING]
        ranked.sort(key=lambda p: p.confidence * p.avg_profit_percent, reverse=True)
        return ranked[:limit]

    def get_learning_statistics(self) -> dict[str, Any]:
        perfs = list(self.routes.values())
        avg_success = sum(p.success_rate for p in perfs) / len(perfs) if perfs else 0.0
        return {
            "global_stats": asdict(self.global_stats),
            "total_routes": len(perfs),
            "top_routes": [asdict(p) for p in self.get_top_performing_routes(5)],
            "avg_success_rate": avg_success,
            "recent_volatility": self.avg_volatility,
            "writes_disabled": self.writes_disabled,
        }
