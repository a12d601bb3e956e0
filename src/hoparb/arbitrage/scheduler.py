"""Asset-disjoint batching of routes for concurrent execution.

Every route draws on the shared base-asset balance and on each intermediate
asset's pools, so two routes touching any common asset never run in the same
batch.
"""

import logging
from typing import Any, Sequence

from hoparb.arbitrage.models import Route

logger = logging.getLogger(__name__)


def identify_batches(routes: Sequence[Route]) -> list[list[Route]]:
    """Greedily pack routes into batches that share no asset.

    Routes are scanned in the given (priority) order. Each pass fills one
    batch; a route conflicting with the batch's claimed assets waits for a
    later batch. Every input route lands in exactly one batch.
    """
    remaining = list(routes)
    batches: list[list[Route]] = []

    while remaining:
        batch: list[Route] = []
        claimed: set[str] = set()
        deferred: list[Route] = []

        for route in remaining:
            assets = route.asset_set
            if claimed.isdisjoint(assets):
                batch.append(route)
                claimed.update(assets)
            else:
                deferred.append(route)

        batches.append(batch)
        remaining = deferred

    if batches:
        logger.debug(f"Packed {len(routes)} routes into {len(batches)} batches")
    return batches


def get_batch_stats(batches: Sequence[Sequence[Route]]) -> dict[str, Any]:
    """Summarize how much parallelism a batching achieved."""
    sizes = [len(batch) for batch in batches]
    total_routes = sum(sizes)
    return {
        "total_batches": len(sizes),
        "parallel_routes": sum(size for size in sizes if size > 1),
        "max_parallelism": max(sizes) if sizes else 0,
        "avg_parallelism": total_routes / len(sizes) if sizes else 0.0,
    }
