"""Learning store read endpoints."""

from dataclasses import asdict
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from hoparb.api.deps import get_learning_store
from hoparb.arbitrage.learning import LearningStore
from hoparb.config import get_settings

router = APIRouter(prefix="/learning")


@router.get("/stats")
async def learning_stats(store: LearningStore = Depends(get_learning_store)):
    return store.get_learning_statistics()


@router.get("/top-routes")
async def top_routes(
    limit: int = Query(default=10, ge=1, le=100),
    store: LearningStore = Depends(get_learning_store),
):
    return {"routes": [asdict(perf) for perf in store.get_top_performing_routes(limit)]}


@router.get("/threshold")
async def current_threshold(
    base: Optional[Decimal] = Query(default=None, gt=0),
    store: LearningStore = Depends(get_learning_store),
):
    """Adaptive threshold for the current volatility (no route bonus)."""
    base = base if base is not None else get_settings().min_profit_threshold
    result = store.adaptive_threshold(base)
    return {key: str(value) for key, value in asdict(result).items()}
