"""Health check and circuit breaker endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from hoparb import __version__
from hoparb.api.deps import get_registry
from hoparb.config import get_settings
from hoparb.utils.circuit_breaker import CircuitBreakerRegistry

router = APIRouter()


@router.get("/health")
async def health_check(registry: CircuitBreakerRegistry = Depends(get_registry)):
    """Basic health check; degraded while any breaker is open."""
    summary = registry.get_health_summary()
    return {"status": "healthy" if summary["healthy"] else "degraded", "service": "hoparb"}


@router.get("/health/detailed")
async def detailed_health(registry: CircuitBreakerRegistry = Depends(get_registry)):
    """Detailed health check with configuration info."""
    settings = get_settings()
    summary = registry.get_health_summary()
    return {
        "status": "healthy" if summary["healthy"] else "degraded",
        "service": "hoparb",
        "version": __version__,
        "breakers": summary,
        "config": settings.get_safe_dict(),
    }


@router.get("/health/breakers")
async def breaker_status(registry: CircuitBreakerRegistry = Depends(get_registry)):
    """Summary plus per-breaker status."""
    return {
        "summary": registry.get_health_summary(),
        "breakers": registry.get_all_status(),
    }


@router.get("/health/breakers/{name}")
async def single_breaker_status(name: str, registry: CircuitBreakerRegistry = Depends(get_registry)):
    breaker = registry.get(name)
    if breaker is None:
        raise HTTPException(status_code=404, detail=f"Unknown breaker: {name}")
    return breaker.get_status()


@router.post("/health/breakers/reset")
async def reset_breakers(registry: CircuitBreakerRegistry = Depends(get_registry)):
    """Force every breaker CLOSED."""
    registry.reset_all()
    return {"status": "reset", "summary": registry.get_health_summary()}
