"""Request dependencies."""

from fastapi import HTTPException, Request

from hoparb.arbitrage.emergency import EmergencyStop
from hoparb.arbitrage.learning import LearningStore
from hoparb.arbitrage.persistence import JsonFileLearningPersistence
from hoparb.config import get_settings
from hoparb.utils.circuit_breaker import CircuitBreakerRegistry


def get_registry(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.registry


def get_learning_store(request: Request) -> LearningStore:
    """Shared store, or a read-only view of the snapshot file when running standalone."""
    store = request.app.state.learning_store
    if store is None:
        settings = get_settings()
        store = LearningStore(
            JsonFileLearningPersistence(settings.learning_data_path),
            max_failures=settings.learning_max_failures,
        )
        request.app.state.learning_store = store
    return store


def get_emergency(request: Request) -> EmergencyStop:
    """Emergency stop of the runner this API is attached to."""
    emergency = request.app.state.emergency
    if emergency is None:
        raise HTTPException(status_code=503, detail="No runner attached to this API")
    return emergency
