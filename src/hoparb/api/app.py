"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hoparb import __version__
from hoparb.arbitrage.emergency import EmergencyStop
from hoparb.arbitrage.learning import LearningStore
from hoparb.config import get_settings
from hoparb.ledger.database import close_db, init_db
from hoparb.utils.circuit_breaker import CircuitBreakerRegistry, breaker_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    await init_db()
    yield
    await close_db()


def create_app(
    learning_store: Optional[LearningStore] = None,
    registry: Optional[CircuitBreakerRegistry] = None,
    emergency: Optional[EmergencyStop] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        learning_store: Store shared with the runner (created from settings on first use when None)
        registry: Breaker registry (module default when None)
        emergency: Runner emergency stop (emergency endpoints answer 503 when None)
    """
    settings = get_settings()

    app = FastAPI(
        title="hoparb API",
        description="API for breaker health, route learning, executions and the emergency stop",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.learning_store = learning_store
    app.state.registry = registry or breaker_registry
    app.state.emergency = emergency

    from hoparb.api.routes import emergency as emergency_routes
    from hoparb.api.routes import executions, health, learning

    app.include_router(health.router, tags=["Health"])
    app.include_router(learning.router, prefix="/api/v1", tags=["Learning"])
    app.include_router(executions.router, prefix="/api/v1", tags=["Executions"])
    app.include_router(emergency_routes.router, prefix="/api/v1", tags=["Emergency"])

    return app


# Default app instance
app = create_app()
