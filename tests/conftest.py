"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["DEBUG"] = "true"
os.environ["DRY_RUN"] = "true"

from hoparb.arbitrage.learning import LearningStore
from hoparb.arbitrage.models import Confidence, Route
from hoparb.arbitrage.persistence import InMemoryLearningPersistence
from hoparb.ledger.models import Base
from hoparb.ledger.repository import ExecutionRepository
from hoparb.routing.base import Asset, FeeTier
from hoparb.routing.dry_run import SimulatedVenue
from hoparb.routing.probe import LiquidityProbe
from hoparb.utils.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

SYMBOLS = ("GALA", "GUSDC", "GUSDT", "ETIME", "SILK", "TOWN")


@pytest.fixture
def assets() -> dict[str, Asset]:
    return {symbol: Asset(symbol) for symbol in SYMBOLS}


@pytest.fixture
def venue() -> SimulatedVenue:
    """Venue with balanced GALA pools and no cross pools."""
    venue = SimulatedVenue()
    for symbol in SYMBOLS[1:]:
        venue.add_pool("GALA", symbol, Decimal("1000000"), Decimal("1000000"), FeeTier.STANDARD)
    return venue


@pytest.fixture
def quote_breaker() -> CircuitBreaker:
    return CircuitBreaker("quote", CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout=15, monitoring_window=30))


@pytest.fixture
def probe(venue, quote_breaker) -> LiquidityProbe:
    return LiquidityProbe(venue, quote_breaker, fee_tiers=(FeeTier.STANDARD,))


@pytest.fixture
def learning_store() -> LearningStore:
    return LearningStore(InMemoryLearningPersistence())


def make_route(
    symbols: tuple[str, ...],
    net_profit_percent: str = "2.0",
    input_amount: str = "10",
    fee_tier: int = FeeTier.STANDARD,
) -> Route:
    """Build a route with consistent amounts from its net profit."""
    path = tuple(Asset(s) for s in symbols)
    amount = Decimal(input_amount)
    net = amount * Decimal(net_profit_percent) / 100
    gas = Decimal("0.1")
    return Route(
        assets=path,
        fee_tiers=tuple(fee_tier for _ in path[1:]),
        input_amount=amount,
        expected_output=amount + net + gas,
        profit_amount=net + gas,
        profit_percent=(net + gas) / amount * 100,
        net_profit=net,
        net_profit_percent=Decimal(net_profit_percent),
        estimated_gas=gas,
        confidence=Confidence.MEDIUM,
    )


@pytest.fixture
def route_factory():
    return make_route


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def execution_repo(db_session: AsyncSession) -> ExecutionRepository:
    return ExecutionRepository(db_session)
