"""Execution ledger storage.

LedgerDatabase owns the async engine and session factory for one database
URL. The module keeps one process-wide instance, built from
Settings.database_url on first use, that get_db, init_db and close_db act on.
use_database installs a different instance (tests, embedding).
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from hoparb.config import Settings, get_settings
from hoparb.ledger.models import Base

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Use the aiosqlite driver for plain sqlite URLs."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def sqlite_file(url: str) -> Optional[Path]:
    """Database file of a sqlite URL, None for in-memory or other backends."""
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return None
    if not parsed.database or parsed.database == ":memory:" or parsed.database.startswith("file:"):
        return None
    return Path(parsed.database)


class LedgerDatabase:
    """Engine and sessions for one ledger database."""

    def __init__(self, url: str, echo: bool = False):
        self.url = normalize_url(url)
        self.engine: AsyncEngine = create_async_engine(self.url, echo=echo)
        self._sessions = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        path = sqlite_file(self.url)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug(f"Ledger tables ready at {make_url(self.url).render_as_string(hide_password=True)}")

    async def dispose(self) -> None:
        await self.engine.dispose()


_database: Optional[LedgerDatabase] = None


def get_database(settings: Optional[Settings] = None) -> LedgerDatabase:
    """Process-wide ledger database, created from settings on first use."""
    global _database
    if _database is None:
        settings = settings or get_settings()
        _database = LedgerDatabase(settings.database_url, echo=settings.debug and not settings.is_production)
    return _database


def use_database(database: Optional[LedgerDatabase]) -> None:
    """Install the process-wide ledger database (None to rebuild from settings)."""
    global _database
    _database = database


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_database().session() as session:
        yield session


async def init_db(settings: Optional[Settings] = None) -> None:
    """Create the ledger tables, and the sqlite data directory when needed."""
    await get_database(settings).create_tables()


async def close_db() -> None:
    """Dispose the process-wide database; the next use rebuilds it."""
    global _database
    if _database is not None:
        await _database.dispose()
        _database = None
