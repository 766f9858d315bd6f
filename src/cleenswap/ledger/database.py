"""Ledger store engine and transactional session scopes.

SQLite is the default store. Every connection enforces foreign keys so a
ledger entry can never point at a missing token type, and an in-memory
database is shared by all sessions through a single connection.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cleenswap.config import get_settings
from cleenswap.ledger.models import Base

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def ledger_url(raw: str) -> URL:
    """Parse DATABASE_URL, selecting the async driver for plain sqlite URLs."""
    url = make_url(raw)
    if url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    return url


def is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_ledger_engine(raw_url: str, echo: bool = False) -> AsyncEngine:
    """Build an engine for the ledger store."""
    url = ledger_url(raw_url)
    kwargs = {}

    if url.get_backend_name() == "sqlite":
        if is_memory_sqlite(url):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(url, echo=echo, **kwargs)
    if url.get_backend_name() == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_foreign_keys)

    logger.debug(f"Ledger engine created for {url.render_as_string(hide_password=True)}")
    return engine


def get_engine() -> AsyncEngine:
    """Process-wide engine built from DATABASE_URL."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_ledger_engine(
            settings.database_url, echo=settings.debug and not settings.is_production
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


def session_scope(factory: async_sessionmaker[AsyncSession]) -> SessionScope:
    """Build a transactional scope: commit on success, roll back on error."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One transactional session on the process-wide engine."""
    async with session_scope(get_session_factory())() as session:
        yield session


async def init_db() -> None:
    """Create the ledger tables that do not exist yet."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ledger tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def close_db() -> None:
    """Dispose of the engine; the next use builds a new one."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
