"""Database connection and session management."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from metaswap.config import get_settings
from metaswap.ledger.models import Base

# Global engine and session factory
_engine = None
_session_factory = None


def _prepare_url(db_url: str) -> str:
    # Convert sqlite:/// to sqlite+aiosqlite:/// if needed
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")

    # Make sure the directory of a file database exists
    if db_url.startswith("sqlite+aiosqlite:///") and ":memory:" not in db_url:
        path = Path(db_url.replace("sqlite+aiosqlite:///", "", 1))
        path.parent.mkdir(parents=True, exist_ok=True)

    return db_url


def _begin_immediate(engine: AsyncEngine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    The driver otherwise defers BEGIN until the first write, so a balance
    read inside a settlement takes no lock and concurrent writers overwrite
    each other. IMMEDIATE takes the write lock up front; other writers wait
    on the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # stop the driver from emitting its own BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create an engine with the transaction behavior settlement relies on."""
    engine = create_async_engine(_prepare_url(db_url), echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        _begin_immediate(engine)
    return engine


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = make_engine(
            settings.database_url,
            echo=settings.debug and not settings.is_production,
        )
    return _engine


def make_session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the options settlement relies on."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session context manager."""
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
