"""Engine, sessions and transactional scopes for the wallet ledger."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from solkeeper.config import get_settings
from solkeeper.ledger.models import Base
from solkeeper.ledger.repository import LedgerRepository

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _normalize_url(url: str) -> str:
    """Plain sqlite URLs get the async driver."""
    if url.startswith("sqlite:///") and "aiosqlite" not in url:
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> AsyncEngine:
    """Create the engine on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        db_url = _normalize_url(settings.database_url)

        options = {"echo": settings.debug and not settings.is_production}
        if db_url.startswith("sqlite"):
            # One shared connection, otherwise each session sees its own :memory: db
            if ":memory:" in db_url:
                options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        else:
            options["pool_pre_ping"] = True

        _engine = create_async_engine(db_url, **options)
        if db_url.startswith("sqlite"):
            event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session, committed on clean exit and rolled back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def ledger_scope() -> AsyncGenerator[LedgerRepository, None]:
    """Repository bound to one transaction."""
    async with get_db() as session:
        yield LedgerRepository(session)


async def init_db() -> None:
    """Create the users, wallets and withdrawals tables if missing."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
