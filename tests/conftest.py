"""Pytest configuration and fixtures."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["DEBUG"] = "true"

from solkeeper.crypto import SecretCipher
from solkeeper.ledger.models import Base
from solkeeper.ledger.repository import LedgerRepository
from solkeeper.ledger.wallet_ledger import WalletLedger
from solkeeper.lifecycle import WalletLifecycle
from solkeeper.utils.locks import clear_user_locks


@pytest.fixture(autouse=True)
def _reset_locks():
    """Locks are bound to the loop that created them."""
    clear_user_locks()
    yield
    clear_user_locks()


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
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def wallet_ledger(ledger_repo: LedgerRepository) -> WalletLedger:
    return WalletLedger(ledger_repo)


@pytest.fixture
def cipher() -> SecretCipher:
    """Cipher with a cheap scrypt cost so tests stay fast."""
    return SecretCipher(salt=b"salt", n=1024, r=8, p=1)


@pytest.fixture
def lifecycle(wallet_ledger: WalletLedger, cipher: SecretCipher) -> WalletLifecycle:
    return WalletLifecycle(wallet_ledger, cipher, lock_timeout=5.0)


@pytest.fixture
def ledger_scope(ledger_repo: LedgerRepository):
    """Scope factory handing out the test repository."""

    @asynccontextmanager
    async def scope():
        yield ledger_repo

    return scope


@pytest_asyncio.fixture
async def user(ledger_repo: LedgerRepository):
    """A registered user."""
    return await ledger_repo.get_or_create_user("123456789", username="alice")


@pytest_asyncio.fixture
async def other_user(ledger_repo: LedgerRepository):
    return await ledger_repo.get_or_create_user("987654321", username="bob")
