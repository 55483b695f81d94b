"""Service wiring.

Builds the long-lived services once at startup. Persistence is opened per
operation through ``ledger_scope`` so each user action is one transaction.

Usage:
    services = create_services()
    await services.start()
    async with services.lifecycle() as lifecycle:
        created = await lifecycle.create(identity)
    reply = await services.withdrawals.start(identity)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from solkeeper.chain.solana import SolanaChainClient, get_chain_client
from solkeeper.config import Settings, get_settings
from solkeeper.crypto import SecretCipher, get_cipher
from solkeeper.ledger.database import close_db, init_db, ledger_scope
from solkeeper.ledger.wallet_ledger import WalletLedger
from solkeeper.lifecycle import WalletLifecycle
from solkeeper.logging_config import configure_logging
from solkeeper.notifications.telegram import TelegramMessenger, close_bot
from solkeeper.withdrawal.engine import WithdrawalEngine
from solkeeper.withdrawal.sessions import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived services shared by all handlers."""

    settings: Settings
    cipher: SecretCipher
    chain: SolanaChainClient
    messenger: TelegramMessenger
    sessions: SessionStore
    withdrawals: WithdrawalEngine

    @asynccontextmanager
    async def lifecycle(self) -> AsyncGenerator[WalletLifecycle, None]:
        """Wallet lifecycle bound to one transaction."""
        async with ledger_scope() as repo:
            yield WalletLifecycle(
                WalletLedger(repo),
                self.cipher,
                lock_timeout=self.settings.user_lock_timeout,
            )

    async def start(self) -> None:
        configure_logging(self.settings)
        logger.info("Starting SolKeeper...")
        logger.info(f"Settings: {self.settings.get_safe_dict()}")
        await init_db()
        logger.info("Database initialized")

    async def stop(self) -> None:
        await self.messenger.close()
        await close_bot()
        await close_db()
        logger.info("SolKeeper stopped")


def create_services(settings: Optional[Settings] = None) -> Services:
    """Build the service graph from settings."""
    settings = settings or get_settings()

    cipher = get_cipher(settings)
    chain = get_chain_client(settings)
    sessions = SessionStore(
        ttl=settings.withdrawal_session_ttl,
        lock_timeout=settings.user_lock_timeout,
    )

    return Services(
        settings=settings,
        cipher=cipher,
        chain=chain,
        messenger=TelegramMessenger(autodelete_seconds=settings.export_autodelete_seconds),
        sessions=sessions,
        withdrawals=WithdrawalEngine(
            cipher=cipher,
            chain=chain,
            sessions=sessions,
            ledger_scope=ledger_scope,
        ),
    )
