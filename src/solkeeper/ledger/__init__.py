"""Ledger module for users, wallets and withdrawal records."""

from solkeeper.ledger.database import get_db, init_db, ledger_scope
from solkeeper.ledger.models import User, Wallet, WithdrawalRecord, WithdrawalStatus
from solkeeper.ledger.repository import LedgerRepository
from solkeeper.ledger.wallet_ledger import WalletLedger

__all__ = [
    # Models
    "User",
    "Wallet",
    "WithdrawalRecord",
    # Enums
    "WithdrawalStatus",
    # Database
    "get_db",
    "init_db",
    "ledger_scope",
    "LedgerRepository",
    "WalletLedger",
]
