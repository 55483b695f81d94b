"""Interfaces the custody core consumes.

- PersistencePort: users, wallets and withdrawal records
- ChainPort: balances and transfers on Solana
- MessagingPort: chat message send/delete
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from solders.keypair import Keypair

if TYPE_CHECKING:
    from solkeeper.ledger.models import User, Wallet, WithdrawalRecord


class PersistencePort(ABC):
    """Wallet and user storage.

    Unique-constraint violations are reported as ``DuplicateKeyError``; any
    other failure propagates unchanged.
    """

    @abstractmethod
    async def get_user_by_identity(self, identity: str) -> Optional["User"]:
        """Get a user by platform identity."""

    @abstractmethod
    async def get_or_create_user(self, identity: str, username: Optional[str] = None) -> "User":
        """Get an existing user or register a new one."""

    @abstractmethod
    async def commit(self) -> None:
        """Make the writes of the current transaction durable."""

    @abstractmethod
    async def create_wallet(
        self,
        user_id: int,
        public_key: str,
        encrypted_private_key: str,
        is_active: bool = False,
        is_locked: bool = False,
    ) -> "Wallet":
        """Insert a wallet. Raises DuplicateKeyError on a known public key."""

    @abstractmethod
    async def get_wallet_by_id(self, wallet_id: int, user_id: int) -> Optional["Wallet"]:
        """Get a wallet owned by the user."""

    @abstractmethod
    async def get_wallet_by_public_key(self, public_key: str) -> Optional["Wallet"]:
        """Get a wallet by public key, regardless of owner."""

    @abstractmethod
    async def get_wallets_by_user_id(self, user_id: int) -> list["Wallet"]:
        """Get all wallets of a user, oldest first."""

    @abstractmethod
    async def get_active_wallet(self, user_id: int) -> Optional["Wallet"]:
        """Get the user's active wallet."""

    @abstractmethod
    async def set_active_wallet(self, user_id: int, wallet_id: int) -> Optional["Wallet"]:
        """Atomically make one wallet active and every other one inactive.

        Returns the activated wallet, or None if it is not the user's.
        """

    @abstractmethod
    async def deactivate_all_wallets(self, user_id: int) -> int:
        """Deactivate every wallet of the user. Returns rows changed."""

    @abstractmethod
    async def activate_wallet(self, wallet_id: int, user_id: int) -> Optional["Wallet"]:
        """Set a single wallet active without touching its siblings."""

    @abstractmethod
    async def set_wallet_locked(self, wallet_id: int, user_id: int, locked: bool) -> Optional["Wallet"]:
        """Lock or unlock a wallet."""

    @abstractmethod
    async def insert_withdrawal_record(
        self,
        user_id: int,
        wallet_id: Optional[int],
        from_address: str,
        to_address: str,
        amount: Decimal,
        token_mint: str,
        token_symbol: str,
        tx_signature: str,
        status: str,
    ) -> "WithdrawalRecord":
        """Append a withdrawal audit row."""

    @abstractmethod
    async def get_withdrawal_records(self, user_id: int, limit: int = 20) -> list["WithdrawalRecord"]:
        """Get withdrawal history, newest first."""


@dataclass
class TokenHolding:
    """Token account balance owned by a wallet."""

    mint: str
    amount: Decimal  # UI amount (already divided by 10**decimals)
    decimals: int
    raw_amount: int = 0


@dataclass
class TransferResult:
    """Outcome of a submitted transfer."""

    signature: str
    status: str = "submitted"  # submitted / confirmed / finalized


class ChainPort(ABC):
    """Solana chain access.

    Read failures raise ``ChainError``; submission failures raise
    ``ChainSubmissionError``. Both carry the chain's message.
    """

    @abstractmethod
    async def get_balance(self, pubkey: str) -> Decimal:
        """Native balance in SOL."""

    @abstractmethod
    async def get_token_accounts(self, pubkey: str) -> list[TokenHolding]:
        """SPL token balances of a wallet."""

    @abstractmethod
    async def transfer_native(self, sender: Keypair, to: str, amount: Decimal) -> TransferResult:
        """Send SOL."""

    @abstractmethod
    async def transfer_token(
        self,
        sender: Keypair,
        mint: str,
        to: str,
        amount: Decimal,
        decimals: int,
    ) -> TransferResult:
        """Send an SPL token from the sender's to the recipient's token account."""

    @abstractmethod
    async def ensure_token_account(self, payer: Keypair, mint: str, owner: str) -> Optional[str]:
        """Create the owner's associated token account if absent.

        Returns the creation signature, or None if it already existed.
        """


class MessagingPort(ABC):
    """Best-effort chat messaging."""

    @abstractmethod
    async def send_message(self, chat_id: int, text: str, **options) -> Optional[int]:
        """Send a message. Returns the message id, or None on failure."""

    @abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        """Delete a message. Failures are swallowed and reported as False."""
