"""Wallet store that keeps the one-active-wallet-per-user invariant.

Activation always goes through ``set_active``, which flips every wallet of
the user in one flush. Creating a wallet inserts it inactive first, so a
failure between insert and activation never leaves two active wallets.
"""

import logging
from decimal import Decimal
from typing import Optional

from solkeeper.errors import (
    DuplicateKeyError,
    DuplicatePublicKeyError,
    UserNotFoundError,
    WalletNotFoundError,
)
from solkeeper.ledger.models import User, Wallet, WithdrawalRecord, WithdrawalStatus
from solkeeper.ports import PersistencePort

logger = logging.getLogger(__name__)


class WalletLedger:
    """Invariant-preserving wallet operations on top of a persistence port."""

    def __init__(self, port: PersistencePort):
        self.port = port

    async def get_user(self, identity: str) -> User:
        """Resolve a platform identity to its user.

        Raises:
            UserNotFoundError: If nobody registered with this identity
        """
        user = await self.port.get_user_by_identity(str(identity))
        if user is None:
            raise UserNotFoundError(f"No user registered for identity {identity}")
        return user

    async def register_user(self, identity: str, username: Optional[str] = None) -> User:
        return await self.port.get_or_create_user(str(identity), username=username)

    async def commit(self) -> None:
        await self.port.commit()

    async def create_wallet(
        self,
        user_id: int,
        public_key: str,
        encrypted_secret: str,
        activate: bool = True,
    ) -> Wallet:
        """Store a wallet and, by default, make it the active one.

        Raises:
            DuplicatePublicKeyError: If the public key is already stored
        """
        try:
            wallet = await self.port.create_wallet(
                user_id=user_id,
                public_key=public_key,
                encrypted_private_key=encrypted_secret,
                is_active=False,
                is_locked=False,
            )
        except DuplicateKeyError as e:
            raise DuplicatePublicKeyError(public_key) from e

        if activate:
            wallet = await self.set_active(user_id, wallet.id)

        logger.info(f"Wallet {public_key} stored for user {user_id} (active={wallet.is_active})")
        return wallet

    async def get_active_wallet(self, user_id: int) -> Optional[Wallet]:
        return await self.port.get_active_wallet(user_id)

    async def set_active(self, user_id: int, wallet_id: int) -> Wallet:
        """Make one wallet active and every other wallet of the user inactive.

        Raises:
            WalletNotFoundError: If the wallet is not the user's
        """
        wallet = await self.port.set_active_wallet(user_id, wallet_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found for user {user_id}")
        return wallet

    async def list_wallets(self, user_id: int) -> list[Wallet]:
        return await self.port.get_wallets_by_user_id(user_id)

    async def get_wallet(self, user_id: int, wallet_id: int) -> Wallet:
        """Get one of the user's wallets.

        Raises:
            WalletNotFoundError: If the wallet is not the user's
        """
        wallet = await self.port.get_wallet_by_id(wallet_id, user_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found for user {user_id}")
        return wallet

    async def find_by_public_key(self, public_key: str) -> Optional[Wallet]:
        return await self.port.get_wallet_by_public_key(public_key)

    async def set_locked(self, user_id: int, wallet_id: int, locked: bool) -> Wallet:
        """Lock or unlock one of the user's wallets."""
        wallet = await self.port.set_wallet_locked(wallet_id, user_id, locked)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found for user {user_id}")
        logger.info(f"Wallet {wallet.public_key} {'locked' if locked else 'unlocked'}")
        return wallet

    async def record_withdrawal(
        self,
        user_id: int,
        wallet: Wallet,
        to_address: str,
        amount: Decimal,
        token_mint: str,
        token_symbol: str,
        tx_signature: str,
        status: str = WithdrawalStatus.SUBMITTED,
    ) -> WithdrawalRecord:
        """Append the audit row for a submitted withdrawal."""
        return await self.port.insert_withdrawal_record(
            user_id=user_id,
            wallet_id=wallet.id,
            from_address=wallet.public_key,
            to_address=to_address,
            amount=amount,
            token_mint=token_mint,
            token_symbol=token_symbol,
            tx_signature=tx_signature,
            status=status,
        )

    async def withdrawal_history(self, user_id: int, limit: int = 20) -> list[WithdrawalRecord]:
        return await self.port.get_withdrawal_records(user_id, limit=limit)
