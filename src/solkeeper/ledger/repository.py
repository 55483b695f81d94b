"""Repository for ledger operations."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from solkeeper.errors import DuplicateKeyError
from solkeeper.ledger.models import User, Wallet, WithdrawalRecord, WithdrawalStatus
from solkeeper.ports import PersistencePort

logger = logging.getLogger(__name__)


class LedgerRepository(PersistencePort):
    """SQLAlchemy implementation of the persistence port.

    Writes are flushed, not committed. The transaction ends on ``commit`` or
    when the owning scope exits (see ``ledger.database.get_db``). Constraint
    violations roll back only their own savepoint.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    # User operations
    async def get_user_by_identity(self, identity: str) -> Optional[User]:
        """Get user by platform identity."""
        stmt = select(User).where(User.identity == str(identity))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_user(self, identity: str, username: Optional[str] = None) -> User:
        """Get existing user or create a new one."""
        user = await self.get_user_by_identity(identity)

        if user is None:
            user = User(identity=str(identity), username=username)
            self.session.add(user)
            await self.session.flush()

        return user

    # Wallet operations
    async def create_wallet(
        self,
        user_id: int,
        public_key: str,
        encrypted_private_key: str,
        is_active: bool = False,
        is_locked: bool = False,
    ) -> Wallet:
        """Insert a new wallet.

        Raises:
            DuplicateKeyError: If the public key is already stored
        """
        if await self.get_wallet_by_public_key(public_key) is not None:
            raise DuplicateKeyError(f"Wallet {public_key} already exists", field="public_key")

        wallet = Wallet(
            user_id=user_id,
            public_key=public_key,
            encrypted_private_key=encrypted_private_key,
            is_active=is_active,
            is_locked=is_locked,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(wallet)
        except IntegrityError as e:
            # Lost a race against a concurrent insert of the same key
            raise DuplicateKeyError(f"Wallet {public_key} already exists", field="public_key") from e

        return wallet

    async def get_wallet_by_id(self, wallet_id: int, user_id: int) -> Optional[Wallet]:
        """Get a wallet owned by the user."""
        stmt = select(Wallet).where(Wallet.id == wallet_id, Wallet.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_wallet_by_public_key(self, public_key: str) -> Optional[Wallet]:
        """Get wallet by public key."""
        stmt = select(Wallet).where(Wallet.public_key == public_key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_wallets_by_user_id(self, user_id: int) -> list[Wallet]:
        """Get all wallets for a user."""
        stmt = select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_wallet(self, user_id: int) -> Optional[Wallet]:
        """Get the user's active wallet."""
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == user_id, Wallet.is_active.is_(True))
            .order_by(Wallet.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _lock_user_wallets(self, user_id: int) -> list[Wallet]:
        """Load a user's wallets for update.

        Uses SELECT FOR UPDATE on PostgreSQL so concurrent switches of the
        same user serialize. SQLite locks the database on write instead.
        """
        dialect = self.session.bind.dialect.name if self.session.bind else "sqlite"

        stmt = select(Wallet).where(Wallet.user_id == user_id).order_by(Wallet.id)
        if dialect == "postgresql":
            stmt = stmt.with_for_update()

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_active_wallet(self, user_id: int, wallet_id: int) -> Optional[Wallet]:
        """Activate one wallet and deactivate all others in a single flush."""
        wallets = await self._lock_user_wallets(user_id)

        target = next((w for w in wallets if w.id == wallet_id), None)
        if target is None:
            return None

        for wallet in wallets:
            wallet.is_active = wallet.id == wallet_id
        await self.session.flush()
        return target

    async def deactivate_all_wallets(self, user_id: int) -> int:
        """Deactivate all wallets of a user."""
        wallets = await self._lock_user_wallets(user_id)
        changed = 0
        for wallet in wallets:
            if wallet.is_active:
                wallet.is_active = False
                changed += 1
        await self.session.flush()
        return changed

    async def activate_wallet(self, wallet_id: int, user_id: int) -> Optional[Wallet]:
        """Mark one wallet active. Does not touch the other wallets."""
        wallet = await self.get_wallet_by_id(wallet_id, user_id)
        if wallet is None:
            return None
        wallet.is_active = True
        await self.session.flush()
        return wallet

    async def set_wallet_locked(self, wallet_id: int, user_id: int, locked: bool) -> Optional[Wallet]:
        """Lock or unlock a wallet."""
        wallet = await self.get_wallet_by_id(wallet_id, user_id)
        if wallet is None:
            return None
        wallet.is_locked = locked
        await self.session.flush()
        return wallet

    # Withdrawal record operations
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
        status: str = WithdrawalStatus.SUBMITTED,
    ) -> WithdrawalRecord:
        """Append a withdrawal record.

        Raises:
            DuplicateKeyError: If the signature was already recorded
        """
        record = WithdrawalRecord(
            user_id=user_id,
            wallet_id=wallet_id,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            token_mint=token_mint,
            token_symbol=token_symbol,
            tx_signature=tx_signature,
            status=WithdrawalStatus(status).value,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(record)
        except IntegrityError as e:
            raise DuplicateKeyError(
                f"Withdrawal {tx_signature} already recorded", field="tx_signature"
            ) from e

        logger.info(f"Withdrawal recorded: {amount} {token_symbol} {from_address} -> {to_address}")
        return record

    async def get_withdrawal_records(self, user_id: int, limit: int = 20) -> list[WithdrawalRecord]:
        """Get withdrawal history for a user."""
        stmt = (
            select(WithdrawalRecord)
            .where(WithdrawalRecord.user_id == user_id)
            .order_by(WithdrawalRecord.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
