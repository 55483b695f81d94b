"""SQLAlchemy models for the wallet ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from solkeeper.errors import IdentityChangeError


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class WithdrawalStatus(str, Enum):
    """Chain status of a recorded withdrawal."""

    SUBMITTED = "submitted"      # Accepted by RPC, not yet seen confirmed
    CONFIRMED = "confirmed"      # Seen at confirmed commitment
    FINALIZED = "finalized"      # Seen at finalized commitment


class User(Base):
    """User account keyed by a stable platform identity (e.g. Telegram ID)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @validates("identity")
    def _validate_identity(self, key: str, value: str) -> str:
        """Identity keys the wallet encryption, so it may never change."""
        current = self.__dict__.get("identity")
        if current is not None and value != current:
            raise IdentityChangeError(f"Identity of user {self.id} cannot be changed")
        return value


class Wallet(Base):
    """Custodial Solana wallet with its encrypted secret key."""

    __tablename__ = "wallets"
    __table_args__ = (Index("ix_wallets_user_active", "user_id", "is_active"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    public_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    encrypted_private_key: Mapped[str] = mapped_column(Text, nullable=False)  # ivHex:ciphertextHex
    is_active: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_locked: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"Wallet(id={self.id}, user_id={self.user_id}, public_key={self.public_key}, "
            f"active={self.is_active}, locked={self.is_locked})"
        )


class WithdrawalRecord(Base):
    """Append-only audit row for a submitted withdrawal."""

    __tablename__ = "withdrawals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    wallet_id: Mapped[Optional[int]] = mapped_column(ForeignKey("wallets.id"), nullable=True)
    from_address: Mapped[str] = mapped_column(String(64), nullable=False)
    to_address: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    token_mint: Mapped[str] = mapped_column(String(64), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    tx_signature: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=WithdrawalStatus.SUBMITTED.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
