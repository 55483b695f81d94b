"""Wallet lifecycle: create, import, export, switch, lock.

Every operation starts from the user's platform identity. Only ``create``
and ``import_wallet`` write secret material; everything else reads it or
only touches flags. Mutations commit while still holding the user's lock, so
two requests of one user never interleave their transactions.

Usage:
    async with ledger_scope() as repo:
        lifecycle = WalletLifecycle(WalletLedger(repo), get_cipher())
        result = await lifecycle.import_wallet(identity, pasted_text)
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from solders.keypair import Keypair

from solkeeper import keycodec
from solkeeper.crypto import SecretCipher
from solkeeper.errors import (
    CorruptSecretError,
    DecryptionFailedError,
    DuplicatePublicKeyError,
    InvalidKeyFormatError,
    WalletLockedError,
    WalletNotFoundError,
)
from solkeeper.keycodec import KeyEncoding
from solkeeper.ledger.models import User, Wallet
from solkeeper.ledger.wallet_ledger import WalletLedger
from solkeeper.utils.locks import user_lock

logger = logging.getLogger(__name__)


@dataclass
class CreatedWallet:
    """A freshly generated wallet and its secret, shown to the user once."""

    wallet: Wallet
    public_key: str
    secret_base58: str = field(repr=False)


class ImportStatus(str, Enum):
    IMPORTED = "imported"
    DUPLICATE = "duplicate"


@dataclass
class ImportResult:
    """Outcome of an import.

    For DUPLICATE, ``existing_wallet`` is set only when the duplicate belongs
    to the importing user, so the caller can offer to switch to it.
    """

    status: ImportStatus
    public_key: str
    wallet: Optional[Wallet] = None
    encoding: Optional[KeyEncoding] = None
    existing_wallet: Optional[Wallet] = None

    @property
    def imported(self) -> bool:
        return self.status == ImportStatus.IMPORTED


@dataclass
class ExportedSecret:
    """Secret key in the two export forms."""

    public_key: str
    base58: str = field(repr=False)
    byte_array: list[int] = field(repr=False)

    def as_json(self) -> str:
        """Byte array as compact JSON, the solana-keygen file format."""
        return json.dumps(self.byte_array, separators=(",", ":"))


class WalletLifecycle:
    """Orchestrates wallet operations for one persistence scope."""

    def __init__(
        self,
        ledger: WalletLedger,
        cipher: SecretCipher,
        lock_timeout: Optional[float] = 30.0,
    ):
        self.ledger = ledger
        self.cipher = cipher
        self.lock_timeout = lock_timeout

    async def _user(self, identity: str) -> User:
        return await self.ledger.get_user(identity)

    async def create(self, identity: str) -> CreatedWallet:
        """Generate a new keypair and store it as the active wallet."""
        user = await self._user(identity)

        keypair = Keypair()
        material = bytes(keypair)
        public_key = str(keypair.pubkey())
        encrypted = await self.cipher.seal_secret_async(material, user.identity)

        async with user_lock(identity, timeout=self.lock_timeout, operation="create_wallet"):
            wallet = await self.ledger.create_wallet(user.id, public_key, encrypted)
            await self.ledger.commit()

        logger.info(f"Created wallet {public_key} for user {user.id}")
        return CreatedWallet(
            wallet=wallet,
            public_key=public_key,
            secret_base58=keycodec.encode(material, KeyEncoding.BASE58),
        )

    async def import_wallet(self, identity: str, raw_text: str) -> ImportResult:
        """Import a pasted secret key and make it the active wallet.

        Raises:
            InvalidKeyFormatError: If the text is no supported encoding or
                its halves do not form a keypair (``attempts`` lists why)
        """
        user = await self._user(identity)

        decoded = keycodec.detect_and_decode(raw_text)
        public_key = keycodec.derive_public_key(decoded.material)

        async with user_lock(identity, timeout=self.lock_timeout, operation="import_wallet"):
            existing = await self.ledger.find_by_public_key(public_key)
            if existing is not None:
                return self._duplicate(user, public_key, existing)

            encrypted = await self.cipher.seal_secret_async(decoded.material, user.identity)
            try:
                wallet = await self.ledger.create_wallet(user.id, public_key, encrypted)
            except DuplicatePublicKeyError:
                existing = await self.ledger.find_by_public_key(public_key)
                return self._duplicate(user, public_key, existing)
            await self.ledger.commit()

        logger.info(
            f"Imported wallet {public_key} for user {user.id} ({decoded.encoding.value})"
        )
        return ImportResult(
            status=ImportStatus.IMPORTED,
            public_key=public_key,
            wallet=wallet,
            encoding=decoded.encoding,
        )

    def _duplicate(self, user: User, public_key: str, existing: Optional[Wallet]) -> ImportResult:
        owned = existing if existing is not None and existing.user_id == user.id else None
        logger.info(f"Import of {public_key} by user {user.id} is a duplicate (owned={owned is not None})")
        return ImportResult(
            status=ImportStatus.DUPLICATE,
            public_key=public_key,
            existing_wallet=owned,
        )

    async def export(self, identity: str, wallet_id: Optional[int] = None) -> ExportedSecret:
        """Decrypt a wallet's secret and re-encode it for the user.

        Exports the active wallet when ``wallet_id`` is omitted.

        Raises:
            WalletNotFoundError: If the wallet is not the user's
            WalletLockedError: If the wallet is locked
            CorruptSecretError: If the stored secret cannot be recovered
        """
        user = await self._user(identity)

        if wallet_id is None:
            wallet = await self.ledger.get_active_wallet(user.id)
            if wallet is None:
                raise WalletNotFoundError(f"User {user.id} has no active wallet")
        else:
            wallet = await self.ledger.get_wallet(user.id, wallet_id)

        if wallet.is_locked:
            raise WalletLockedError(f"Wallet {wallet.public_key} is locked")

        material = await self.recover_secret(wallet, user)
        logger.info(f"Exported wallet {wallet.public_key} for user {user.id}")
        return ExportedSecret(
            public_key=wallet.public_key,
            base58=keycodec.encode(material, KeyEncoding.BASE58),
            byte_array=keycodec.to_byte_array(material),
        )

    async def recover_secret(self, wallet: Wallet, user: User) -> bytes:
        """Decrypt and fully validate a wallet's 64-byte secret.

        Raises:
            CorruptSecretError: If decryption fails, the plaintext is not a
                known form, the length is not 64, or the key does not belong
                to the wallet's public key
        """
        try:
            material = await self.cipher.open_secret_async(wallet.encrypted_private_key, user.identity)
        except (DecryptionFailedError, CorruptSecretError) as e:
            logger.error(f"Secret of wallet {wallet.id} could not be decrypted: {e.kind.value}")
            raise CorruptSecretError(f"Secret of wallet {wallet.public_key} is unreadable") from e

        if len(material) != keycodec.SECRET_KEY_LENGTH:
            logger.error(f"Secret of wallet {wallet.id} has length {len(material)}")
            raise CorruptSecretError(
                f"Secret of wallet {wallet.public_key} has length {len(material)}"
            )

        try:
            public_key = keycodec.derive_public_key(material)
        except InvalidKeyFormatError as e:
            raise CorruptSecretError(f"Secret of wallet {wallet.public_key} is not a keypair") from e
        if public_key != wallet.public_key:
            logger.error(f"Secret of wallet {wallet.id} belongs to another public key")
            raise CorruptSecretError(f"Secret of wallet {wallet.public_key} does not match")

        return material

    async def switch_active(
        self,
        identity: str,
        wallet_id: Optional[int] = None,
        public_key: Optional[str] = None,
    ) -> Wallet:
        """Make another of the user's wallets active, by id or public key."""
        if (wallet_id is None) == (public_key is None):
            raise ValueError("Pass exactly one of wallet_id or public_key")

        user = await self._user(identity)

        async with user_lock(identity, timeout=self.lock_timeout, operation="switch_wallet"):
            if public_key is not None:
                wallet = await self.ledger.find_by_public_key(public_key)
                if wallet is None or wallet.user_id != user.id:
                    raise WalletNotFoundError(f"Wallet {public_key} not found for user {user.id}")
                wallet_id = wallet.id

            wallet = await self.ledger.set_active(user.id, wallet_id)
            await self.ledger.commit()

        logger.info(f"User {user.id} switched to wallet {wallet.public_key}")
        return wallet

    async def lock(self, identity: str, wallet_id: int) -> Wallet:
        return await self._set_locked(identity, wallet_id, True)

    async def unlock(self, identity: str, wallet_id: int) -> Wallet:
        return await self._set_locked(identity, wallet_id, False)

    async def _set_locked(self, identity: str, wallet_id: int, locked: bool) -> Wallet:
        user = await self._user(identity)
        operation = "lock_wallet" if locked else "unlock_wallet"
        async with user_lock(identity, timeout=self.lock_timeout, operation=operation):
            wallet = await self.ledger.set_locked(user.id, wallet_id, locked)
            await self.ledger.commit()
        return wallet

    async def list_wallets(self, identity: str) -> list[Wallet]:
        user = await self._user(identity)
        return await self.ledger.list_wallets(user.id)

    async def get_active_wallet(self, identity: str) -> Optional[Wallet]:
        user = await self._user(identity)
        return await self.ledger.get_active_wallet(user.id)
