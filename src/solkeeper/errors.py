"""Error taxonomy for wallet custody operations.

Every error raised by the core carries an ``ErrorKind``. Callers branch on
the exception type or its ``kind``, never on message text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    INVALID_KEY_FORMAT = "invalid_key_format"      # user-correctable, re-prompt
    INVALID_KEY_LENGTH = "invalid_key_length"      # decoded, wrong byte count
    DECRYPTION_FAILED = "decryption_failed"        # cipher/padding check failed
    CORRUPT_SECRET = "corrupt_secret"              # stored secret unusable
    DUPLICATE_PUBLIC_KEY = "duplicate_public_key"  # offer switch-or-cancel
    DUPLICATE_KEY = "duplicate_key"                # persistence unique violation
    SESSION_EXPIRED = "session_expired"            # restart required
    CHAIN_SUBMISSION_FAILED = "chain_submission_failed"
    CHAIN_REQUEST_FAILED = "chain_request_failed"
    WALLET_NOT_FOUND = "wallet_not_found"
    WALLET_LOCKED = "wallet_locked"
    USER_NOT_FOUND = "user_not_found"
    IDENTITY_CHANGE = "identity_change"
    LOCK_TIMEOUT = "lock_timeout"                  # busy, retry later


class SolKeeperError(Exception):
    """Base class for all custody errors."""

    kind: ErrorKind = ErrorKind.CORRUPT_SECRET

    @property
    def user_correctable(self) -> bool:
        """Whether the user can fix this by sending different input."""
        return self.kind in (ErrorKind.INVALID_KEY_FORMAT, ErrorKind.INVALID_KEY_LENGTH)


@dataclass(frozen=True)
class FormatAttempt:
    """Outcome of one encoding detector, safe to show or log."""

    encoding: str
    reason: str


class InvalidKeyFormatError(SolKeeperError):
    """Input is not a recognised secret key encoding."""

    kind = ErrorKind.INVALID_KEY_FORMAT

    def __init__(self, message: str, attempts: Optional[Sequence[FormatAttempt]] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class InvalidKeyLengthError(InvalidKeyFormatError):
    """Input decoded, but not to exactly 64 bytes."""

    kind = ErrorKind.INVALID_KEY_LENGTH

    def __init__(
        self,
        message: str,
        length: Optional[int] = None,
        attempts: Optional[Sequence[FormatAttempt]] = None,
    ):
        super().__init__(message, attempts)
        self.length = length


class DecryptionFailedError(SolKeeperError):
    """Ciphertext could not be decrypted with the derived key."""

    kind = ErrorKind.DECRYPTION_FAILED


class CorruptSecretError(SolKeeperError):
    """Persisted secret fails to decrypt or decrypts to the wrong length."""

    kind = ErrorKind.CORRUPT_SECRET


class DuplicateKeyError(SolKeeperError):
    """Unique constraint violation reported by the persistence layer."""

    kind = ErrorKind.DUPLICATE_KEY

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicatePublicKeyError(SolKeeperError):
    """A wallet with this public key already exists."""

    kind = ErrorKind.DUPLICATE_PUBLIC_KEY

    def __init__(self, public_key: str):
        super().__init__(f"Wallet {public_key} already exists")
        self.public_key = public_key


class SessionExpiredError(SolKeeperError):
    """Withdrawal session is stale, missing or was tampered with."""

    kind = ErrorKind.SESSION_EXPIRED


class ChainError(SolKeeperError):
    """Chain RPC request failed."""

    kind = ErrorKind.CHAIN_REQUEST_FAILED


class ChainSubmissionError(ChainError):
    """Transaction submission was rejected or did not land."""

    kind = ErrorKind.CHAIN_SUBMISSION_FAILED


class WalletNotFoundError(SolKeeperError):
    """Wallet does not exist or does not belong to the user."""

    kind = ErrorKind.WALLET_NOT_FOUND


class WalletLockedError(SolKeeperError):
    """Wallet is locked and cannot be exported or spent from."""

    kind = ErrorKind.WALLET_LOCKED


class UserNotFoundError(SolKeeperError):
    """No user is registered for the platform identity."""

    kind = ErrorKind.USER_NOT_FOUND


class IdentityChangeError(SolKeeperError):
    """A persisted user's identity was reassigned."""

    kind = ErrorKind.IDENTITY_CHANGE


class LockTimeoutError(SolKeeperError):
    """Another operation of the same user held the lock for too long."""

    kind = ErrorKind.LOCK_TIMEOUT
