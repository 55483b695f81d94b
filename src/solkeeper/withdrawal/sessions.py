"""Withdrawal session state and its keyed store."""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from solkeeper.errors import SessionExpiredError
from solkeeper.utils.locks import UserLock

logger = logging.getLogger(__name__)


class WithdrawalState(str, Enum):
    """Steps of the guided withdrawal flow."""

    IDLE = "idle"
    AWAITING_TOKEN = "awaiting_token"
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_ADDRESS = "awaiting_address"
    AWAITING_CONFIRM = "awaiting_confirm"


@dataclass
class TokenOption:
    """A token the user may withdraw, with its spendable balance."""

    mint: str
    symbol: str
    amount: Decimal
    decimals: int
    is_native: bool = False


@dataclass
class WithdrawalSession:
    """In-progress withdrawal of one user."""

    identity: str
    wallet_id: int
    from_address: str
    tokens: list[TokenOption]
    state: WithdrawalState = WithdrawalState.AWAITING_TOKEN
    token: Optional[TokenOption] = None
    amount: Optional[Decimal] = None
    address: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def find_token(self, mint: str) -> Optional[TokenOption]:
        return next((t for t in self.tokens if t.mint == mint), None)


class SessionStore:
    """Withdrawal sessions keyed by identity, with a sliding TTL.

    Access to one identity's session is serialized with ``lock()``; the store
    itself does no locking.
    """

    def __init__(
        self,
        ttl: float = 600.0,
        lock_timeout: Optional[float] = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.lock_timeout = lock_timeout
        self._clock = clock
        self._sessions: dict[str, WithdrawalSession] = {}

    def lock(self, identity: str, operation: str = "withdrawal") -> UserLock:
        """Per-identity lock for a read-modify-write of the session."""
        return UserLock(identity, timeout=self.lock_timeout, operation=operation)

    def open(self, session: WithdrawalSession) -> WithdrawalSession:
        """Store a new session, replacing any previous one."""
        now = self._clock()
        session.created_at = now
        session.updated_at = now
        self._sessions[str(session.identity)] = session
        return session

    def get(self, identity: str) -> Optional[WithdrawalSession]:
        """Get the live session of a user.

        Returns None if the user has none.

        Raises:
            SessionExpiredError: If the session outlived its TTL; it is
                discarded
        """
        key = str(identity)
        session = self._sessions.get(key)
        if session is None:
            return None

        if self._clock() - session.updated_at > self.ttl:
            del self._sessions[key]
            logger.info(f"Withdrawal session expired for user {key}")
            raise SessionExpiredError("Withdrawal session expired, please start again")

        return session

    def touch(self, session: WithdrawalSession) -> None:
        """Record activity on a session."""
        session.updated_at = self._clock()

    def clear(self, identity: str) -> bool:
        """Discard a user's session. Returns True if one existed."""
        return self._sessions.pop(str(identity), None) is not None

    def __contains__(self, identity: str) -> bool:
        return str(identity) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
