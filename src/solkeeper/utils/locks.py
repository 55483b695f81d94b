"""Per-user serialization of wallet operations.

Wallet switches, imports, lock changes and withdrawal steps of one user run
one at a time; different users never share a lock. A user's lock stays in
the registry only while some task holds or awaits it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from solkeeper.errors import LockTimeoutError

logger = logging.getLogger(__name__)

# identity -> lock, and how many UserLock holders/waiters reference it
_user_locks: dict[str, asyncio.Lock] = {}
_lock_refs: dict[str, int] = {}
_registry_lock = asyncio.Lock()


async def get_user_lock(identity: str) -> asyncio.Lock:
    """Get or create the lock of a user.

    Args:
        identity: Platform identity of the user (e.g. Telegram ID)
    """
    key = str(identity)
    async with _registry_lock:
        if key not in _user_locks:
            _user_locks[key] = asyncio.Lock()
        return _user_locks[key]


async def _checkout(key: str) -> asyncio.Lock:
    async with _registry_lock:
        lock = _user_locks.setdefault(key, asyncio.Lock())
        _lock_refs[key] = _lock_refs.get(key, 0) + 1
        return lock


def _checkin(key: str, lock: asyncio.Lock) -> None:
    remaining = _lock_refs.get(key, 0) - 1
    if remaining > 0:
        _lock_refs[key] = remaining
        return
    _lock_refs.pop(key, None)
    if _user_locks.get(key) is lock and not lock.locked():
        del _user_locks[key]


class UserLock:
    """Exclusive access to one user's wallets.

    Example:
        async with UserLock(identity, operation="withdraw"):
            wallet = await ledger.get_active_wallet(user.id)
            ...
    """

    def __init__(
        self,
        identity: str,
        timeout: Optional[float] = 30.0,
        operation: str = "wallet_operation",
    ):
        """Initialize the lock.

        Args:
            identity: Platform identity of the user
            timeout: Maximum time to wait for the lock (None = wait forever)
            operation: Name of the operation, for logging
        """
        self.identity = str(identity)
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "UserLock":
        self._lock = await _checkout(self.identity)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
        except asyncio.TimeoutError:
            _checkin(self.identity, self._lock)
            logger.warning(
                f"Lock timeout for user {self.identity} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire lock for user {self.identity} within {self.timeout}s"
            )
        except BaseException:
            _checkin(self.identity, self._lock)
            raise

        self._acquired = True
        logger.debug(f"Lock acquired for user {self.identity}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            _checkin(self.identity, self._lock)
            logger.debug(f"Lock released for user {self.identity}: {self.operation}")
        return False


@asynccontextmanager
async def user_lock(
    identity: str,
    timeout: Optional[float] = 30.0,
    operation: str = "wallet_operation",
):
    """Functional form of ``UserLock``.

    Example:
        async with user_lock(identity, operation="import"):
            ...
    """
    async with UserLock(identity, timeout=timeout, operation=operation):
        yield


def is_user_locked(identity: str) -> bool:
    """Whether some task currently holds the user's lock."""
    lock = _user_locks.get(str(identity))
    return lock is not None and lock.locked()


def tracked_users() -> int:
    """Number of users with a lock in the registry."""
    return len(_user_locks)


def clear_user_locks() -> None:
    """Forget all locks. Locks belong to one event loop, so tests reset them."""
    _user_locks.clear()
    _lock_refs.clear()
