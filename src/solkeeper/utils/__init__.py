"""Utility modules for SolKeeper."""

from solkeeper.utils.locks import LockTimeoutError, UserLock, get_user_lock, user_lock

__all__ = ["LockTimeoutError", "UserLock", "get_user_lock", "user_lock"]
