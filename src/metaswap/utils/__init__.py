"""Utility modules for metaswap."""

from metaswap.utils.locks import KeyedLock, KeyedLocks, LockTimeoutError

__all__ = ["KeyedLock", "KeyedLocks", "LockTimeoutError"]
