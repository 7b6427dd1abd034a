"""Keyed concurrency control for swap settlement.

Provides per-key locking so that executions touching the same digest or the
same ledger account serialize, while unrelated executions run concurrently.
A key's lock lives only while some holder or waiter references it.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class KeyedLocks:
    """Registry of asyncio locks, one per key in use."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def checkout(self, key: str) -> asyncio.Lock:
        """Reference the lock for a key, creating it if needed.

        No await between lookup and insert, so two tasks can not create
        different locks for the same key. Every checkout needs a checkin.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def checkin(self, key: str) -> None:
        """Drop a reference; the lock is forgotten when none remain."""
        remaining = self._refs.get(key, 0) - 1
        if remaining > 0:
            self._refs[key] = remaining
        else:
            self._refs.pop(key, None)
            self._locks.pop(key, None)

    def hold(
        self,
        *keys: str,
        timeout: Optional[float] = None,
        operation: str = "settlement",
    ) -> "KeyedLock":
        """Lock all keys for the duration of an async with block.

        The swap executor waits without a timeout; timeout is for direct
        callers that would rather fail with LockTimeoutError than queue.
        """
        return KeyedLock(self, keys, timeout=timeout, operation=operation)

    def clear(self) -> None:
        """Clear all locks (useful for testing)."""
        self._locks.clear()
        self._refs.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)


class KeyedLock:
    """Context manager acquiring several keyed locks at once.

    Keys are de-duplicated and taken in sorted order, so any two holders
    that overlap acquire the shared keys in the same order.

    Example:
        async with locks.hold("digest:0xab..", operation="swap"):
            ...
    """

    def __init__(
        self,
        registry: KeyedLocks,
        keys,
        timeout: Optional[float] = None,
        operation: str = "settlement",
    ):
        self.registry = registry
        self.keys = sorted(set(keys))
        self.timeout = timeout
        self.operation = operation
        self._checked_out: list[str] = []
        self._held: list[asyncio.Lock] = []

    async def __aenter__(self) -> "KeyedLock":
        try:
            for key in self.keys:
                lock = self.registry.checkout(key)
                self._checked_out.append(key)
                if self.timeout:
                    await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
                else:
                    await lock.acquire()
                self._held.append(lock)
                logger.debug(f"Lock acquired for {key}: {self.operation}")
        except asyncio.TimeoutError:
            self._release()
            logger.warning(f"Lock timeout after {self.timeout}s: {self.operation}")
            raise LockTimeoutError(
                f"Could not acquire locks {self.keys} within {self.timeout}s"
            )
        except BaseException:
            self._release()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._release()
        return False

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()
        while self._checked_out:
            self.registry.checkin(self._checked_out.pop())
        logger.debug(f"Locks released: {self.operation}")
