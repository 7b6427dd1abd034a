"""Replay guard: the set of digests already consumed.

A digest in the set can never execute again. The set only grows.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import IntegrityError

from metaswap.errors import AlreadyConsumed
from metaswap.ledger.repository import LedgerRepository
from metaswap.terms import Digest

logger = logging.getLogger(__name__)


class ReplayGuard(ABC):
    """Abstract base class for a consumed-digest set."""

    @abstractmethod
    async def has_been_consumed(self, digest: Digest) -> bool:
        pass

    @abstractmethod
    async def consume(self, digest: Digest) -> None:
        """Insert digest.

        Raises:
            AlreadyConsumed: If digest is already in the set
        """
        pass


class InMemoryReplayGuard(ReplayGuard):
    """Process-local consumed set, for tests and simulation."""

    def __init__(self):
        self._consumed: set[bytes] = set()
        self._lock = asyncio.Lock()

    async def has_been_consumed(self, digest: Digest) -> bool:
        return digest.value in self._consumed

    async def consume(self, digest: Digest) -> None:
        async with self._lock:
            if digest.value in self._consumed:
                raise AlreadyConsumed()
            self._consumed.add(digest.value)
        logger.debug(f"Consumed {digest}")

    def __len__(self) -> int:
        return len(self._consumed)


class SqlReplayGuard(ReplayGuard):
    """Durable consumed set in the consumed_digests table.

    Bound to the session of the surrounding settlement; the insert commits or
    rolls back together with everything else in that transaction. The primary
    key makes check-then-insert atomic across processes.
    """

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    async def has_been_consumed(self, digest: Digest) -> bool:
        return await self.repo.is_digest_consumed(digest.hex)

    async def consume(self, digest: Digest) -> None:
        if await self.repo.is_digest_consumed(digest.hex):
            raise AlreadyConsumed()
        try:
            await self.repo.mark_digest_consumed(digest.hex)
        except IntegrityError as e:
            logger.warning(f"Concurrent consumption of {digest} lost the race")
            raise AlreadyConsumed() from e
        logger.debug(f"Consumed {digest}")
