"""Atomic settlement units.

A settlement groups the two transfer legs of a swap, the consumption of its
digest and the receipt into one unit that commits entirely or not at all.

Usage:
    async with store.atomic() as settlement:
        if await settlement.guard.has_been_consumed(digest):
            ...
        await settlement.ledger(asset_a).transfer_from(owner, recipient, amount)
        await settlement.guard.consume(digest)
        await settlement.record(receipt)
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncGenerator, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from metaswap.errors import AlreadyConsumed, TransferFailed, UnknownAsset
from metaswap.guard import InMemoryReplayGuard, ReplayGuard, SqlReplayGuard
from metaswap.ledger.base import AssetLedger
from metaswap.ledger.memory import InMemoryLedger
from metaswap.ledger.models import SwapReceiptRecord
from metaswap.ledger.repository import LedgerRepository, SqlAssetLedger
from metaswap.terms import Digest, ExchangeTerms, normalize_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapReceipt:
    """Proof of a settled swap."""
    digest: Digest
    terms: ExchangeTerms
    authorizer: str
    relayer: str
    executed_at: int

    def to_dict(self) -> dict:
        return {
            "digest": self.digest.hex,
            "terms": self.terms.to_dict(),
            "authorizer": self.authorizer,
            "relayer": self.relayer,
            "executed_at": self.executed_at,
        }


class Settlement(ABC):
    """One unit of work: transfers, consumption and receipt commit together."""

    guard: ReplayGuard

    @abstractmethod
    def ledger(self, asset: str) -> AssetLedger:
        """Ledger of asset within this unit.

        Raises:
            UnknownAsset: If no ledger exists for asset
        """
        pass

    @abstractmethod
    async def record(self, receipt: SwapReceipt) -> None:
        pass


class SettlementStore(ABC):
    """Abstract base class for settlement backends."""

    @abstractmethod
    def atomic(self) -> AsyncContextManager[Settlement]:
        pass

    @abstractmethod
    async def get_receipt(self, digest: Digest) -> Optional[SwapReceipt]:
        pass

    @abstractmethod
    async def has_been_consumed(self, digest: Digest) -> bool:
        pass

    @abstractmethod
    async def list_receipts(
        self, authorizer: str, limit: int = 20, offset: int = 0
    ) -> list[SwapReceipt]:
        """Receipts of swaps authorized by authorizer, newest first."""
        pass


# ============================================================
# In-memory
# ============================================================


class _JournaledLedger(AssetLedger):
    """Applies transfers immediately and remembers how to undo them."""

    def __init__(self, ledger: InMemoryLedger, journal: list):
        self._ledger = ledger
        self._journal = journal
        self.asset = ledger.asset

    async def balance_of(self, holder: str) -> int:
        return await self._ledger.balance_of(holder)

    async def transfer_from(self, owner: str, recipient: str, amount: int) -> None:
        await self._ledger.transfer_from(owner, recipient, amount)
        self._journal.append((self._ledger, owner, recipient, amount))


class _PendingGuard(ReplayGuard):
    """Consumptions become visible to the real guard only on commit."""

    def __init__(self, guard: InMemoryReplayGuard):
        self._guard = guard
        self.pending: list[Digest] = []

    async def has_been_consumed(self, digest: Digest) -> bool:
        return digest in self.pending or await self._guard.has_been_consumed(digest)

    async def consume(self, digest: Digest) -> None:
        if await self.has_been_consumed(digest):
            raise AlreadyConsumed()
        self.pending.append(digest)


class _InMemorySettlement(Settlement):
    def __init__(self, store: "InMemorySettlementStore"):
        self._store = store
        self._journal: list = []
        self._receipts: list[SwapReceipt] = []
        self.guard = _PendingGuard(store.guard)

    def ledger(self, asset: str) -> _JournaledLedger:
        return _JournaledLedger(self._store.ledger(asset), self._journal)

    async def record(self, receipt: SwapReceipt) -> None:
        self._receipts.append(receipt)

    async def commit(self) -> None:
        for digest in self.guard.pending:
            await self._store.guard.consume(digest)
        for receipt in self._receipts:
            self._store.receipts[receipt.digest] = receipt

    def rollback(self) -> None:
        while self._journal:
            ledger, owner, recipient, amount = self._journal.pop()
            ledger.revert_transfer(owner, recipient, amount)
        self.guard.pending.clear()
        self._receipts.clear()


class InMemorySettlementStore(SettlementStore):
    """Settlement over in-memory ledgers and replay guard.

    Rollback undoes each applied transfer by delta, so concurrent credits to
    the same accounts are preserved.
    """

    def __init__(
        self,
        ledgers: Optional[list[InMemoryLedger]] = None,
        guard: Optional[InMemoryReplayGuard] = None,
    ):
        self.guard = guard or InMemoryReplayGuard()
        self.receipts: dict[Digest, SwapReceipt] = {}
        self._ledgers: dict[str, InMemoryLedger] = {}
        for ledger in ledgers or []:
            self.add_ledger(ledger)

    def add_ledger(self, ledger: InMemoryLedger) -> InMemoryLedger:
        self._ledgers[ledger.asset] = ledger
        return ledger

    def create_ledger(self, asset: str) -> InMemoryLedger:
        """Get the ledger for asset, registering a new one if needed."""
        asset = normalize_address(asset)
        if asset not in self._ledgers:
            self._ledgers[asset] = InMemoryLedger(asset)
        return self._ledgers[asset]

    def ledger(self, asset: str) -> InMemoryLedger:
        try:
            return self._ledgers[normalize_address(asset)]
        except (KeyError, ValueError):
            raise UnknownAsset(f"No ledger registered for {asset}")

    @asynccontextmanager
    async def atomic(self) -> AsyncGenerator[_InMemorySettlement, None]:
        settlement = _InMemorySettlement(self)
        try:
            yield settlement
            await settlement.commit()
        except BaseException:
            settlement.rollback()
            raise

    async def get_receipt(self, digest: Digest) -> Optional[SwapReceipt]:
        return self.receipts.get(digest)

    async def has_been_consumed(self, digest: Digest) -> bool:
        return await self.guard.has_been_consumed(digest)

    async def list_receipts(
        self, authorizer: str, limit: int = 20, offset: int = 0
    ) -> list[SwapReceipt]:
        authorizer = normalize_address(authorizer)
        matching = [r for r in reversed(self.receipts.values()) if r.authorizer == authorizer]
        return matching[offset:offset + limit]


# ============================================================
# SQL
# ============================================================


class SqlSettlement(Settlement):
    def __init__(self, repo: LedgerRepository):
        self.repo = repo
        self.guard = SqlReplayGuard(repo)

    def ledger(self, asset: str) -> SqlAssetLedger:
        try:
            return SqlAssetLedger(self.repo, asset)
        except ValueError:
            raise UnknownAsset(f"Invalid asset address {asset}")

    async def record(self, receipt: SwapReceipt) -> None:
        terms = receipt.terms
        await self.repo.add_receipt(
            digest=receipt.digest.hex,
            asset_a=terms.asset_a,
            amount_a=str(terms.amount_a),
            asset_b=terms.asset_b,
            amount_b=str(terms.amount_b),
            deadline=str(terms.deadline),
            authorizer=receipt.authorizer,
            relayer=receipt.relayer,
            executed_at=receipt.executed_at,
        )


class SqlSettlementStore(SettlementStore):
    """Settlement in a single database transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def atomic(self) -> AsyncGenerator[SqlSettlement, None]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield SqlSettlement(LedgerRepository(session))
        except OperationalError as e:
            # another writer held the database past the busy timeout
            logger.warning(f"Settlement transaction failed: {e}")
            raise TransferFailed(f"Ledger busy, retry later: {e.orig}") from e

    async def get_receipt(self, digest: Digest) -> Optional[SwapReceipt]:
        async with self._session_factory() as session:
            record = await LedgerRepository(session).get_receipt(digest.hex)
        return _receipt_from_record(record) if record else None

    async def has_been_consumed(self, digest: Digest) -> bool:
        async with self._session_factory() as session:
            return await LedgerRepository(session).is_digest_consumed(digest.hex)

    async def list_receipts(
        self, authorizer: str, limit: int = 20, offset: int = 0
    ) -> list[SwapReceipt]:
        async with self._session_factory() as session:
            records = await LedgerRepository(session).get_receipts_by_authorizer(
                authorizer, limit=limit, offset=offset
            )
        return [_receipt_from_record(record) for record in records]


def _receipt_from_record(record: SwapReceiptRecord) -> SwapReceipt:
    return SwapReceipt(
        digest=Digest.from_hex(record.digest),
        terms=ExchangeTerms(
            asset_a=record.asset_a,
            amount_a=int(record.amount_a),
            asset_b=record.asset_b,
            amount_b=int(record.amount_b),
            deadline=int(record.deadline),
        ),
        authorizer=record.authorizer,
        relayer=record.relayer,
        executed_at=record.executed_at,
    )
