"""Repository for ledger and settlement database operations."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metaswap.errors import InsufficientBalance, NotAuthorized
from metaswap.ledger.base import AssetLedger, check_amount
from metaswap.ledger.models import AccountBalance, ConsumedDigest, SwapReceiptRecord
from metaswap.terms import UINT256_MAX, normalize_address


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Balance operations
    async def get_balance(
        self, holder: str, asset: str, for_update: bool = False
    ) -> Optional[AccountBalance]:
        """Get holder balance row for a specific asset."""
        stmt = select(AccountBalance).where(
            AccountBalance.holder == normalize_address(holder),
            AccountBalance.asset == normalize_address(asset),
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all_balances(self, holder: str) -> list[AccountBalance]:
        """Get all balances for a holder."""
        stmt = (
            select(AccountBalance)
            .where(AccountBalance.holder == normalize_address(holder))
            .order_by(AccountBalance.asset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_or_create_balance(self, holder: str, asset: str) -> AccountBalance:
        """Get or create a balance record for holder/asset."""
        balance = await self.get_balance(holder, asset, for_update=True)
        if balance is None:
            balance = AccountBalance(
                holder=normalize_address(holder),
                asset=normalize_address(asset),
                amount="0",
                operator_revoked=False,
            )
            self.session.add(balance)
            await self.session.flush()
        return balance

    async def balance_of(self, holder: str, asset: str) -> int:
        balance = await self.get_balance(holder, asset)
        return balance.value if balance else 0

    async def credit_balance(self, holder: str, asset: str, amount: int) -> AccountBalance:
        """Add amount to holder balance."""
        check_amount(amount)
        balance = await self.get_or_create_balance(holder, asset)
        new_amount = balance.value + amount
        if new_amount > UINT256_MAX:
            raise ValueError(f"Balance overflows uint256 for {asset}")
        balance.amount = str(new_amount)
        await self.session.flush()
        return balance

    async def debit_balance(self, holder: str, asset: str, amount: int) -> AccountBalance:
        """Subtract amount from holder balance. Raises InsufficientBalance if short."""
        check_amount(amount)
        balance = await self.get_or_create_balance(holder, asset)
        if balance.value < amount:
            raise InsufficientBalance(
                f"Insufficient balance: {balance.holder} has {balance.value} of {balance.asset}, "
                f"need {amount}"
            )
        balance.amount = str(balance.value - amount)
        await self.session.flush()
        return balance

    async def transfer_from(self, asset: str, owner: str, recipient: str, amount: int) -> None:
        """Move amount of asset from owner to recipient as the swap operator."""
        owner_balance = await self.get_or_create_balance(owner, asset)
        if owner_balance.operator_revoked:
            raise NotAuthorized(f"{owner_balance.holder} revoked the operator on {asset}")
        await self.debit_balance(owner, asset, amount)
        await self.credit_balance(recipient, asset, amount)

    async def set_operator_revoked(self, holder: str, asset: str, revoked: bool) -> AccountBalance:
        balance = await self.get_or_create_balance(holder, asset)
        balance.operator_revoked = revoked
        await self.session.flush()
        return balance

    # Consumed digest tracking (replay protection)
    async def is_digest_consumed(self, digest: str) -> bool:
        """Check if a digest has already been consumed."""
        stmt = select(ConsumedDigest).where(ConsumedDigest.digest == digest)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def mark_digest_consumed(self, digest: str) -> ConsumedDigest:
        """Insert a consumed digest. Flushes so a duplicate fails right here."""
        consumed = ConsumedDigest(digest=digest)
        self.session.add(consumed)
        await self.session.flush()
        return consumed

    # Receipts
    async def add_receipt(self, **fields) -> SwapReceiptRecord:
        record = SwapReceiptRecord(**fields)
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_receipt(self, digest: str) -> Optional[SwapReceiptRecord]:
        stmt = select(SwapReceiptRecord).where(SwapReceiptRecord.digest == digest)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_receipts_by_authorizer(
        self, authorizer: str, limit: int = 20, offset: int = 0
    ) -> list[SwapReceiptRecord]:
        stmt = (
            select(SwapReceiptRecord)
            .where(SwapReceiptRecord.authorizer == normalize_address(authorizer))
            .order_by(SwapReceiptRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class SqlAssetLedger(AssetLedger):
    """AssetLedger view of one asset over a LedgerRepository."""

    def __init__(self, repo: LedgerRepository, asset: str):
        self.repo = repo
        self.asset = normalize_address(asset)

    async def balance_of(self, holder: str) -> int:
        return await self.repo.balance_of(holder, self.asset)

    async def transfer_from(self, owner: str, recipient: str, amount: int) -> None:
        await self.repo.transfer_from(self.asset, owner, recipient, amount)
