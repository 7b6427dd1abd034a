"""SQLAlchemy models for balances and settlement state."""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# uint256 max has 78 decimal digits
AMOUNT_DIGITS = 78


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class AccountBalance(Base):
    """Holder balance on one asset ledger.

    Amounts are uint256 and stored as exact decimal strings.
    """

    __tablename__ = "balances"
    __table_args__ = (Index("ix_balances_holder_asset", "holder", "asset", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    holder: Mapped[str] = mapped_column(String(42), nullable=False)
    asset: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[str] = mapped_column(String(AMOUNT_DIGITS), default="0", nullable=False)
    # Holders may revoke the swap operator (ERC777 default operator semantics)
    operator_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def value(self) -> int:
        return int(self.amount)


class ConsumedDigest(Base):
    """Digest of an executed authorization. Rows are never deleted."""

    __tablename__ = "consumed_digests"

    digest: Mapped[str] = mapped_column(String(66), primary_key=True)
    consumed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class SwapReceiptRecord(Base):
    """Audit record of a settled swap."""

    __tablename__ = "swap_receipts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    digest: Mapped[str] = mapped_column(
        ForeignKey("consumed_digests.digest"), unique=True, nullable=False, index=True
    )
    asset_a: Mapped[str] = mapped_column(String(42), nullable=False)
    amount_a: Mapped[str] = mapped_column(String(AMOUNT_DIGITS), nullable=False)
    asset_b: Mapped[str] = mapped_column(String(42), nullable=False)
    amount_b: Mapped[str] = mapped_column(String(AMOUNT_DIGITS), nullable=False)
    deadline: Mapped[str] = mapped_column(String(AMOUNT_DIGITS), nullable=False)
    authorizer: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    relayer: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    executed_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
