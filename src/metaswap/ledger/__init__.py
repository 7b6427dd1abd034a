"""Ledger module for asset balances and settlement state."""

from metaswap.ledger.base import AssetLedger
from metaswap.ledger.database import get_db, init_db
from metaswap.ledger.memory import InMemoryLedger
from metaswap.ledger.models import (
    AccountBalance,
    ConsumedDigest,
    SwapReceiptRecord,
)
from metaswap.ledger.repository import LedgerRepository, SqlAssetLedger

__all__ = [
    # Models
    "AccountBalance",
    "ConsumedDigest",
    "SwapReceiptRecord",
    # Ledgers
    "AssetLedger",
    "InMemoryLedger",
    "SqlAssetLedger",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
]
