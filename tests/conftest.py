"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from eth_account import Account
from eth_utils import to_checksum_address
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment
_TEST_DB_DIR = tempfile.mkdtemp(prefix="metaswap-test-")
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_TEST_DB_DIR) / 'api.db'}"
os.environ["DEBUG"] = "false"
os.environ.pop("SWAP_DOMAIN", None)
os.environ["ALLOW_MINT"] = "true"

from metaswap.ledger.database import make_engine, make_session_factory
from metaswap.ledger.memory import InMemoryLedger
from metaswap.ledger.models import Base
from metaswap.ledger.repository import LedgerRepository
from metaswap.settlement import InMemorySettlementStore, SqlSettlementStore
from metaswap.signing.local import sign_digest
from metaswap.terms import ExchangeTerms, build_digest

# 10 tokens with 18 decimals
TEN = 10 * 10**18

GEO = to_checksum_address("0x" + "a1" * 20)
USDT = to_checksum_address("0x" + "b2" * 20)

ALICE_KEY = "0x" + "11" * 32
BOB_KEY = "0x" + "22" * 32
CAROL_KEY = "0x" + "33" * 32

START = 1_700_000_000
DAY = 24 * 60 * 60


class FakeClock:
    """Settable unix clock."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def sign_terms(account, terms: ExchangeTerms, domain=None):
    """Sign terms the way the authorizer does off-band."""
    return sign_digest(account.key, build_digest(terms, domain))


def make_terms(deadline: int, amount_a: int = TEN, amount_b: int = TEN) -> ExchangeTerms:
    return ExchangeTerms(
        asset_a=GEO,
        amount_a=amount_a,
        asset_b=USDT,
        amount_b=amount_b,
        deadline=deadline,
    )


@pytest.fixture
def alice():
    return Account.from_key(ALICE_KEY)


@pytest.fixture
def bob():
    return Account.from_key(BOB_KEY)


@pytest.fixture
def carol():
    return Account.from_key(CAROL_KEY)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(alice, bob) -> InMemorySettlementStore:
    """Alice holds 10 GEO, Bob holds 10 USDT."""
    geo = InMemoryLedger(GEO)
    usdt = InMemoryLedger(USDT)
    geo.mint(alice.address, TEN)
    usdt.mint(bob.address, TEN)
    return InMemorySettlementStore([geo, usdt])


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create file-backed database engine for testing."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest_asyncio.fixture
async def sql_store(session_factory, alice, bob) -> SqlSettlementStore:
    """SQL store where Alice holds 10 GEO and Bob holds 10 USDT."""
    async with session_factory() as session:
        repo = LedgerRepository(session)
        await repo.credit_balance(alice.address, GEO, TEN)
        await repo.credit_balance(bob.address, USDT, TEN)
        await session.commit()
    return SqlSettlementStore(session_factory)
