"""Tests for the atomic swap executor."""

import asyncio
import logging

import pytest

from conftest import DAY, GEO, START, TEN, USDT, make_terms, sign_terms
from metaswap.errors import (
    AlreadyConsumed,
    BadSignature,
    Expired,
    InsufficientBalance,
    NotAuthorized,
    TransferFailed,
    UnknownAsset,
)
from metaswap.ledger.database import make_engine, make_session_factory
from metaswap.ledger.repository import LedgerRepository
from metaswap.settlement import SqlSettlementStore
from metaswap.swap import AtomicSwapExecutor
from metaswap.terms import Digest, ExchangeTerms, build_digest
from metaswap.utils.locks import KeyedLocks

DOMAIN = "0x" + "c3" * 20


@pytest.fixture
def executor(memory_store, clock) -> AtomicSwapExecutor:
    return AtomicSwapExecutor(memory_store, clock=clock)


def balances(store, *holders):
    """(GEO, USDT) per holder from an in-memory store."""
    geo, usdt = store.ledger(GEO), store.ledger(USDT)
    return [(geo.balance(h.address), usdt.balance(h.address)) for h in holders]


class TestExecute:
    """Settlement against in-memory ledgers."""

    @pytest.mark.asyncio
    async def test_alice_and_bob_swap(self, executor, memory_store, clock, alice, bob):
        terms = make_terms(START + DAY)
        signature = sign_terms(alice, terms)

        receipt = await executor.execute(terms, signature, alice.address, bob.address)

        assert balances(memory_store, alice, bob) == [(0, TEN), (TEN, 0)]
        assert receipt.digest == build_digest(terms)
        assert receipt.authorizer == alice.address
        assert receipt.relayer == bob.address
        assert receipt.executed_at == clock.now
        assert await memory_store.has_been_consumed(receipt.digest)
        assert await memory_store.get_receipt(receipt.digest) == receipt

    @pytest.mark.asyncio
    async def test_replay_rejected(self, executor, memory_store, alice, bob):
        terms = make_terms(START + DAY)
        signature = sign_terms(alice, terms)
        await executor.execute(terms, signature, alice.address, bob.address)

        with pytest.raises(AlreadyConsumed):
            await executor.execute(terms, signature, alice.address, bob.address)

        assert balances(memory_store, alice, bob) == [(0, TEN), (TEN, 0)]

    @pytest.mark.asyncio
    async def test_replay_by_other_relayer_rejected(self, executor, memory_store, alice, bob, carol):
        terms = make_terms(START + DAY, amount_a=TEN // 2, amount_b=TEN // 2)
        signature = sign_terms(alice, terms)
        memory_store.ledger(USDT).mint(carol.address, TEN)
        await executor.execute(terms, signature, alice.address, bob.address)

        with pytest.raises(AlreadyConsumed):
            await executor.execute(terms, signature, alice.address, carol.address)

        assert balances(memory_store, carol) == [(0, TEN)]

    @pytest.mark.asyncio
    async def test_deadline_is_inclusive(self, executor, memory_store, clock, alice, bob):
        terms = make_terms(START + DAY)
        clock.advance(DAY)

        await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert balances(memory_store, alice) == [(0, TEN)]

    @pytest.mark.asyncio
    async def test_expired(self, executor, memory_store, clock, alice, bob):
        terms = make_terms(START + DAY)
        clock.advance(DAY + 1)

        with pytest.raises(Expired, match="outdated"):
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]
        assert not await memory_store.has_been_consumed(build_digest(terms))

    @pytest.mark.asyncio
    async def test_expiry_checked_before_signature(self, executor, clock, alice, bob):
        terms = make_terms(START - 1)

        with pytest.raises(Expired):
            await executor.execute(terms, b"\x00" * 65, alice.address, bob.address)

    @pytest.mark.asyncio
    async def test_tampered_terms(self, executor, memory_store, alice, bob):
        signed = make_terms(START + DAY)
        signature = sign_terms(alice, signed)
        tampered = make_terms(START + DAY, amount_b=TEN // 10)

        with pytest.raises(BadSignature):
            await executor.execute(tampered, signature, alice.address, bob.address)

        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]
        assert not await memory_store.has_been_consumed(build_digest(tampered))
        assert not await memory_store.has_been_consumed(build_digest(signed))

    @pytest.mark.asyncio
    async def test_wrong_signer(self, executor, alice, bob):
        terms = make_terms(START + DAY)

        with pytest.raises(BadSignature):
            await executor.execute(terms, sign_terms(bob, terms), alice.address, bob.address)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signature", [b"", b"\x01" * 65, "0xdeadbeef", "garbage"])
    async def test_malformed_signature(self, executor, alice, bob, signature):
        terms = make_terms(START + DAY)

        with pytest.raises(BadSignature):
            await executor.execute(terms, signature, alice.address, bob.address)

    @pytest.mark.asyncio
    async def test_claimed_digest_is_not_trusted(self, executor, memory_store, alice, bob, caplog):
        terms = make_terms(START + DAY)
        bogus = Digest(b"\x00" * 32)

        with caplog.at_level(logging.WARNING):
            receipt = await executor.execute(
                terms, sign_terms(alice, terms), alice.address, bob.address, claimed_digest=bogus
            )

        assert receipt.digest == build_digest(terms)
        assert "does not match" in caplog.text
        assert not await memory_store.has_been_consumed(bogus)

    @pytest.mark.asyncio
    async def test_second_leg_failure_is_atomic(self, executor, memory_store, alice, bob):
        terms = make_terms(START + DAY, amount_b=TEN + 1)
        signature = sign_terms(alice, terms)

        with pytest.raises(TransferFailed) as exc_info:
            await executor.execute(terms, signature, alice.address, bob.address)

        assert exc_info.value.retryable
        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]
        assert not await memory_store.has_been_consumed(build_digest(terms))

        # once the relayer is funded the same authorization settles
        memory_store.ledger(USDT).mint(bob.address, 1)
        await executor.execute(terms, signature, alice.address, bob.address)

        assert balances(memory_store, alice, bob) == [(0, TEN + 1), (TEN, 0)]

    @pytest.mark.asyncio
    async def test_first_leg_failure(self, executor, memory_store, alice, bob):
        terms = make_terms(START + DAY, amount_a=TEN + 1)

        with pytest.raises(TransferFailed):
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]

    @pytest.mark.asyncio
    async def test_revoked_operator(self, executor, memory_store, alice, bob):
        memory_store.ledger(GEO).revoke_operator(alice.address)
        terms = make_terms(START + DAY)

        with pytest.raises(TransferFailed) as exc_info:
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert isinstance(exc_info.value.__cause__, NotAuthorized)
        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]

    @pytest.mark.asyncio
    async def test_unknown_asset(self, executor, memory_store, alice, bob):
        unlisted = "0x" + "d4" * 20
        terms = ExchangeTerms(GEO, TEN, unlisted, 1, START + DAY)

        with pytest.raises(TransferFailed) as exc_info:
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert isinstance(exc_info.value.__cause__, UnknownAsset)
        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]

    @pytest.mark.asyncio
    async def test_invalid_caller(self, executor, memory_store, alice):
        terms = make_terms(START + DAY)

        with pytest.raises(TransferFailed):
            await executor.execute(terms, sign_terms(alice, terms), alice.address, "bob")

        assert not await memory_store.has_been_consumed(build_digest(terms))

    @pytest.mark.asyncio
    async def test_zero_amounts(self, executor, memory_store, alice, bob):
        terms = make_terms(START + DAY, amount_a=0, amount_b=0)

        receipt = await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert await memory_store.has_been_consumed(receipt.digest)
        assert balances(memory_store, alice, bob) == [(TEN, 0), (0, TEN)]

    @pytest.mark.asyncio
    async def test_receipts_listed_by_authorizer(self, executor, memory_store, alice, bob):
        half = TEN // 2
        older = make_terms(START + DAY, amount_a=half, amount_b=half)
        newer = make_terms(START + DAY + 1, amount_a=half, amount_b=half)
        await executor.execute(older, sign_terms(alice, older), alice.address, bob.address)
        await executor.execute(newer, sign_terms(alice, newer), alice.address, bob.address)

        receipts = await memory_store.list_receipts(alice.address)

        assert [r.terms for r in receipts] == [newer, older]
        assert await memory_store.list_receipts(alice.address, limit=1) == receipts[:1]
        assert await memory_store.list_receipts(bob.address) == []

    @pytest.mark.asyncio
    async def test_domain_separation(self, memory_store, clock, alice, bob):
        executor = AtomicSwapExecutor(memory_store, clock=clock, domain=DOMAIN)
        terms = make_terms(START + DAY)

        with pytest.raises(BadSignature):
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        receipt = await executor.execute(
            terms, sign_terms(alice, terms, DOMAIN), alice.address, bob.address
        )
        assert receipt.digest == build_digest(terms, DOMAIN)


class TestConcurrency:
    """Concurrent submissions against in-memory ledgers."""

    @pytest.mark.asyncio
    async def test_lock_registry_empties_after_settlement(self, memory_store, clock, alice, bob):
        locks = KeyedLocks()
        executor = AtomicSwapExecutor(memory_store, clock=clock, locks=locks)
        settled = make_terms(START + DAY, amount_a=TEN // 2, amount_b=TEN // 2)
        failing = make_terms(START + DAY + 1, amount_a=TEN // 2, amount_b=TEN * 2)

        await executor.execute(settled, sign_terms(alice, settled), alice.address, bob.address)
        with pytest.raises(TransferFailed):
            await executor.execute(failing, sign_terms(alice, failing), alice.address, bob.address)
        for deadline in range(START + DAY + 2, START + DAY + 12):
            free = make_terms(deadline, amount_a=0, amount_b=0)
            await executor.execute(free, sign_terms(alice, free), alice.address, bob.address)

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_same_digest_race_has_one_winner(self, executor, memory_store, alice, bob, carol):
        terms = make_terms(START + DAY, amount_a=TEN // 2, amount_b=TEN // 2)
        signature = sign_terms(alice, terms)
        memory_store.ledger(USDT).mint(carol.address, TEN)

        results = await asyncio.gather(
            executor.execute(terms, signature, alice.address, bob.address),
            executor.execute(terms, signature, alice.address, carol.address),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, AlreadyConsumed)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert memory_store.ledger(GEO).balance(alice.address) == TEN // 2
        assert len(memory_store.guard) == 1

    @pytest.mark.asyncio
    async def test_distinct_digests_all_settle(self, executor, memory_store, alice, bob):
        half = TEN // 2
        first = make_terms(START + DAY, amount_a=half, amount_b=half)
        second = make_terms(START + DAY + 1, amount_a=half, amount_b=half)

        receipts = await asyncio.gather(
            executor.execute(first, sign_terms(alice, first), alice.address, bob.address),
            executor.execute(second, sign_terms(alice, second), alice.address, bob.address),
        )

        assert {r.digest for r in receipts} == {build_digest(first), build_digest(second)}
        assert balances(memory_store, alice, bob) == [(0, TEN), (TEN, 0)]

    @pytest.mark.asyncio
    async def test_failed_swap_does_not_disturb_concurrent_one(self, executor, memory_store, alice, bob):
        ok = make_terms(START + DAY, amount_a=TEN // 2, amount_b=TEN // 2)
        too_big = make_terms(START + DAY + 1, amount_a=TEN // 2, amount_b=TEN * 2)

        results = await asyncio.gather(
            executor.execute(ok, sign_terms(alice, ok), alice.address, bob.address),
            executor.execute(too_big, sign_terms(alice, too_big), alice.address, bob.address),
            return_exceptions=True,
        )

        assert isinstance(results[1], TransferFailed)
        assert balances(memory_store, alice, bob) == [
            (TEN // 2, TEN // 2),
            (TEN // 2, TEN // 2),
        ]


class TestSqlExecute:
    """Settlement in one database transaction."""

    @pytest.mark.asyncio
    async def test_swap_settles(self, sql_store, session_factory, clock, alice, bob):
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        terms = make_terms(START + DAY)

        receipt = await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        async with session_factory() as session:
            repo = LedgerRepository(session)
            assert await repo.balance_of(alice.address, GEO) == 0
            assert await repo.balance_of(alice.address, USDT) == TEN
            assert await repo.balance_of(bob.address, GEO) == TEN
            assert await repo.balance_of(bob.address, USDT) == 0

        assert await sql_store.has_been_consumed(receipt.digest)
        assert await sql_store.get_receipt(receipt.digest) == receipt

    @pytest.mark.asyncio
    async def test_replay_rejected(self, sql_store, clock, alice, bob):
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        terms = make_terms(START + DAY)
        signature = sign_terms(alice, terms)
        await executor.execute(terms, signature, alice.address, bob.address)

        # a fresh executor shares nothing in memory with the first
        other = AtomicSwapExecutor(sql_store, clock=clock)
        with pytest.raises(AlreadyConsumed):
            await other.execute(terms, signature, alice.address, bob.address)

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, sql_store, session_factory, clock, alice, bob):
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        terms = make_terms(START + DAY, amount_b=TEN + 1)

        with pytest.raises(TransferFailed):
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        async with session_factory() as session:
            repo = LedgerRepository(session)
            assert await repo.balance_of(alice.address, GEO) == TEN
            assert await repo.balance_of(bob.address, GEO) == 0
            assert await repo.balance_of(bob.address, USDT) == TEN
        assert not await sql_store.has_been_consumed(build_digest(terms))
        assert await sql_store.get_receipt(build_digest(terms)) is None

    @pytest.mark.asyncio
    async def test_revoked_operator(self, sql_store, session_factory, clock, alice, bob):
        async with session_factory() as session:
            await LedgerRepository(session).set_operator_revoked(bob.address, USDT, True)
            await session.commit()
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        terms = make_terms(START + DAY)

        with pytest.raises(TransferFailed) as exc_info:
            await executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address)

        assert isinstance(exc_info.value.__cause__, NotAuthorized)
        async with session_factory() as session:
            assert await LedgerRepository(session).balance_of(alice.address, GEO) == TEN

    @pytest.mark.asyncio
    async def test_consumption_survives_restart(self, sql_store, db_engine, tmp_path, clock, alice, bob):
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        terms = make_terms(START + DAY)
        signature = sign_terms(alice, terms)
        await executor.execute(terms, signature, alice.address, bob.address)
        await db_engine.dispose()

        engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        try:
            restarted = AtomicSwapExecutor(
                SqlSettlementStore(make_session_factory(engine)), clock=clock
            )
            with pytest.raises(AlreadyConsumed):
                await restarted.execute(terms, signature, alice.address, bob.address)
        finally:
            await engine.dispose()


class TestSqlConcurrency:
    """Executors that share a database but not a lock registry, like separate processes."""

    @staticmethod
    def executors(store, clock, count=2):
        return [AtomicSwapExecutor(store, clock=clock, locks=KeyedLocks()) for _ in range(count)]

    @pytest.mark.asyncio
    async def test_same_digest_race_has_one_winner(
        self, sql_store, session_factory, clock, alice, bob, carol
    ):
        async with session_factory() as session:
            await LedgerRepository(session).credit_balance(carol.address, USDT, TEN)
            await session.commit()
        terms = make_terms(START + DAY)
        signature = sign_terms(alice, terms)
        first, second = self.executors(sql_store, clock)

        results = await asyncio.gather(
            first.execute(terms, signature, alice.address, bob.address),
            second.execute(terms, signature, alice.address, carol.address),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, AlreadyConsumed) for r in results) == 1
        async with session_factory() as session:
            repo = LedgerRepository(session)
            assert await repo.balance_of(alice.address, GEO) == 0
            assert await repo.balance_of(alice.address, USDT) == TEN
            paid = await repo.balance_of(bob.address, GEO) + await repo.balance_of(carol.address, GEO)
            assert paid == TEN

    @pytest.mark.asyncio
    async def test_distinct_digests_cannot_overdraw(
        self, sql_store, session_factory, clock, alice, bob, carol
    ):
        async with session_factory() as session:
            await LedgerRepository(session).credit_balance(carol.address, USDT, TEN)
            await session.commit()
        # each authorization spends Alice's whole GEO balance
        first_terms = make_terms(START + DAY)
        second_terms = make_terms(START + DAY + 1)
        first, second = self.executors(sql_store, clock)

        results = await asyncio.gather(
            first.execute(first_terms, sign_terms(alice, first_terms), alice.address, bob.address),
            second.execute(second_terms, sign_terms(alice, second_terms), alice.address, carol.address),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, TransferFailed)]
        assert len(failures) == 1
        assert isinstance(failures[0].__cause__, InsufficientBalance)
        async with session_factory() as session:
            repo = LedgerRepository(session)
            assert await repo.balance_of(alice.address, GEO) == 0
            assert await repo.balance_of(alice.address, USDT) == TEN
            paid = await repo.balance_of(bob.address, GEO) + await repo.balance_of(carol.address, GEO)
            assert paid == TEN

    @pytest.mark.asyncio
    async def test_concurrent_credit_is_not_lost(self, sql_store, session_factory, clock, alice, bob):
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        terms = make_terms(START + DAY)

        async def credit():
            async with session_factory() as session:
                await LedgerRepository(session).credit_balance(alice.address, GEO, 5)
                await session.commit()

        await asyncio.gather(
            executor.execute(terms, sign_terms(alice, terms), alice.address, bob.address),
            credit(),
        )

        async with session_factory() as session:
            repo = LedgerRepository(session)
            assert await repo.balance_of(alice.address, GEO) == 5
            assert await repo.balance_of(bob.address, GEO) == TEN

    @pytest.mark.asyncio
    async def test_receipts_listed_by_authorizer(self, sql_store, clock, alice, bob):
        executor = AtomicSwapExecutor(sql_store, clock=clock)
        half = TEN // 2
        older = make_terms(START + DAY, amount_a=half, amount_b=half)
        newer = make_terms(START + DAY + 1, amount_a=half, amount_b=half)
        await executor.execute(older, sign_terms(alice, older), alice.address, bob.address)
        await executor.execute(newer, sign_terms(alice, newer), alice.address, bob.address)

        receipts = await sql_store.list_receipts(alice.address.lower())

        assert [r.terms for r in receipts] == [newer, older]
        assert await sql_store.list_receipts(alice.address, limit=1, offset=1) == receipts[1:]
        assert await sql_store.list_receipts(bob.address) == []
