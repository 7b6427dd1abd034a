"""Atomic swap executor.

Settles a swap signed off-band by an authorizer and submitted by any relayer:

1. Recompute the digest from the raw terms (a claimed digest is never trusted)
2. Reject if the deadline has passed
3. Reject unless the signature recovers to the authorizer
4. Reject if the digest was already consumed
5. Move amount_a of asset_a authorizer -> relayer, then amount_b of
   asset_b relayer -> authorizer
6. Consume the digest

Steps 1-3 touch no state. Steps 4-6 run inside one settlement, so a failed
leg leaves balances untouched and the digest unconsumed.
"""

import logging
import time
from typing import Callable, Optional

from metaswap.errors import (
    AlreadyConsumed,
    BadSignature,
    Expired,
    LedgerError,
    SwapError,
    TransferFailed,
)
from metaswap.settlement import SettlementStore, SwapReceipt
from metaswap.signing.base import SignatureLike
from metaswap.signing.verifier import is_signed_by
from metaswap.terms import Digest, ExchangeTerms, build_digest, normalize_address
from metaswap.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


def _wall_clock() -> int:
    return int(time.time())


class AtomicSwapExecutor:
    """Validates and settles signed exchange terms."""

    def __init__(
        self,
        store: SettlementStore,
        clock: Optional[Callable[[], int]] = None,
        domain: Optional[str] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        """Initialize the executor.

        Args:
            store: Settlement store holding ledgers and the consumed set
            clock: Source of the current unix time (defaults to wall clock)
            domain: Optional digest domain separator (an address)
            locks: Lock registry; share one between executors over the same store
        """
        self.store = store
        self.domain = normalize_address(domain) if domain else None
        self._clock = clock or _wall_clock
        self._locks = locks or KeyedLocks()

    def digest_of(self, terms: ExchangeTerms) -> Digest:
        return build_digest(terms, self.domain)

    async def execute(
        self,
        terms: ExchangeTerms,
        signature: SignatureLike,
        authorizer: str,
        caller: str,
        claimed_digest: Optional[Digest] = None,
    ) -> SwapReceipt:
        """Execute a signed swap on behalf of caller.

        Raises:
            Expired: Deadline has passed
            BadSignature: Signature is malformed or not from authorizer
            AlreadyConsumed: Digest was already executed
            TransferFailed: A ledger rejected one of the legs
        """
        digest = self.digest_of(terms)
        if claimed_digest is not None and claimed_digest != digest:
            logger.warning(
                f"Claimed digest {claimed_digest} does not match terms ({digest}); "
                f"verifying against the recomputed digest"
            )

        try:
            now = self._clock()
            if now > terms.deadline:
                raise Expired(f"This swap is outdated: deadline {terms.deadline}, now {now}")

            if not is_signed_by(authorizer, digest, signature):
                raise BadSignature()

            authorizer = normalize_address(authorizer)
            try:
                caller = normalize_address(caller)
            except ValueError as e:
                raise TransferFailed(f"Invalid caller address {caller!r}") from e

            receipt = await self._settle(digest, terms, authorizer, caller, now)

        except SwapError as e:
            logger.warning(f"Swap {digest} rejected ({e.code}): {e.reason}")
            raise

        logger.info(
            f"Swap {digest} settled: {terms.amount_a} of {terms.asset_a} "
            f"{authorizer} -> {caller}, {terms.amount_b} of {terms.asset_b} "
            f"{caller} -> {authorizer}"
        )
        return receipt

    async def _settle(
        self,
        digest: Digest,
        terms: ExchangeTerms,
        authorizer: str,
        caller: str,
        now: int,
    ) -> SwapReceipt:
        keys = (
            f"digest:{digest.hex}",
            f"account:{terms.asset_a}:{authorizer}",
            f"account:{terms.asset_a}:{caller}",
            f"account:{terms.asset_b}:{caller}",
            f"account:{terms.asset_b}:{authorizer}",
        )

        async with self._locks.hold(*keys, operation=f"swap {digest}"):
            async with self.store.atomic() as settlement:
                if await settlement.guard.has_been_consumed(digest):
                    raise AlreadyConsumed()

                try:
                    await settlement.ledger(terms.asset_a).transfer_from(
                        authorizer, caller, terms.amount_a
                    )
                except LedgerError as e:
                    raise TransferFailed(f"Transfer of {terms.asset_a} to relayer failed: {e}") from e

                try:
                    await settlement.ledger(terms.asset_b).transfer_from(
                        caller, authorizer, terms.amount_b
                    )
                except LedgerError as e:
                    raise TransferFailed(
                        f"Transfer of {terms.asset_b} to authorizer failed: {e}"
                    ) from e

                await settlement.guard.consume(digest)

                receipt = SwapReceipt(
                    digest=digest,
                    terms=terms,
                    authorizer=authorizer,
                    relayer=caller,
                    executed_at=now,
                )
                await settlement.record(receipt)

        return receipt
