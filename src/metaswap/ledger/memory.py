"""In-memory asset ledger used for tests and local simulation."""

import logging

from metaswap.errors import InsufficientBalance, NotAuthorized
from metaswap.ledger.base import AssetLedger, check_amount
from metaswap.terms import UINT256_MAX, normalize_address

logger = logging.getLogger(__name__)


class InMemoryLedger(AssetLedger):
    """Balances of a single asset held in a dict.

    Mutating methods contain no await, so each one is atomic with respect
    to other tasks on the event loop.
    """

    def __init__(self, asset: str):
        self.asset = normalize_address(asset)
        self._balances: dict[str, int] = {}
        self._revoked: set[str] = set()

    def mint(self, holder: str, amount: int) -> int:
        """Credit new units to holder. Returns the new balance."""
        holder = normalize_address(holder)
        check_amount(amount)
        new_balance = self._balances.get(holder, 0) + amount
        if new_balance > UINT256_MAX:
            raise ValueError("Balance overflows uint256")
        self._balances[holder] = new_balance
        return new_balance

    def revoke_operator(self, holder: str) -> None:
        """Forbid the swap operator from moving holder's funds."""
        self._revoked.add(normalize_address(holder))

    def authorize_operator(self, holder: str) -> None:
        self._revoked.discard(normalize_address(holder))

    def balance(self, holder: str) -> int:
        return self._balances.get(normalize_address(holder), 0)

    async def balance_of(self, holder: str) -> int:
        return self.balance(holder)

    async def transfer_from(self, owner: str, recipient: str, amount: int) -> None:
        owner = normalize_address(owner)
        recipient = normalize_address(recipient)
        check_amount(amount)

        if owner in self._revoked:
            raise NotAuthorized(f"{owner} revoked the operator on {self.asset}")

        available = self._balances.get(owner, 0)
        if available < amount:
            raise InsufficientBalance(
                f"Insufficient balance: {owner} has {available} of {self.asset}, need {amount}"
            )

        self._balances[owner] = available - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        logger.debug(f"{self.asset}: moved {amount} {owner} -> {recipient}")

    def revert_transfer(self, owner: str, recipient: str, amount: int) -> None:
        """Undo a transfer_from applied earlier in the same settlement."""
        owner = normalize_address(owner)
        recipient = normalize_address(recipient)
        self._balances[recipient] = self._balances.get(recipient, 0) - amount
        self._balances[owner] = self._balances.get(owner, 0) + amount
        logger.debug(f"{self.asset}: reverted {amount} {owner} -> {recipient}")
