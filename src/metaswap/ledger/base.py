"""Abstract interface the swap executor uses to move assets.

Each asset class lives on its own ledger. The executor is a default
operator on every ledger: it may move a holder's funds unless the holder
revoked it.
"""

from abc import ABC, abstractmethod

from metaswap.terms import UINT256_MAX


class AssetLedger(ABC):
    """Abstract base class for one asset ledger."""

    asset: str

    @abstractmethod
    async def balance_of(self, holder: str) -> int:
        pass

    @abstractmethod
    async def transfer_from(self, owner: str, recipient: str, amount: int) -> None:
        """Move amount from owner to recipient.

        Raises:
            InsufficientBalance: If owner holds less than amount
            NotAuthorized: If owner revoked the operator
        """
        pass


def check_amount(amount: int) -> int:
    """Validate a uint256 transfer amount."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Amount must be an integer, got {type(amount).__name__}")
    if amount < 0 or amount > UINT256_MAX:
        raise ValueError(f"Amount out of uint256 range: {amount}")
    return amount
