"""Errors surfaced by swap execution and by the asset ledgers.

Every SwapError is terminal for a single execute() call and carries a
human-readable reason. Nothing is retried internally.
"""


class SwapError(Exception):
    """Base class for rejected swap executions."""

    code = "swap_error"
    retryable = False

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class Expired(SwapError):
    """Deadline of the terms has passed."""

    code = "expired"

    def __init__(self, reason: str = "This swap is outdated"):
        super().__init__(reason)


class BadSignature(SwapError):
    """Signature is malformed or not made by the authorizer."""

    code = "bad_signature"

    def __init__(self, reason: str = "Signature was not produced by the authorizer"):
        super().__init__(reason)


class AlreadyConsumed(SwapError):
    """Digest has been consumed by an earlier successful execution."""

    code = "already_consumed"

    def __init__(self, reason: str = "This swap was already used"):
        super().__init__(reason)


class TransferFailed(SwapError):
    """A ledger rejected one leg; no state was changed."""

    code = "transfer_failed"
    retryable = True


class LedgerError(Exception):
    """Base class for asset ledger failures."""
    pass


class InsufficientBalance(LedgerError):
    """Owner does not hold the amount being moved."""
    pass


class NotAuthorized(LedgerError):
    """Operator may not move funds on behalf of the owner."""
    pass


class UnknownAsset(LedgerError):
    """No ledger is registered for the asset."""
    pass
