"""Swap execution module.

Provides:
- AtomicSwapExecutor: verifies and settles signed exchange terms
- get_swap_executor: executor over the configured database
"""

from metaswap.swap.executor import AtomicSwapExecutor
from metaswap.swap.factory import get_swap_executor, reset_swap_executor

__all__ = [
    "AtomicSwapExecutor",
    "get_swap_executor",
    "reset_swap_executor",
]
