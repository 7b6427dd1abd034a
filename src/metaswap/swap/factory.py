"""Swap executor factory.

Creates the executor over the configured database. One instance per
process, so every request shares the same lock registry.
"""

import logging
from typing import Optional

from metaswap.config import get_settings
from metaswap.ledger.database import get_session_factory
from metaswap.settlement import SqlSettlementStore
from metaswap.swap.executor import AtomicSwapExecutor

logger = logging.getLogger(__name__)

_executor_instance: Optional[AtomicSwapExecutor] = None


def get_swap_executor() -> AtomicSwapExecutor:
    """Get the configured executor instance."""
    global _executor_instance

    if _executor_instance is not None:
        return _executor_instance

    settings = get_settings()
    store = SqlSettlementStore(get_session_factory())
    _executor_instance = AtomicSwapExecutor(store, domain=settings.swap_domain)
    logger.info(
        f"Initialized swap executor (domain: {settings.swap_domain or 'none'})"
    )
    return _executor_instance


def reset_swap_executor():
    """Reset the executor instance (for testing)."""
    global _executor_instance
    _executor_instance = None
