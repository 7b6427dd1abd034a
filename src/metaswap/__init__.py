"""metaswap - gas-less signed atomic swaps."""

__version__ = "0.1.0"
