"""HTTP surface for relayers."""

from metaswap.api.app import create_app

__all__ = ["create_app"]
