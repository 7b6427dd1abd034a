"""Tests for application settings."""

import pytest
from eth_utils import to_checksum_address
from pydantic import ValidationError

from metaswap.config import Settings


def test_swap_domain_is_checksummed():
    settings = Settings(swap_domain="0x" + "c3" * 20)

    assert settings.swap_domain == to_checksum_address("0x" + "c3" * 20)


def test_blank_swap_domain_is_none():
    assert Settings(swap_domain="  ").swap_domain is None


def test_invalid_swap_domain_rejected():
    with pytest.raises(ValidationError):
        Settings(swap_domain="not-an-address")


@pytest.mark.parametrize(
    "environment,debug,allow_mint,expected",
    [
        ("development", True, None, True),
        ("production", True, None, False),
        ("development", False, None, False),
        ("production", False, True, True),
        ("development", True, False, False),
    ],
)
def test_mint_enabled(environment, debug, allow_mint, expected):
    settings = Settings(environment=environment, debug=debug, allow_mint=allow_mint)

    assert settings.mint_enabled is expected


def test_safe_dict_redacts_password():
    settings = Settings(database_url="postgresql+asyncpg://user:secret@db/metaswap")

    safe = settings.get_safe_dict()

    assert "secret" not in safe["database_url"]
    assert safe["database_url"] == "postgresql+asyncpg://user:***@db/metaswap"
