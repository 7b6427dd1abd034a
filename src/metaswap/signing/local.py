"""Local signing backend for authorizers.

Signs swap digests off-band with in-memory private keys. Suitable for:
- Development/testing
- Authorizers running their own tooling (see scripts/sign_terms.py)

Keys are loaded from environment variables:
- AUTHORIZER_PRIVATE_KEY_{NAME}: Named authorizer keys
- AUTHORIZER_PRIVATE_KEY: Default key

WARNING: Private keys are held in memory. Never run this inside the relayer.
"""

import logging
import os
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from metaswap.signing.base import KeyNotFoundError, Signature
from metaswap.terms import Digest, ExchangeTerms, build_digest

logger = logging.getLogger(__name__)

ENV_PREFIX = "AUTHORIZER_PRIVATE_KEY"


def sign_digest(private_key: bytes, digest: Digest) -> Signature:
    """Sign a digest the way eth_sign does (EIP-191 personal message)."""
    signed = Account.sign_message(encode_defunct(primitive=digest.value), private_key)
    return Signature.from_vrs(signed.v, signed.r, signed.s)


class LocalSigner:
    """Authorizer-side signer holding keys by identifier."""

    def __init__(self, load_env: bool = True):
        self._keys: dict[str, bytes] = {}
        if load_env:
            self._load_keys()

    def _load_keys(self):
        """Load private keys from environment."""
        for key, value in os.environ.items():
            if key.startswith(f"{ENV_PREFIX}_") and value:
                name = key[len(ENV_PREFIX) + 1:]
                self.add_key(name, value)
                logger.info(f"Loaded authorizer key {name}")

        default_key = os.environ.get(ENV_PREFIX)
        if default_key:
            self.add_key("DEFAULT", default_key)
            logger.info("Loaded default authorizer key")

    def _get_key(self, key_id: str) -> bytes:
        if key_id.upper() in self._keys:
            return self._keys[key_id.upper()]
        if "DEFAULT" in self._keys:
            return self._keys["DEFAULT"]
        raise KeyNotFoundError(f"No signing key found for {key_id}")

    def add_key(self, key_id: str, private_key_hex: str):
        """Add a private key dynamically.

        Args:
            key_id: Key identifier
            private_key_hex: Private key as hex string
        """
        self._keys[key_id.upper()] = bytes.fromhex(private_key_hex.replace("0x", ""))

    def remove_key(self, key_id: str):
        """Remove a private key."""
        self._keys.pop(key_id.upper(), None)

    def has_key(self, key_id: str) -> bool:
        return key_id.upper() in self._keys

    def get_address(self, key_id: str) -> Optional[str]:
        """Address (principal) behind a key, or None if unknown."""
        try:
            return Account.from_key(self._get_key(key_id)).address
        except KeyNotFoundError:
            return None

    def sign_digest(self, key_id: str, digest: Digest) -> Signature:
        return sign_digest(self._get_key(key_id), digest)

    def sign_terms(
        self, key_id: str, terms: ExchangeTerms, domain: Optional[str] = None
    ) -> tuple[Digest, Signature]:
        """Build the digest of terms and sign it.

        Returns:
            Tuple of (digest, signature) to hand to a relayer
        """
        digest = build_digest(terms, domain)
        signature = self.sign_digest(key_id, digest)
        logger.debug(f"Signed {digest} with key {key_id.upper()}")
        return digest, signature
