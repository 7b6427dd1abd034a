"""Signer recovery over EIP-191 wrapped digests.

The signer applies ``eth_sign`` semantics to the 32-byte digest:

    keccak256("\\x19Ethereum Signed Message:\\n32" || digest)

Recovery here must use the identical wrapping or no signature verifies.
"""

import logging

from eth_account import Account
from eth_account.messages import encode_defunct

from metaswap.signing.base import InvalidSignature, Signature, SignatureLike
from metaswap.terms import Digest, normalize_address

logger = logging.getLogger(__name__)


def recover_signer(digest: Digest, signature: SignatureLike) -> str:
    """Recover the checksum address that signed the digest.

    Raises:
        InvalidSignature: If the signature is malformed or not recoverable
    """
    try:
        sig = Signature.parse(signature)
    except ValueError as e:
        raise InvalidSignature(f"Malformed signature: {e}") from e

    message = encode_defunct(primitive=digest.value)
    try:
        return Account.recover_message(message, vrs=(sig.v, sig.r_int, sig.s_int))
    except Exception as e:
        raise InvalidSignature(f"Signature recovery failed: {e}") from e


def is_signed_by(expected: str, digest: Digest, signature: SignatureLike) -> bool:
    """Check that signature over digest was produced by expected."""
    try:
        expected_address = normalize_address(expected)
    except ValueError:
        logger.debug(f"Unparsable expected signer {expected!r}")
        return False

    try:
        recovered = recover_signer(digest, signature)
    except InvalidSignature as e:
        logger.debug(f"Rejecting signature for {digest}: {e}")
        return False

    return recovered == expected_address
