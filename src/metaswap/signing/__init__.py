"""Signature creation and verification for swap authorizations.

Provides:
- Signature: fixed-width (r, s, v) triple
- recover_signer / is_signed_by: verifier used by the swap executor
- LocalSigner: off-band signer used by authorizers
"""

from metaswap.signing.base import (
    InvalidSignature,
    KeyNotFoundError,
    Signature,
    SigningError,
)
from metaswap.signing.local import LocalSigner, sign_digest
from metaswap.signing.verifier import is_signed_by, recover_signer

__all__ = [
    "Signature",
    "SigningError",
    "KeyNotFoundError",
    "InvalidSignature",
    "LocalSigner",
    "sign_digest",
    "recover_signer",
    "is_signed_by",
]
