"""Signature types shared by the off-band signer and the verifier.

Signing flow:
1. Authorizer builds the digest of its exchange terms
2. Digest is wrapped with the EIP-191 personal-message prefix and signed
3. (r, s, v) triple travels out-of-band to a relayer
4. Relayer submits terms + signature to the swap executor
5. Executor recovers the signer from its own recomputed digest
"""

import logging
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)

SIGNATURE_SIZE = 65
V_OFFSET = 27


@dataclass(frozen=True)
class Signature:
    """Recoverable secp256k1 signature.

    Attributes:
        r: R component (32 bytes)
        s: S component (32 bytes)
        v: Recovery id in Ethereum form (27 or 28)
    """
    r: bytes
    s: bytes
    v: int

    def __post_init__(self):
        if not isinstance(self.r, (bytes, bytearray)) or len(self.r) != 32:
            raise ValueError("Signature r must be 32 bytes")
        if not isinstance(self.s, (bytes, bytearray)) or len(self.s) != 32:
            raise ValueError("Signature s must be 32 bytes")
        if self.v not in (V_OFFSET, V_OFFSET + 1):
            raise ValueError(f"Invalid recovery id: {self.v}")
        object.__setattr__(self, "r", bytes(self.r))
        object.__setattr__(self, "s", bytes(self.s))

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Signature":
        """Parse a 65-byte r || s || v signature.

        Node signatures carry v as 0/1; those are lifted to 27/28.
        """
        if len(raw) != SIGNATURE_SIZE:
            raise ValueError(f"Signature must be {SIGNATURE_SIZE} bytes, got {len(raw)}")
        v = raw[64]
        if v in (0, 1):
            v += V_OFFSET
        return cls(r=raw[:32], s=raw[32:64], v=v)

    @classmethod
    def from_hex(cls, value: str) -> "Signature":
        raw = value[2:] if value.lower().startswith("0x") else value
        try:
            data = bytes.fromhex(raw)
        except ValueError as e:
            raise ValueError("Signature is not valid hex") from e
        return cls.from_bytes(data)

    @classmethod
    def from_vrs(cls, v: int, r: int, s: int) -> "Signature":
        return cls(r=r.to_bytes(32, "big"), s=s.to_bytes(32, "big"), v=v)

    @classmethod
    def parse(cls, value: Union["Signature", bytes, str]) -> "Signature":
        """Accept a Signature, raw bytes or a hex string."""
        if isinstance(value, Signature):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls.from_bytes(bytes(value))
        if isinstance(value, str):
            return cls.from_hex(value)
        raise ValueError(f"Unsupported signature type: {type(value).__name__}")

    @property
    def r_int(self) -> int:
        return int.from_bytes(self.r, "big")

    @property
    def s_int(self) -> int:
        return int.from_bytes(self.s, "big")

    def to_bytes(self) -> bytes:
        return self.r + self.s + bytes([self.v])

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()


SignatureLike = Union[Signature, bytes, str]


class SigningError(Exception):
    """Exception raised when signing or recovery fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when signing key is not found."""
    pass


class InvalidSignature(SigningError):
    """Exception raised when a signature can not be recovered."""
    pass
