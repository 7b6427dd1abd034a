"""Exchange terms and their canonical digest.

The digest binds every field of the terms. Encoding is fixed-width and
fixed-order, with no length prefixes:

    [domain   : 20 bytes]   only when a domain separator is configured
    asset_a   : 20 bytes    address
    amount_a  : 32 bytes    uint256, big endian
    asset_b   : 20 bytes    address
    amount_b  : 32 bytes    uint256, big endian
    deadline  : 32 bytes    uint256, big endian

    digest = keccak256(encoding)

Without a domain this is exactly Solidity's
``keccak256(abi.encodePacked(assetA, amountA, assetB, amountB, deadline))``,
so digests are interchangeable with contracts and with web3's
``solidity_keccak`` over the same five values.
"""

from dataclasses import dataclass
from typing import Optional

from eth_utils import is_address, keccak, to_canonical_address, to_checksum_address

UINT256_MAX = 2**256 - 1

DIGEST_SIZE = 32
ADDRESS_SIZE = 20
WORD_SIZE = 32

# (field, abi type) in encoding order
DIGEST_LAYOUT = (
    ("asset_a", "address"),
    ("amount_a", "uint256"),
    ("asset_b", "address"),
    ("amount_b", "uint256"),
    ("deadline", "uint256"),
)


def normalize_address(value: str) -> str:
    """Return the EIP-55 checksum form of an address.

    Raises:
        ValueError: If value is not a 20-byte hex address (or carries a bad checksum)
    """
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def _check_uint256(name: str, value: int) -> int:
    # bool is an int subclass; True is not an amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"{name} out of uint256 range: {value}")
    return value


@dataclass(frozen=True)
class Digest:
    """32-byte binding value of a set of exchange terms."""

    value: bytes

    def __post_init__(self):
        if not isinstance(self.value, (bytes, bytearray)):
            raise ValueError("Digest must be bytes")
        if len(self.value) != DIGEST_SIZE:
            raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(self.value)}")
        object.__setattr__(self, "value", bytes(self.value))

    @property
    def hex(self) -> str:
        return "0x" + self.value.hex()

    @classmethod
    def from_hex(cls, value: str) -> "Digest":
        raw = value[2:] if value.lower().startswith("0x") else value
        try:
            return cls(bytes.fromhex(raw))
        except ValueError as e:
            raise ValueError(f"Invalid digest hex: {value!r}") from e

    def __str__(self) -> str:
        return self.hex


@dataclass(frozen=True)
class ExchangeTerms:
    """What the authorizer gives, what it wants back, and until when.

    Attributes:
        asset_a: Ledger of the asset the authorizer gives
        amount_a: Amount of asset_a moved authorizer -> relayer
        asset_b: Ledger of the asset the authorizer receives
        amount_b: Amount of asset_b moved relayer -> authorizer
        deadline: Last unix second at which the terms may execute
    """

    asset_a: str
    amount_a: int
    asset_b: str
    amount_b: int
    deadline: int

    def __post_init__(self):
        object.__setattr__(self, "asset_a", normalize_address(self.asset_a))
        object.__setattr__(self, "asset_b", normalize_address(self.asset_b))
        _check_uint256("amount_a", self.amount_a)
        _check_uint256("amount_b", self.amount_b)
        _check_uint256("deadline", self.deadline)

    def to_dict(self) -> dict:
        return {
            "asset_a": self.asset_a,
            "amount_a": str(self.amount_a),
            "asset_b": self.asset_b,
            "amount_b": str(self.amount_b),
            "deadline": self.deadline,
        }

    @staticmethod
    def from_dict(data: dict) -> "ExchangeTerms":
        return ExchangeTerms(
            asset_a=data["asset_a"],
            amount_a=int(data["amount_a"]),
            asset_b=data["asset_b"],
            amount_b=int(data["amount_b"]),
            deadline=int(data["deadline"]),
        )


def encode_terms(terms: ExchangeTerms, domain: Optional[str] = None) -> bytes:
    """Canonical byte encoding of the terms (see module docstring)."""
    parts = []
    if domain is not None:
        parts.append(to_canonical_address(normalize_address(domain)))

    for field, abi_type in DIGEST_LAYOUT:
        value = getattr(terms, field)
        if abi_type == "address":
            parts.append(to_canonical_address(value))
        else:
            parts.append(value.to_bytes(WORD_SIZE, "big"))

    return b"".join(parts)


def build_digest(terms: ExchangeTerms, domain: Optional[str] = None) -> Digest:
    """Compute the digest an authorizer signs for these terms."""
    return Digest(keccak(encode_terms(terms, domain)))
