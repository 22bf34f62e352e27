"""
Canonical field element type for the BN254 scalar field.

All hashing and tree logic operates on ``FieldElement`` only. Conversions from
wire values (hex strings, bytes32, ints) happen here and are always checked.
"""

from dataclasses import dataclass
from typing import Union

from eth_utils import is_hex, remove_0x_prefix

from errors import InvalidFieldElement

# BN254 scalar field prime (same field as circom / snarkjs over bn128)
FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

FIELD_BYTES = 32


@dataclass(frozen=True, order=True)
class FieldElement:
    """Integer in [0, p). Ordered and hashable by numeric value."""
    value: int

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise InvalidFieldElement(
                f"Field element must be an int, got {type(self.value).__name__}")
        if self.value < 0 or self.value >= FIELD_PRIME:
            raise InvalidFieldElement("Value outside field bounds [0, p)")

    @classmethod
    def from_int(cls, value: int) -> 'FieldElement':
        return cls(value)

    @classmethod
    def from_hex(cls, value: str) -> 'FieldElement':
        """Parse a 0x-prefixed (or bare) hex string of at most 32 bytes"""
        if not isinstance(value, str) or not is_hex(value):
            raise InvalidFieldElement("Field element hex string is malformed")
        digits = remove_0x_prefix(value)
        if not digits:
            raise InvalidFieldElement("Field element hex string is empty")
        if len(digits) > FIELD_BYTES * 2:
            raise InvalidFieldElement(
                f"Field element longer than {FIELD_BYTES} bytes")
        return cls(int(digits, 16))

    @classmethod
    def from_bytes(cls, raw: bytes) -> 'FieldElement':
        if len(raw) > FIELD_BYTES:
            raise InvalidFieldElement(
                f"Field element longer than {FIELD_BYTES} bytes")
        return cls(int.from_bytes(raw, 'big'))

    @classmethod
    def coerce(cls, value: Union['FieldElement', int]) -> 'FieldElement':
        """Accept an existing element or a raw int (range checked)"""
        if isinstance(value, FieldElement):
            return value
        return cls(value)

    def to_bytes(self) -> bytes:
        return self.value.to_bytes(FIELD_BYTES, 'big')

    def to_hex(self) -> str:
        """0x-prefixed, zero-padded to 32 bytes (bytes32 wire form)"""
        return '0x' + self.to_bytes().hex()

    def __int__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return f"FieldElement({self.to_hex()})"
