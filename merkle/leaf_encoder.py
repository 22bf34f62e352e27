"""
Voter identifier parsing and leaf encoding.

Identifiers are opaque 32-byte values. They enter as 0x-prefixed hex (the
on-chain bytes32 form), raw bytes, or ints, and leave as a single
``FieldElement``. Anything that is not exactly 32 bytes, or that would need
reducing modulo the field prime, is rejected: two distinct identifiers must
never collide on one leaf.
"""

import re
from typing import Union

from errors import IdentifierOutOfRange
from zk.field import FIELD_BYTES, FIELD_PRIME, FieldElement
from zk.field_hasher import FieldHasher

IdentifierLike = Union[str, bytes, int, FieldElement]

_BYTES32_HEX = re.compile(r'^0x[0-9a-fA-F]{64}$')


def parse_identifier(identifier: IdentifierLike) -> FieldElement:
    """Checked conversion of a wire identifier into a field element"""
    if isinstance(identifier, FieldElement):
        return identifier

    if isinstance(identifier, str):
        if not _BYTES32_HEX.match(identifier):
            raise IdentifierOutOfRange(
                "Voter identifier must be a 32-byte 0x-prefixed hex string")
        value = int(identifier, 16)
    elif isinstance(identifier, (bytes, bytearray)):
        if len(identifier) != FIELD_BYTES:
            raise IdentifierOutOfRange(
                f"Voter identifier must be exactly {FIELD_BYTES} bytes, got {len(identifier)}")
        value = int.from_bytes(identifier, 'big')
    elif isinstance(identifier, int) and not isinstance(identifier, bool):
        if identifier < 0 or identifier >= 1 << (FIELD_BYTES * 8):
            raise IdentifierOutOfRange("Voter identifier is not a 256-bit unsigned value")
        value = identifier
    else:
        raise IdentifierOutOfRange(
            f"Unsupported voter identifier type: {type(identifier).__name__}")

    if value >= FIELD_PRIME:
        raise IdentifierOutOfRange(
            "Voter identifier is not below the field prime; refusing to reduce it")
    return FieldElement(value)


def normalize_identifier(identifier: IdentifierLike) -> str:
    """Canonical lowercase bytes32 hex form used by the mirror and the chain"""
    return parse_identifier(identifier).to_hex()


class LeafEncoder:
    """Maps voter identifiers to leaf hashes: leaf = hash1(identifier)"""

    def __init__(self, hasher: FieldHasher):
        self.hasher = hasher

    def encode_leaf(self, identifier: IdentifierLike) -> FieldElement:
        return self.hasher.hash1(parse_identifier(identifier))

    def encode_leaves(self, identifiers) -> list:
        return [self.encode_leaf(identifier) for identifier in identifiers]
