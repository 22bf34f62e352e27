"""
Wire format for membership proofs.

The consuming circuit reads ``merklePath`` (sibling hashes, bottom-up),
``merklePathIndices`` (one bit per sibling) and ``merkleRoot``. Which bit value
means "left" is fixed by the circuit and configured once through
``DirectionConvention``; it is never chosen per call.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

from errors import InvalidFieldElement
from merkle.accumulator import LEFT, RIGHT
from zk.field import FieldElement


class DirectionConvention(Enum):
    """Meaning of a 0 bit in merklePathIndices"""
    LEFT_IS_ZERO = "left-is-zero"    # 0: node was the left child, sibling on the right
    RIGHT_IS_ZERO = "right-is-zero"  # 0: node was the right child, sibling on the left

    def encode(self, internal_bit: int) -> int:
        if internal_bit not in (LEFT, RIGHT):
            raise ValueError(f"Direction bit must be 0 or 1, got {internal_bit!r}")
        if self is DirectionConvention.LEFT_IS_ZERO:
            return internal_bit
        return 1 - internal_bit

    def decode(self, wire_bit: int) -> int:
        # the mapping is an involution
        return self.encode(wire_bit)


@dataclass(frozen=True)
class MerkleProof:
    """Membership proof for one voter, bits already in wire convention"""
    election_id: int
    voter_identifier: FieldElement
    sibling_path: List[FieldElement]
    path_direction_bits: List[int]
    root: FieldElement
    convention: DirectionConvention = field(default=DirectionConvention.LEFT_IS_ZERO)

    def internal_direction_bits(self) -> List[int]:
        return [self.convention.decode(bit) for bit in self.path_direction_bits]

    def to_wire(self) -> Dict[str, Any]:
        return {
            'merklePath': [sibling.to_hex() for sibling in self.sibling_path],
            'merklePathIndices': list(self.path_direction_bits),
            'merkleRoot': self.root.to_hex(),
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any], election_id: int, voter_identifier: FieldElement,
                  convention: DirectionConvention = DirectionConvention.LEFT_IS_ZERO) -> 'MerkleProof':
        try:
            path = [FieldElement.from_hex(h) for h in payload['merklePath']]
            bits = [int(b) for b in payload['merklePathIndices']]
            root = FieldElement.from_hex(payload['merkleRoot'])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidFieldElement(f"Malformed wire proof: {e}") from e

        if len(path) != len(bits) or any(b not in (0, 1) for b in bits):
            raise InvalidFieldElement("Malformed wire proof: path and indices disagree")

        return cls(
            election_id=election_id,
            voter_identifier=voter_identifier,
            sibling_path=path,
            path_direction_bits=bits,
            root=root,
            convention=convention,
        )


def to_wire_proof(election_id: int, voter_identifier: FieldElement,
                  siblings: Sequence[FieldElement], direction_bits: Sequence[int],
                  root: FieldElement,
                  convention: DirectionConvention = DirectionConvention.LEFT_IS_ZERO) -> MerkleProof:
    """Convert the accumulator's internal path into the circuit's convention"""
    if len(siblings) != len(direction_bits):
        raise ValueError("Sibling path and direction bits differ in length")
    return MerkleProof(
        election_id=election_id,
        voter_identifier=voter_identifier,
        sibling_path=list(siblings),
        path_direction_bits=[convention.encode(bit) for bit in direction_bits],
        root=root,
        convention=convention,
    )
