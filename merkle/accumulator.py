"""
Binary Merkle accumulator over voter leaves.

Internal nodes hash their two children in ascending numeric order
(``hash2(min, max)``). Pairing is positional: at each level nodes 0+1, 2+3, ...
are combined and an unpaired last node is carried up unchanged, never
duplicated. The same ordered leaf list therefore always yields the same root
and proofs, while a different ordering of the same set may not.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from errors import EmptyLeafSet
from merkle.leaf_encoder import IdentifierLike, LeafEncoder
from zk.field import FieldElement
from zk.field_hasher import FieldHasher

logger = logging.getLogger(__name__)

# Internal path convention: 0 = proven node was the left child at that level
LEFT = 0
RIGHT = 1


class LeafNotFound(LookupError):
    """Target leaf is not part of the tree"""
    pass


def hash_pair(hasher: FieldHasher, a: FieldElement, b: FieldElement) -> FieldElement:
    """Sorted-pair node hash"""
    if b < a:
        a, b = b, a
    return hasher.hash2(a, b)


@dataclass
class MerkleTree:
    """All levels of one build; levels[0] are the leaves, levels[-1] == [root]"""
    levels: List[List[FieldElement]]
    hasher: FieldHasher = field(repr=False)

    @property
    def leaves(self) -> List[FieldElement]:
        return self.levels[0]

    @property
    def depth(self) -> int:
        return len(self.levels) - 1

    def root(self) -> FieldElement:
        return self.levels[-1][0]

    def siblings_and_directions(self, index: int) -> Tuple[List[FieldElement], List[int]]:
        """Sibling hashes bottom-up plus one direction bit per sibling.

        Levels where the node was carried up unpaired contribute nothing.
        """
        if index < 0 or index >= len(self.leaves):
            raise IndexError(f"Leaf index {index} out of range")

        siblings: List[FieldElement] = []
        directions: List[int] = []
        current = index
        for level in self.levels[:-1]:
            is_left = current % 2 == 0
            sibling = current + 1 if is_left else current - 1
            if sibling < len(level):
                siblings.append(level[sibling])
                directions.append(LEFT if is_left else RIGHT)
            current //= 2
        return siblings, directions


class MerkleAccumulator:
    """Builds trees and answers lookups for one bound hasher"""

    def __init__(self, hasher: FieldHasher):
        self.hasher = hasher
        self.encoder = LeafEncoder(hasher)

    def build(self, leaves: Sequence[FieldElement]) -> MerkleTree:
        if not leaves:
            raise EmptyLeafSet("Cannot build a Merkle tree over zero leaves")

        levels = [[FieldElement.coerce(leaf) for leaf in leaves]]
        nodes = levels[0]
        while len(nodes) > 1:
            parents = [
                hash_pair(self.hasher, nodes[i], nodes[i + 1])
                for i in range(0, len(nodes) - 1, 2)
            ]
            if len(nodes) % 2 == 1:
                parents.append(nodes[-1])
            levels.append(parents)
            nodes = parents

        logger.debug(f"Built Merkle tree: {len(leaves)} leaves, depth {len(levels) - 1}")
        return MerkleTree(levels=levels, hasher=self.hasher)

    def build_from_identifiers(self, identifiers: Sequence[IdentifierLike]) -> MerkleTree:
        return self.build(self.encoder.encode_leaves(identifiers))

    def index_of(self, leaves: Sequence[FieldElement], target: IdentifierLike) -> int:
        """Position of the target identifier's leaf hash.

        The target is re-encoded and compared against leaf hashes; raw
        identifiers are never compared against hashes.
        """
        target_leaf = self.encoder.encode_leaf(target)
        for i, leaf in enumerate(leaves):
            if leaf == target_leaf:
                return i
        raise LeafNotFound("Identifier is not a leaf of this tree")

    def replay_proof(self, leaf: FieldElement, siblings: Sequence[FieldElement],
                     direction_bits: Sequence[int]) -> FieldElement:
        return replay_proof(leaf, siblings, direction_bits, self.hasher)

    def verify_proof(self, identifier: IdentifierLike, siblings: Sequence[FieldElement],
                     direction_bits: Sequence[int], root: FieldElement) -> bool:
        leaf = self.encoder.encode_leaf(identifier)
        return self.replay_proof(leaf, siblings, direction_bits) == root


def replay_proof(leaf: FieldElement, siblings: Sequence[FieldElement],
                 direction_bits: Sequence[int], hasher: FieldHasher) -> FieldElement:
    """Recompute the root from a leaf and its path (internal bit convention)"""
    if len(siblings) != len(direction_bits):
        raise ValueError("Sibling path and direction bits differ in length")

    current = FieldElement.coerce(leaf)
    for sibling, bit in zip(siblings, direction_bits):
        if bit not in (LEFT, RIGHT):
            raise ValueError(f"Direction bit must be 0 or 1, got {bit!r}")
        sibling = FieldElement.coerce(sibling)
        left, right = (current, sibling) if bit == LEFT else (sibling, current)
        current = hash_pair(hasher, left, right)
    return current
