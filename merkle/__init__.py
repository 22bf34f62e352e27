"""Merkle accumulator, leaf encoding and proof wire format."""

from .leaf_encoder import LeafEncoder, parse_identifier, normalize_identifier
from .accumulator import (
    MerkleAccumulator,
    MerkleTree,
    LeafNotFound,
    hash_pair,
    replay_proof,
)
from .proof_codec import DirectionConvention, MerkleProof, to_wire_proof

__all__ = [
    'LeafEncoder',
    'parse_identifier',
    'normalize_identifier',
    'MerkleAccumulator',
    'MerkleTree',
    'LeafNotFound',
    'hash_pair',
    'replay_proof',
    'DirectionConvention',
    'MerkleProof',
    'to_wire_proof',
]
