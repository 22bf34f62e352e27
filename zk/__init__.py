"""
Circuit-compatible field arithmetic and hashing for the voter registry
"""

from .field import FIELD_PRIME, FieldElement
from .field_hasher import (
    # Core classes
    FieldHasher,
    PoseidonBN254Hasher,
    CircomPoseidon,

    # Factory
    create_field_hasher,
    poseidon_hash,
)
from .poseidon_constants import PoseidonParameters, poseidon_parameters

__all__ = [
    # Types
    'FIELD_PRIME',
    'FieldElement',

    # Hashing
    'FieldHasher',
    'PoseidonBN254Hasher',
    'CircomPoseidon',
    'create_field_hasher',
    'poseidon_hash',

    # Parameters
    'PoseidonParameters',
    'poseidon_parameters',
]
