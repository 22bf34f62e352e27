"""
ZK-friendly field hashing for the voter registry.

The registry tree must hash exactly like the consuming circom circuit, so the
only implementation is circomlib-compatible Poseidon over BN254. It is chosen
once at startup by name through ``create_field_hasher`` and then passed around
explicitly; nothing re-selects a hasher per call.
"""

import logging
from typing import Callable, Dict, List, Sequence

from errors import InvalidFieldElement
from zk.field import FIELD_PRIME, FieldElement
from zk.poseidon_constants import SBOX_ALPHA, PoseidonParameters, poseidon_parameters

logger = logging.getLogger(__name__)


class FieldHasher:
    """Contract consumed by the leaf encoder and the accumulator"""

    name = "abstract"

    def hash1(self, x: FieldElement) -> FieldElement:
        raise NotImplementedError

    def hash2(self, a: FieldElement, b: FieldElement) -> FieldElement:
        raise NotImplementedError


class CircomPoseidon:
    """Circom-compatible Poseidon permutation (x^5 S-box, state [0, inputs...])"""

    PRIME = FIELD_PRIME

    def __init__(self, params: PoseidonParameters):
        self.params = params
        self.width = params.t

    def _ark(self, state: List[int], round_idx: int) -> List[int]:
        """Add round constants"""
        offset = round_idx * self.width
        constants = self.params.round_constants
        return [(s + constants[offset + i]) % self.PRIME for i, s in enumerate(state)]

    def _sbox(self, state: List[int], full_round: bool) -> List[int]:
        if full_round:
            return [pow(s, SBOX_ALPHA, self.PRIME) for s in state]
        return [pow(state[0], SBOX_ALPHA, self.PRIME)] + state[1:]

    def _mix(self, state: List[int]) -> List[int]:
        """Apply MDS matrix multiplication"""
        return [
            sum(m * s for m, s in zip(row, state)) % self.PRIME
            for row in self.params.mds
        ]

    def hash(self, inputs: Sequence[int]) -> int:
        if len(inputs) != self.width - 1:
            raise ValueError(
                f"Poseidon t={self.width} expects {self.width - 1} inputs")

        state = [0] + list(inputs)
        half_full = self.params.full_rounds // 2
        partial_end = half_full + self.params.partial_rounds

        for r in range(self.params.total_rounds):
            state = self._ark(state, r)
            state = self._sbox(state, r < half_full or r >= partial_end)
            state = self._mix(state)

        return state[0]


class PoseidonBN254Hasher(FieldHasher):
    """hash1 = Poseidon(1 input, t=2), hash2 = Poseidon(2 inputs, t=3)"""

    name = "poseidon-bn254"

    def __init__(self):
        self._poseidon1 = CircomPoseidon(poseidon_parameters(2))
        self._poseidon2 = CircomPoseidon(poseidon_parameters(3))

    @staticmethod
    def _check(value) -> int:
        if not isinstance(value, FieldElement):
            # raw ints are range checked here, never reduced
            value = FieldElement.coerce(value)
        return value.value

    def hash1(self, x: FieldElement) -> FieldElement:
        return FieldElement(self._poseidon1.hash([self._check(x)]))

    def hash2(self, a: FieldElement, b: FieldElement) -> FieldElement:
        return FieldElement(self._poseidon2.hash([self._check(a), self._check(b)]))


HASHER_FACTORIES: Dict[str, Callable[[], FieldHasher]] = {
    PoseidonBN254Hasher.name: PoseidonBN254Hasher,
}


def create_field_hasher(name: str = PoseidonBN254Hasher.name) -> FieldHasher:
    """Build the configured hasher; called once at startup"""
    try:
        factory = HASHER_FACTORIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown field hasher '{name}'. Available: {sorted(HASHER_FACTORIES)}") from None
    hasher = factory()
    logger.info(f"Field hasher bound: {hasher.name}")
    return hasher


def poseidon_hash(inputs: Sequence[int]) -> int:
    """Plain-int Poseidon over 1 or 2 inputs (test vectors, tooling)"""
    for value in inputs:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < FIELD_PRIME:
            raise InvalidFieldElement("Poseidon input outside field bounds")
    return CircomPoseidon(poseidon_parameters(len(inputs) + 1)).hash(inputs)
