"""
Poseidon parameter generation for the BN254 scalar field.

circomlib's round constants and MDS matrices were produced by the Poseidon
reference parameter script (Grain LFSR in self-shrinking mode). Deriving them
here with the same procedure gives bit-identical parameters without shipping
hundreds of hard-coded 254-bit literals.
"""

import logging
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, List, Tuple

from zk.field import FIELD_PRIME

logger = logging.getLogger(__name__)

FIELD_SIZE_BITS = FIELD_PRIME.bit_length()  # 254
SBOX_ALPHA = 5
FULL_ROUNDS = 8

# circomlib N_ROUNDS_P indexed by t - 2
PARTIAL_ROUNDS = [56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68]

# Grain init field tags: field=1 (prime field), sbox=0 (x^alpha)
_GRAIN_FIELD_TAG = 1
_GRAIN_SBOX_TAG = 0
_GRAIN_STATE_BITS = 80
_GRAIN_WARMUP = 160


@dataclass(frozen=True)
class PoseidonParameters:
    """Round constants (flat, t per round) and MDS matrix for one width"""
    t: int
    full_rounds: int
    partial_rounds: int
    round_constants: Tuple[int, ...]
    mds: Tuple[Tuple[int, ...], ...]

    @property
    def total_rounds(self) -> int:
        return self.full_rounds + self.partial_rounds


def _bits(value: int, width: int) -> List[int]:
    return [int(b) for b in bin(value)[2:].zfill(width)]


class GrainLFSR:
    """Self-shrinking Grain LFSR seeded from the Poseidon instance description"""

    def __init__(self, t: int, full_rounds: int, partial_rounds: int,
                 field_size: int = FIELD_SIZE_BITS):
        seed = (_bits(_GRAIN_FIELD_TAG, 2) + _bits(_GRAIN_SBOX_TAG, 4)
                + _bits(field_size, 12) + _bits(t, 12)
                + _bits(full_rounds, 10) + _bits(partial_rounds, 10)
                + [1] * 30)
        assert len(seed) == _GRAIN_STATE_BITS
        self._state = deque(seed, maxlen=_GRAIN_STATE_BITS)
        for _ in range(_GRAIN_WARMUP):
            self._step()
        self._stream = self._shrunk_bits()

    def _step(self) -> int:
        s = self._state
        new_bit = s[62] ^ s[51] ^ s[38] ^ s[23] ^ s[13] ^ s[0]
        s.append(new_bit)
        return new_bit

    def _shrunk_bits(self) -> Iterator[int]:
        # bit pairs (a, b): emit b when a == 1, drop the pair otherwise
        while True:
            first = self._step()
            while first == 0:
                self._step()
                first = self._step()
            yield self._step()

    def random_bits(self, num_bits: int) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | next(self._stream)
        return value

    def field_element_rejecting(self, num_bits: int = FIELD_SIZE_BITS) -> int:
        """Rejection-sample a value below the prime (round constants)"""
        value = self.random_bits(num_bits)
        while value >= FIELD_PRIME:
            value = self.random_bits(num_bits)
        return value

    def field_element_reducing(self, num_bits: int = FIELD_SIZE_BITS) -> int:
        """Sample and reduce modulo the prime (MDS seeds)"""
        return self.random_bits(num_bits) % FIELD_PRIME


def _cauchy_mds(lfsr: GrainLFSR, t: int) -> Tuple[Tuple[int, ...], ...]:
    while True:
        seeds = [lfsr.field_element_reducing() for _ in range(2 * t)]
        while len(set(seeds)) != len(seeds):
            seeds = [lfsr.field_element_reducing() for _ in range(2 * t)]
        xs, ys = seeds[:t], seeds[t:]
        if any((x + y) % FIELD_PRIME == 0 for x in xs for y in ys):
            continue
        return tuple(
            tuple(pow(x + y, -1, FIELD_PRIME) for y in ys)
            for x in xs
        )


@lru_cache(maxsize=None)
def poseidon_parameters(t: int) -> PoseidonParameters:
    """Parameters for state width t (number of inputs + 1)"""
    if t < 2 or t - 2 >= len(PARTIAL_ROUNDS):
        raise ValueError(f"Unsupported Poseidon width t={t}")

    partial_rounds = PARTIAL_ROUNDS[t - 2]
    lfsr = GrainLFSR(t, FULL_ROUNDS, partial_rounds)

    num_constants = (FULL_ROUNDS + partial_rounds) * t
    round_constants = tuple(
        lfsr.field_element_rejecting() for _ in range(num_constants))
    mds = _cauchy_mds(lfsr, t)

    logger.debug(
        f"Derived Poseidon parameters t={t}: {num_constants} round constants")
    return PoseidonParameters(
        t=t,
        full_rounds=FULL_ROUNDS,
        partial_rounds=partial_rounds,
        round_constants=round_constants,
        mds=mds,
    )
