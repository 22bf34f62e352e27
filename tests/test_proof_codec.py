import pytest

from errors import InvalidFieldElement
from merkle.accumulator import LEFT, RIGHT, replay_proof
from merkle.proof_codec import DirectionConvention, MerkleProof, to_wire_proof
from zk.field import FieldElement

SIBLINGS = [FieldElement(11), FieldElement(22), FieldElement(33)]
INTERNAL_BITS = [RIGHT, LEFT, RIGHT]
ROOT = FieldElement(99)
VOTER = FieldElement(7)


def test_left_is_zero_keeps_internal_bits():
    proof = to_wire_proof(5, VOTER, SIBLINGS, INTERNAL_BITS, ROOT)
    assert proof.path_direction_bits == [1, 0, 1]
    assert proof.convention is DirectionConvention.LEFT_IS_ZERO


def test_right_is_zero_inverts_bits():
    proof = to_wire_proof(5, VOTER, SIBLINGS, INTERNAL_BITS, ROOT,
                          convention=DirectionConvention.RIGHT_IS_ZERO)
    assert proof.path_direction_bits == [0, 1, 0]
    assert proof.internal_direction_bits() == INTERNAL_BITS


def test_wire_shape():
    wire = to_wire_proof(5, VOTER, SIBLINGS, INTERNAL_BITS, ROOT).to_wire()
    assert set(wire) == {'merklePath', 'merklePathIndices', 'merkleRoot'}
    assert wire['merklePath'][0] == '0x' + '0' * 62 + '0b'
    assert wire['merklePathIndices'] == [1, 0, 1]
    assert wire['merkleRoot'] == ROOT.to_hex()


def test_from_wire_parses_checked():
    wire = to_wire_proof(5, VOTER, SIBLINGS, INTERNAL_BITS, ROOT).to_wire()
    parsed = MerkleProof.from_wire(wire, election_id=5, voter_identifier=VOTER)
    assert parsed.sibling_path == SIBLINGS
    assert parsed.internal_direction_bits() == INTERNAL_BITS
    assert parsed.root == ROOT


@pytest.mark.parametrize("payload", [
    {},
    {'merklePath': ['0x01'], 'merklePathIndices': [], 'merkleRoot': '0x01'},
    {'merklePath': ['0x01'], 'merklePathIndices': [2], 'merkleRoot': '0x01'},
    {'merklePath': ['nothex'], 'merklePathIndices': [0], 'merkleRoot': '0x01'},
    {'merklePath': [], 'merklePathIndices': [], 'merkleRoot': '0x' + 'f' * 64},
])
def test_from_wire_rejects_malformed(payload):
    with pytest.raises(InvalidFieldElement):
        MerkleProof.from_wire(payload, election_id=1, voter_identifier=VOTER)


def test_length_mismatch_rejected():
    with pytest.raises(ValueError):
        to_wire_proof(1, VOTER, SIBLINGS, INTERNAL_BITS[:2], ROOT)


def test_decoded_wire_proof_replays(hasher):
    leaf = hasher.hash1(VOTER)
    root = replay_proof(leaf, SIBLINGS, INTERNAL_BITS, hasher)
    for convention in DirectionConvention:
        proof = to_wire_proof(1, VOTER, SIBLINGS, INTERNAL_BITS, root, convention=convention)
        parsed = MerkleProof.from_wire(proof.to_wire(), 1, VOTER, convention=convention)
        assert replay_proof(leaf, parsed.sibling_path, parsed.internal_direction_bits(), hasher) == root
