from unittest.mock import Mock

import pytest

from conftest import make_identifier
from errors import IdentifierOutOfRange, NoRegistryForElection, NotRegistered, RootMismatch
from merkle.accumulator import MerkleAccumulator, replay_proof
from merkle.leaf_encoder import LeafEncoder
from merkle.proof_codec import DirectionConvention
from registry.proof_service import ProofService
from zk.field import FieldElement


@pytest.fixture
def published(sync, voters):
    """Election 1 with A, B, C registered and the root published"""
    sync.register_batch(1, voters[:3])
    sync.publish_root(1)
    return voters[:3]


def test_membership_soundness(proof_service, hasher, published):
    encoder = LeafEncoder(hasher)
    for identifier in published:
        proof = proof_service.get_proof(1, identifier)
        leaf = encoder.encode_leaf(identifier)
        assert replay_proof(leaf, proof.sibling_path, proof.internal_direction_bits(), hasher) == proof.root


def test_proof_for_middle_voter(proof_service, hasher, published):
    a, b, c = published
    proof = proof_service.get_proof(1, b)
    encoder = LeafEncoder(hasher)
    assert proof.sibling_path == [encoder.encode_leaf(a), encoder.encode_leaf(c)]
    assert proof.to_wire()['merklePathIndices'] == [1, 0]
    assert proof.root == MerkleAccumulator(hasher).build_from_identifiers(published).root()


def test_root_comes_from_rebuild_and_matches_chain(proof_service, chain, published):
    proof = proof_service.get_proof(1, published[0])
    assert proof.root == chain.get_merkle_root(1)


def test_non_membership(proof_service, voters, published):
    with pytest.raises(NotRegistered):
        proof_service.get_proof(1, voters[3])


def test_unknown_election(proof_service, voters):
    with pytest.raises(NoRegistryForElection):
        proof_service.get_proof(42, voters[0])


def test_malformed_identifier(proof_service, published):
    with pytest.raises(IdentifierOutOfRange):
        proof_service.get_proof(1, "0xnot-an-identifier")


def test_unpublished_root_is_mismatch(sync, proof_service, voters):
    sync.register_batch(1, voters[:2])
    with pytest.raises(RootMismatch):
        proof_service.get_proof(1, voters[0])


def test_stale_onchain_root_is_mismatch(sync, proof_service, voters, published):
    # mirror moves ahead of the published root
    sync.register_batch(1, [voters[3]])
    with pytest.raises(RootMismatch):
        proof_service.get_proof(1, voters[0])

    sync.publish_root(1)
    assert proof_service.get_proof(1, voters[3]).root == sync.compute_root(1)


def test_tampered_chain_root_is_mismatch(chain, proof_service, published):
    chain.set_merkle_root(1, FieldElement(12345))
    with pytest.raises(RootMismatch):
        proof_service.get_proof(1, published[1])


def test_non_member_checked_before_root_consistency(chain, proof_service, voters, published):
    chain.set_merkle_root(1, FieldElement(12345))
    with pytest.raises(NotRegistered):
        proof_service.get_proof(1, voters[3])


def test_chain_root_is_read_for_non_members(chain, proof_service, voters, published):
    chain.get_merkle_root = Mock(wraps=chain.get_merkle_root)

    proof_service.get_proof(1, published[0])
    with pytest.raises(NotRegistered):
        proof_service.get_proof(1, voters[3])
    assert chain.get_merkle_root.call_count == 2


def test_right_is_zero_convention(chain, store, hasher, published):
    service = ProofService(chain, store, hasher, convention=DirectionConvention.RIGHT_IS_ZERO)
    proof = service.get_proof(1, published[1])
    assert proof.to_wire()['merklePathIndices'] == [0, 1]


def test_registration_order_is_canonical(sync, proof_service, hasher):
    ids = [make_identifier(n) for n in (50, 10, 40, 20, 30)]
    sync.register_batch(9, ids[:2])
    sync.register_batch(9, ids[2:])
    sync.publish_root(9)

    expected = MerkleAccumulator(hasher).build_from_identifiers(ids).root()
    assert proof_service.get_proof(9, ids[4]).root == expected
