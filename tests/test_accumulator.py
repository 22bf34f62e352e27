import itertools

import pytest

from conftest import make_identifier
from errors import EmptyLeafSet
from merkle.accumulator import LEFT, RIGHT, LeafNotFound, MerkleAccumulator, hash_pair, replay_proof
from merkle.leaf_encoder import LeafEncoder
from zk.field import FieldElement


@pytest.fixture
def accumulator(hasher):
    return MerkleAccumulator(hasher)


@pytest.fixture
def leaves(hasher, voters):
    encoder = LeafEncoder(hasher)
    return encoder.encode_leaves(voters)


def test_empty_leaf_set(accumulator):
    with pytest.raises(EmptyLeafSet):
        accumulator.build([])


def test_single_leaf_is_root_with_empty_path(accumulator, leaves):
    tree = accumulator.build(leaves[:1])
    assert tree.root() == leaves[0]
    assert tree.siblings_and_directions(0) == ([], [])


def test_pairs_are_hashed_sorted(hasher, leaves):
    a, b = leaves[0], leaves[1]
    expected = hasher.hash2(min(a, b), max(a, b))
    assert hash_pair(hasher, a, b) == expected
    assert hash_pair(hasher, b, a) == expected


def test_determinism(accumulator, voters):
    first = accumulator.build_from_identifiers(voters)
    second = accumulator.build_from_identifiers(list(voters))
    assert first.root() == second.root()
    for index in range(len(voters)):
        assert first.siblings_and_directions(index) == second.siblings_and_directions(index)


def test_three_leaf_scenario(accumulator, hasher, voters):
    a, b, c, d = voters
    encoder = LeafEncoder(hasher)
    leaf_a, leaf_b, leaf_c = encoder.encode_leaves([a, b, c])

    tree = accumulator.build_from_identifiers([a, b, c])
    root = tree.root()
    assert root == hash_pair(hasher, hash_pair(hasher, leaf_a, leaf_b), leaf_c)

    # B is index 1: paired with A at level 0, its parent pairs with the carried C
    index = accumulator.index_of(tree.leaves, b)
    assert index == 1
    siblings, bits = tree.siblings_and_directions(index)
    assert siblings == [leaf_a, leaf_c]
    assert bits == [RIGHT, LEFT]
    assert accumulator.replay_proof(leaf_b, siblings, bits) == root

    extended = accumulator.build_from_identifiers([a, b, c, d])
    assert extended.root() != root
    assert accumulator.replay_proof(leaf_b, siblings, bits) == root
    assert accumulator.replay_proof(leaf_b, siblings, bits) != extended.root()


def test_carried_node_contributes_no_sibling(accumulator, leaves):
    tree = accumulator.build(leaves[:3])
    siblings, bits = tree.siblings_and_directions(2)
    # C is carried at level 0 and only meets hash(A, B) at level 1
    assert len(siblings) == 1
    assert bits == [RIGHT]
    assert replay_proof(leaves[2], siblings, bits, tree.hasher) == tree.root()


def test_odd_node_is_not_duplicated(accumulator, hasher, leaves):
    tree = accumulator.build(leaves[:3])
    duplicated = hash_pair(hasher, hash_pair(hasher, leaves[0], leaves[1]),
                           hash_pair(hasher, leaves[2], leaves[2]))
    assert tree.root() != duplicated


@pytest.mark.parametrize("count", [1, 2, 3, 5, 8, 11])
def test_every_leaf_replays_to_root(accumulator, count):
    identifiers = [make_identifier(1000 + i) for i in range(count)]
    tree = accumulator.build_from_identifiers(identifiers)
    for index, identifier in enumerate(identifiers):
        siblings, bits = tree.siblings_and_directions(index)
        assert accumulator.verify_proof(identifier, siblings, bits, tree.root())


def test_order_sensitivity(accumulator, voters):
    """Different pairings of the same set change the root; identical orderings never do"""
    roots = {}
    for ordering in itertools.permutations(voters):
        roots.setdefault(accumulator.build_from_identifiers(ordering).root(), []).append(ordering)

    # sorted pairs make swaps inside a pair invisible, but not regroupings
    assert len(roots) > 1
    a, b, c, d = voters
    assert (accumulator.build_from_identifiers([a, b, c, d]).root()
            != accumulator.build_from_identifiers([a, c, b, d]).root())
    assert (accumulator.build_from_identifiers([a, b, c, d]).root()
            == accumulator.build_from_identifiers([a, b, c, d]).root())


def test_index_of_reencodes_target(accumulator, voters):
    tree = accumulator.build_from_identifiers(voters[:3])
    assert accumulator.index_of(tree.leaves, voters[2]) == 2
    with pytest.raises(LeafNotFound):
        accumulator.index_of(tree.leaves, voters[3])
    # a raw leaf hash is not an identifier of the tree
    with pytest.raises(LeafNotFound):
        accumulator.index_of(tree.leaves, tree.leaves[0])


def test_replay_rejects_malformed_paths(hasher, leaves):
    with pytest.raises(ValueError):
        replay_proof(leaves[0], [leaves[1]], [], hasher)
    with pytest.raises(ValueError):
        replay_proof(leaves[0], [leaves[1]], [2], hasher)


def test_siblings_index_out_of_range(accumulator, leaves):
    tree = accumulator.build(leaves)
    with pytest.raises(IndexError):
        tree.siblings_and_directions(len(leaves))


def test_tampered_sibling_fails_verification(accumulator, voters):
    tree = accumulator.build_from_identifiers(voters)
    siblings, bits = tree.siblings_and_directions(1)
    siblings[0] = FieldElement(siblings[0].value ^ 1)
    assert not accumulator.verify_proof(voters[1], siblings, bits, tree.root())
