"""
Read path: per-voter membership proofs.

The tree is rebuilt from the mirror for every request and checked against the
on-chain root before anything is returned. A proof is only handed out when it
verifies against the root the contract will check it against.
"""

import logging
from typing import Optional

from errors import NoRegistryForElection, NotRegistered, RootMismatch
from merkle.accumulator import LeafNotFound, MerkleAccumulator
from merkle.leaf_encoder import IdentifierLike, parse_identifier
from merkle.proof_codec import DirectionConvention, MerkleProof, to_wire_proof
from registry.chain_client import RegistryChain
from registry.mirror_store import MirrorStore
from utils.utils import PerformanceMonitor
from zk.field_hasher import FieldHasher

logger = logging.getLogger(__name__)


class ProofService:

    def __init__(self, chain: RegistryChain, store: MirrorStore, hasher: FieldHasher,
                 convention: DirectionConvention = DirectionConvention.LEFT_IS_ZERO,
                 monitor: Optional[PerformanceMonitor] = None):
        self.chain = chain
        self.store = store
        self.accumulator = MerkleAccumulator(hasher)
        self.convention = convention
        self.monitor = monitor or PerformanceMonitor()

    def get_proof(self, election_id: int, voter_identifier: IdentifierLike) -> MerkleProof:
        target = parse_identifier(voter_identifier)

        identifiers = self.store.list_identifiers(election_id)
        if not identifiers:
            raise NoRegistryForElection(f"No voters registered for election {election_id}")

        with self.monitor.start_operation("tree_rebuild"):
            tree = self.accumulator.build_from_identifiers(identifiers)

        # read before the lookup so registered and unregistered requests cost the same
        onchain_root = self.chain.get_merkle_root(election_id)

        try:
            index = self.accumulator.index_of(tree.leaves, target)
        except LeafNotFound:
            raise NotRegistered(f"Voter is not registered for election {election_id}") from None

        siblings, direction_bits = tree.siblings_and_directions(index)
        root = tree.root()

        if onchain_root is None:
            raise RootMismatch(f"No Merkle root has been published for election {election_id}")
        if root != onchain_root:
            logger.error(
                f"Election {election_id}: rebuilt root {root.to_hex()} does not match "
                f"on-chain root {onchain_root.to_hex()} over {len(identifiers)} leaves")
            raise RootMismatch(
                f"Voter registry for election {election_id} is out of sync with the on-chain root")

        return to_wire_proof(
            election_id, target, siblings, direction_bits, root, self.convention)
