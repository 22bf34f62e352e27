"""
Write path of the voter registry.

Registration goes chain first, mirror second: a batch is validated, submitted
in one ``batchRegisterVoters`` transaction, and written to the mirror store
only once the receipt confirms it. A reverted transaction leaves both sides
untouched. A mirror failure after confirmation cannot be undone on-chain, so it
is raised as ``ReconciliationFault`` for an operator to repair with
``reconcile``.
"""

import logging
import threading
import weakref
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from config.config import SyncConfig
from errors import (
    IdentifierOutOfRange, NoRegistryForElection, NotRegistered,
    ReconciliationFault, RegistryError,
)
from merkle.accumulator import MerkleAccumulator
from merkle.leaf_encoder import IdentifierLike, normalize_identifier
from registry.activity_log import (
    ACTION_MERKLE_ROOT_PUBLISHED, ACTION_MIRROR_RECONCILED, ACTION_VOTER_REMOVED,
    ActivityLog,
)
from registry.chain_client import RegistryChain
from registry.mirror_store import MirrorStore, election_key
from utils.utils import PerformanceMonitor, generate_secure_id, identifier_fingerprint
from zk.field import FieldElement
from zk.field_hasher import FieldHasher

logger = logging.getLogger(__name__)

# Rejection reasons reported per identifier
REJECT_DUPLICATE_IN_BATCH = "DuplicateInBatch"
REJECT_ALREADY_REGISTERED = "AlreadyRegistered"
REJECT_ALREADY_ON_CHAIN = "AlreadyRegisteredOnChain"


@dataclass
class RejectedIdentifier:
    identifier: str
    reason: str


@dataclass
class BatchRegistrationResult:
    """Outcome of one register_batch call"""
    election_id: int
    batch_id: str
    accepted: List[str] = field(default_factory=list)
    rejected: List[RejectedIdentifier] = field(default_factory=list)
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    merkle_root: Optional[FieldElement] = None
    root_published: bool = False
    root_transaction_hash: Optional[str] = None
    root_error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'electionId': str(self.election_id),
            'batchId': self.batch_id,
            'registeredCount': len(self.accepted),
            'skippedCount': len(self.rejected),
            'skipped': [{'identifier': r.identifier, 'reason': r.reason} for r in self.rejected],
            'transactionHash': self.transaction_hash,
            'blockNumber': self.block_number,
            'gasUsed': self.gas_used,
            'merkleRoot': self.merkle_root.to_hex() if self.merkle_root else None,
            'rootPublished': self.root_published,
            'rootTransactionHash': self.root_transaction_hash,
            'rootError': self.root_error,
        }


@dataclass
class RootPublication:
    election_id: int
    merkle_root: FieldElement
    leaf_count: int
    transaction_hash: str
    block_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'electionId': str(self.election_id),
            'merkleRoot': self.merkle_root.to_hex(),
            'leafCount': self.leaf_count,
            'transactionHash': self.transaction_hash,
            'blockNumber': self.block_number,
        }


@dataclass
class ReconciliationReport:
    election_id: int
    onchain_count: int
    mirror_count_before: int
    added: int
    removed: int
    reordered: bool
    invalid: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.reordered)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'electionId': str(self.election_id),
            'onchainCount': self.onchain_count,
            'mirrorCountBefore': self.mirror_count_before,
            'added': self.added,
            'removed': self.removed,
            'reordered': self.reordered,
            'invalid': self.invalid,
            'changed': self.changed,
        }


class VoterRegistrySync:
    """
    Keeps the on-chain registry, the mirror store and the derived Merkle root
    consistent.

    Writes for one election are serialized by a per-election lock; different
    elections proceed independently.
    """

    def __init__(self, chain: RegistryChain, store: MirrorStore, hasher: FieldHasher,
                 config: Optional[SyncConfig] = None,
                 activity_log: Optional[ActivityLog] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.chain = chain
        self.store = store
        self.config = config or SyncConfig()
        self.accumulator = MerkleAccumulator(hasher)
        self.activity_log = activity_log or ActivityLog(store)
        self.monitor = monitor or PerformanceMonitor()

        # entries vanish once no caller holds the lock, so idle elections cost nothing
        self._locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _election_lock(self, election_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(election_id)
            if lock is None:
                lock = self._locks[election_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _screen(self, election_id: int, identifiers: Sequence[IdentifierLike],
                result: BatchRegistrationResult) -> List[str]:
        """Normalize and filter a batch, recording why items were skipped"""
        seen = set()
        normalized: List[str] = []
        for raw in identifiers:
            try:
                identifier = normalize_identifier(raw)
            except IdentifierOutOfRange as e:
                result.rejected.append(RejectedIdentifier(str(raw), e.kind))
                continue
            if identifier in seen:
                result.rejected.append(RejectedIdentifier(identifier, REJECT_DUPLICATE_IN_BATCH))
                continue
            seen.add(identifier)
            normalized.append(identifier)

        in_mirror = self.store.existing_identifiers(election_id, normalized)

        candidates = []
        for identifier in normalized:
            if identifier in in_mirror:
                result.rejected.append(RejectedIdentifier(identifier, REJECT_ALREADY_REGISTERED))
            elif (self.config.check_onchain_registration
                  and self.chain.is_registered_voter(election_id, identifier)):
                result.rejected.append(RejectedIdentifier(identifier, REJECT_ALREADY_ON_CHAIN))
            else:
                candidates.append(identifier)
        return candidates

    def register_batch(self, election_id: int,
                       identifiers: Sequence[IdentifierLike]) -> BatchRegistrationResult:
        """Register a batch of identifiers for one election.

        Raises ChainTransactionFailed / ChainUnavailable with nothing persisted,
        or ReconciliationFault when the chain confirmed but the mirror write
        failed.
        """
        election_key(election_id)
        result = BatchRegistrationResult(
            election_id=election_id, batch_id=generate_secure_id("batch"))

        with self._election_lock(election_id):
            with self.monitor.start_operation("register_batch"):
                candidates = self._screen(election_id, identifiers, result)
                if not candidates:
                    logger.info(
                        f"Election {election_id}: no new identifiers in batch "
                        f"({len(result.rejected)} skipped)")
                    return result

                logger.info(
                    f"Election {election_id}: registering {len(candidates)} identifiers "
                    f"({len(result.rejected)} skipped)")
                receipt = self.chain.batch_register_voters(election_id, candidates)
                result.transaction_hash = receipt.transaction_hash
                result.block_number = receipt.block_number
                result.gas_used = receipt.gas_used

                try:
                    self.store.add_voters(election_id, candidates)
                except SQLAlchemyError as e:
                    logger.critical(
                        f"Election {election_id}: transaction {receipt.transaction_hash} confirmed "
                        f"but mirror write failed: {e}. Run reconcile for this election.")
                    raise ReconciliationFault(
                        f"Registration confirmed on-chain in {receipt.transaction_hash} "
                        f"but not recorded in the mirror store",
                        election_id=election_id,
                        transaction_hash=receipt.transaction_hash) from e

                result.accepted = candidates
                self.activity_log.record_registrations(
                    election_id, len(candidates), result.batch_id, receipt.transaction_hash)

            result.merkle_root = self.compute_root(election_id)
            if self.config.auto_publish_root:
                try:
                    publication = self._publish(election_id, result.merkle_root)
                except RegistryError as e:
                    # registration stands; the operator can publish later
                    logger.error(f"Election {election_id}: root publication failed: {e.message}")
                    result.root_error = e.to_dict()
                else:
                    result.root_published = True
                    result.root_transaction_hash = publication.transaction_hash

        return result

    def register_many(self, batches: Mapping[int, Sequence[IdentifierLike]]
                      ) -> Dict[int, Union[BatchRegistrationResult, Exception]]:
        """Register batches for several elections in parallel.

        A failure for one election, registry error or otherwise, does not
        affect the others and is returned in place of its result.
        """
        if not batches:
            return {}

        outcomes: Dict[int, Union[BatchRegistrationResult, Exception]] = {}
        workers = max(1, min(len(batches), self.config.max_parallel_elections))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="registry-sync") as executor:
            futures = {
                election_id: executor.submit(self.register_batch, election_id, identifiers)
                for election_id, identifiers in batches.items()
            }
            for election_id, future in futures.items():
                try:
                    outcomes[election_id] = future.result()
                except RegistryError as e:
                    logger.error(f"Election {election_id}: batch failed ({e.kind}): {e.message}")
                    outcomes[election_id] = e
                except Exception as e:
                    logger.exception(f"Election {election_id}: batch failed unexpectedly")
                    outcomes[election_id] = e
        return outcomes

    # ------------------------------------------------------------------
    # Root
    # ------------------------------------------------------------------

    def compute_root(self, election_id: int) -> FieldElement:
        identifiers = self.store.list_identifiers(election_id)
        if not identifiers:
            raise NoRegistryForElection(f"No voters registered for election {election_id}")
        with self.monitor.start_operation("tree_rebuild"):
            tree = self.accumulator.build_from_identifiers(identifiers)
        logger.debug(f"Election {election_id}: root over {len(identifiers)} leaves")
        return tree.root()

    def _publish(self, election_id: int, root: FieldElement) -> RootPublication:
        receipt = self.chain.set_merkle_root(election_id, root)
        leaf_count = self.store.count(election_id)
        self.activity_log.record(
            election_id, ACTION_MERKLE_ROOT_PUBLISHED, receipt.transaction_hash,
            merkle_root=root.to_hex(), leaf_count=leaf_count)
        logger.info(f"Election {election_id}: published root {root.to_hex()}")
        return RootPublication(
            election_id=election_id,
            merkle_root=root,
            leaf_count=leaf_count,
            transaction_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
        )

    def publish_root(self, election_id: int) -> RootPublication:
        """Recompute the root from the mirror and set it on-chain"""
        with self._election_lock(election_id):
            root = self.compute_root(election_id)
            return self._publish(election_id, root)

    # ------------------------------------------------------------------
    # Administrative removal
    # ------------------------------------------------------------------

    def remove_voter(self, election_id: int, identifier: IdentifierLike):
        """Remove a voter on-chain, then from the mirror. Returns the receipt."""
        identifier = normalize_identifier(identifier)
        with self._election_lock(election_id):
            if (not self.store.contains(election_id, identifier)
                    and not self.chain.is_registered_voter(election_id, identifier)):
                raise NotRegistered(f"Voter is not registered for election {election_id}")

            receipt = self.chain.remove_voter(election_id, identifier)
            try:
                self.store.remove_voter(election_id, identifier)
            except SQLAlchemyError as e:
                raise ReconciliationFault(
                    f"Removal confirmed on-chain in {receipt.transaction_hash} "
                    f"but not applied to the mirror store",
                    election_id=election_id,
                    transaction_hash=receipt.transaction_hash) from e

            self.activity_log.record(election_id, ACTION_VOTER_REMOVED, receipt.transaction_hash)
            logger.info(
                f"Election {election_id}: removed voter {identifier_fingerprint(identifier)}")
            return receipt

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, election_id: int) -> ReconciliationReport:
        """Rebuild the election's mirror rows from on-chain events"""
        with self._election_lock(election_id):
            events = self.chain.registry_events(election_id)

            onchain: "OrderedDict[str, None]" = OrderedDict()
            invalid = set()
            for event in events:
                try:
                    identifier = normalize_identifier(event.identifier)
                except IdentifierOutOfRange:
                    # the contract accepts any bytes32; such values can never be leaves
                    invalid.add(event.identifier.lower())
                    continue
                # re-registration after removal moves to the end of the order
                onchain.pop(identifier, None)
                if event.action == 'registered':
                    onchain[identifier] = None
            if invalid:
                logger.warning(
                    f"Election {election_id}: {len(invalid)} on-chain identifiers are not "
                    f"field elements and stay out of the mirror")

            try:
                current = self.store.list_voters(election_id)
                current_order = [identifier for identifier, _ in current]
                in_mirror = set(current_order)
                target_order = list(onchain)

                report = ReconciliationReport(
                    election_id=election_id,
                    onchain_count=len(target_order),
                    mirror_count_before=len(current_order),
                    added=len(set(target_order) - in_mirror),
                    removed=len(in_mirror - set(target_order)),
                    reordered=(
                        [i for i in current_order if i in onchain]
                        != [i for i in target_order if i in in_mirror]
                    ),
                    invalid=len(invalid),
                )

                if report.changed:
                    registered_at = dict(current)
                    self.store.replace_election(
                        election_id,
                        [(identifier, registered_at.get(identifier)) for identifier in target_order])
            except SQLAlchemyError as e:
                raise ReconciliationFault(
                    f"Could not rewrite mirror rows for election {election_id}",
                    election_id=election_id) from e

            if report.changed:
                logger.warning(
                    f"Election {election_id}: mirror reconciled "
                    f"(+{report.added} / -{report.removed}, reordered={report.reordered})")
                self.activity_log.record(
                    election_id, ACTION_MIRROR_RECONCILED,
                    added=report.added, removed=report.removed, reordered=report.reordered)
            else:
                logger.info(f"Election {election_id}: mirror already matches chain")
            return report
