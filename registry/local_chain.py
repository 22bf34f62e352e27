"""
In-process registry chain for demos and local development.

Mirrors the contract rules the sync layer depends on: duplicate registrations
revert the whole batch, removal is refused once an election is locked, and
every state change emits an ordered event.
"""

import hashlib
import itertools
import logging
import threading
from typing import Dict, List, Optional, Sequence, Set

from errors import ChainTransactionFailed
from registry.chain_client import RegistryChain, RegistryEvent, TransactionReceipt
from zk.field import FieldElement

logger = logging.getLogger(__name__)


class InMemoryRegistryChain(RegistryChain):

    def __init__(self):
        self._registered: Dict[int, Set[str]] = {}
        self._roots: Dict[int, FieldElement] = {}
        self._events: List[RegistryEvent] = []
        self._locked: Set[int] = set()
        self._blocks = itertools.count(1)
        self._lock = threading.Lock()
        self.transactions: List[str] = []

    def lock_election(self, election_id: int):
        """Simulate the election starting; the registry becomes append-only"""
        with self._lock:
            self._locked.add(election_id)

    def _receipt(self, method: str, election_id: int, payload: Sequence[str]) -> TransactionReceipt:
        block = next(self._blocks)
        digest = hashlib.sha256(
            f"{method}:{election_id}:{block}:{','.join(payload)}".encode('utf-8')).hexdigest()
        tx_hash = '0x' + digest
        self.transactions.append(tx_hash)
        return TransactionReceipt(transaction_hash=tx_hash, block_number=block, gas_used=21000 + 25000 * len(payload))

    def _emit(self, action: str, election_id: int, identifiers: Sequence[str], receipt: TransactionReceipt):
        for log_index, identifier in enumerate(identifiers):
            self._events.append(RegistryEvent(
                action=action,
                election_id=election_id,
                identifier=identifier,
                block_number=receipt.block_number,
                log_index=log_index,
                transaction_hash=receipt.transaction_hash,
            ))

    def register_voter(self, election_id: int, identifier: str) -> TransactionReceipt:
        return self.batch_register_voters(election_id, [identifier])

    def batch_register_voters(self, election_id: int, identifiers: Sequence[str]) -> TransactionReceipt:
        identifiers = [identifier.lower() for identifier in identifiers]
        with self._lock:
            if not identifiers:
                raise ChainTransactionFailed(
                    "batchRegisterVoters reverted", revert_reason="VotingSystem: empty batch")
            registered = self._registered.setdefault(election_id, set())
            if len(set(identifiers)) != len(identifiers) or registered.intersection(identifiers):
                raise ChainTransactionFailed(
                    "batchRegisterVoters reverted",
                    revert_reason="VotingSystem: voter already registered")
            receipt = self._receipt("batchRegisterVoters", election_id, identifiers)
            registered.update(identifiers)
            self._emit('registered', election_id, identifiers, receipt)
        logger.debug(f"Local chain: election {election_id} +{len(identifiers)} voters")
        return receipt

    def remove_voter(self, election_id: int, identifier: str) -> TransactionReceipt:
        identifier = identifier.lower()
        with self._lock:
            if election_id in self._locked:
                raise ChainTransactionFailed(
                    "removeVoter reverted", revert_reason="VotingSystem: election already started")
            registered = self._registered.get(election_id, set())
            if identifier not in registered:
                raise ChainTransactionFailed(
                    "removeVoter reverted", revert_reason="VotingSystem: voter not registered")
            receipt = self._receipt("removeVoter", election_id, [identifier])
            registered.discard(identifier)
            self._emit('removed', election_id, [identifier], receipt)
        return receipt

    def set_merkle_root(self, election_id: int, root: FieldElement) -> TransactionReceipt:
        with self._lock:
            receipt = self._receipt("setMerkleRoot", election_id, [root.to_hex()])
            self._roots[election_id] = root
        return receipt

    def get_merkle_root(self, election_id: int) -> Optional[FieldElement]:
        with self._lock:
            return self._roots.get(election_id)

    def is_registered_voter(self, election_id: int, identifier: str) -> bool:
        with self._lock:
            return identifier.lower() in self._registered.get(election_id, set())

    def registry_events(self, election_id: int) -> List[RegistryEvent]:
        with self._lock:
            events = [event for event in self._events if event.election_id == election_id]
        return sorted(events, key=lambda event: event.sort_key)
