import gc
import json
import threading

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from config.config import SyncConfig
from conftest import make_identifier
from errors import (
    ChainTransactionFailed, ChainUnavailable, NoRegistryForElection, NotRegistered,
    ReconciliationFault,
)
from merkle.accumulator import MerkleAccumulator
from registry.activity_log import (
    ACTION_MERKLE_ROOT_PUBLISHED, ACTION_MIRROR_RECONCILED, ACTION_VOTER_REGISTERED,
)
from registry.local_chain import InMemoryRegistryChain
from registry.mirror_store import MirrorStore
from registry.registry_sync import (
    REJECT_ALREADY_ON_CHAIN, REJECT_ALREADY_REGISTERED, REJECT_DUPLICATE_IN_BATCH,
    VoterRegistrySync,
)
from zk.field import FIELD_PRIME


class RevertingChain(InMemoryRegistryChain):
    def batch_register_voters(self, election_id, identifiers):
        raise ChainTransactionFailed("batchRegisterVoters reverted",
                                     revert_reason="VotingSystem: caller is not admin")


class UnreachableChain(InMemoryRegistryChain):
    def batch_register_voters(self, election_id, identifiers):
        raise ChainUnavailable("node down")


class BrokenMirrorStore(MirrorStore):
    def add_voters(self, election_id, identifiers, registered_at=None):
        raise SQLAlchemyError("database is locked")


def test_register_batch_chain_first_then_mirror(sync, chain, store, voters):
    result = sync.register_batch(7, voters[:3])

    assert result.accepted == voters[:3]
    assert result.rejected == []
    assert result.transaction_hash == chain.transactions[-1]
    assert store.list_identifiers(7) == voters[:3]
    assert all(chain.is_registered_voter(7, v) for v in voters[:3])
    assert result.merkle_root == MerkleAccumulator(sync.accumulator.hasher).build_from_identifiers(
        voters[:3]).root()
    assert result.root_published is False


def test_rejections_are_reported_per_identifier(sync, chain, voters):
    sync.register_batch(1, [voters[0]])
    chain.batch_register_voters(1, [voters[1]])  # registered out of band

    result = sync.register_batch(1, [voters[0], voters[1], voters[2], voters[2], "0x1234"])

    reasons = {(r.identifier, r.reason) for r in result.rejected}
    assert (voters[0], REJECT_ALREADY_REGISTERED) in reasons
    assert (voters[1], REJECT_ALREADY_ON_CHAIN) in reasons
    assert (voters[2], REJECT_DUPLICATE_IN_BATCH) in reasons
    assert ("0x1234", "IdentifierOutOfRange") in reasons
    assert result.accepted == [voters[2]]


def test_identifiers_are_normalized(sync, store):
    upper = "0x" + "0A" * 32
    result = sync.register_batch(1, [upper])
    assert result.accepted == ["0x" + "0a" * 32]
    assert store.list_identifiers(1) == ["0x" + "0a" * 32]


def test_nothing_new_sends_no_transaction(sync, chain, voters):
    sync.register_batch(1, voters[:2])
    sent = len(chain.transactions)
    result = sync.register_batch(1, voters[:2])
    assert result.accepted == []
    assert result.transaction_hash is None
    assert len(chain.transactions) == sent


def test_reverted_transaction_persists_nothing(store, hasher, voters):
    sync = VoterRegistrySync(RevertingChain(), store, hasher)
    with pytest.raises(ChainTransactionFailed) as excinfo:
        sync.register_batch(1, voters)
    assert excinfo.value.revert_reason == "VotingSystem: caller is not admin"
    assert store.count(1) == 0
    assert store.list_activity(1) == []


def test_revert_on_duplicate_when_chain_check_disabled(chain, store, hasher, voters):
    chain.batch_register_voters(1, [voters[0]])
    sync = VoterRegistrySync(chain, store, hasher,
                             config=SyncConfig(check_onchain_registration=False))
    with pytest.raises(ChainTransactionFailed):
        sync.register_batch(1, voters[:2])
    assert store.count(1) == 0


def test_unreachable_chain_persists_nothing(store, hasher, voters):
    sync = VoterRegistrySync(UnreachableChain(), store, hasher)
    with pytest.raises(ChainUnavailable):
        sync.register_batch(1, voters)
    assert store.count(1) == 0


def test_mirror_failure_after_confirmation_is_reconciliation_fault(chain, hasher, voters):
    store = BrokenMirrorStore.from_url("sqlite:///:memory:")
    sync = VoterRegistrySync(chain, store, hasher)

    with pytest.raises(ReconciliationFault) as excinfo:
        sync.register_batch(3, voters[:2])

    assert excinfo.value.election_id == 3
    assert excinfo.value.transaction_hash == chain.transactions[-1]
    assert chain.is_registered_voter(3, voters[0])


def test_audit_records_per_identifier_without_identifiers(sync, store, voters):
    result = sync.register_batch(2, voters[:3])
    entries = [e for e in store.list_activity(2) if e.action == ACTION_VOTER_REGISTERED]

    assert len(entries) == 3
    assert len({e.correlation_id for e in entries}) == 3
    assert all(e.transaction_hash == result.transaction_hash for e in entries)
    for entry in entries:
        assert all(v[2:] not in (entry.details or "") for v in voters)
        assert json.loads(entry.details)['batch_id'] == result.batch_id


def test_auto_publish_root(chain, store, hasher, voters):
    sync = VoterRegistrySync(chain, store, hasher, config=SyncConfig(auto_publish_root=True))
    result = sync.register_batch(1, voters[:3])
    assert result.root_published is True
    assert chain.get_merkle_root(1) == result.merkle_root
    assert any(e.action == ACTION_MERKLE_ROOT_PUBLISHED for e in store.list_activity(1))


def test_compute_and_publish_root(sync, chain, voters):
    with pytest.raises(NoRegistryForElection):
        sync.compute_root(1)

    sync.register_batch(1, voters[:3])
    publication = sync.publish_root(1)
    assert publication.merkle_root == sync.compute_root(1)
    assert publication.leaf_count == 3
    assert chain.get_merkle_root(1) == publication.merkle_root
    assert publication.to_dict()['merkleRoot'] == publication.merkle_root.to_hex()


def test_remove_voter(sync, chain, store, voters):
    sync.register_batch(1, voters[:3])
    sync.remove_voter(1, voters[1])
    assert store.list_identifiers(1) == [voters[0], voters[2]]
    assert not chain.is_registered_voter(1, voters[1])

    with pytest.raises(NotRegistered):
        sync.remove_voter(1, voters[3])


def test_remove_voter_after_election_start_reverts(sync, chain, store, voters):
    sync.register_batch(1, voters[:2])
    chain.lock_election(1)
    with pytest.raises(ChainTransactionFailed):
        sync.remove_voter(1, voters[0])
    assert store.count(1) == 2


def test_reconcile_repairs_missing_rows(chain, hasher, voters):
    broken = BrokenMirrorStore.from_url("sqlite:///:memory:")
    with pytest.raises(ReconciliationFault):
        VoterRegistrySync(chain, broken, hasher).register_batch(1, voters[:2])

    sync = VoterRegistrySync(chain, broken, hasher)
    report = sync.reconcile(1)
    assert report.added == 2
    assert report.changed
    assert broken.list_identifiers(1) == voters[:2]
    assert any(e.action == ACTION_MIRROR_RECONCILED for e in broken.list_activity(1))


def test_reconcile_follows_event_order(sync, chain, store, voters):
    a, b, c, d = voters
    chain.batch_register_voters(1, [c, a])
    chain.batch_register_voters(1, [b])
    chain.remove_voter(1, a)
    chain.batch_register_voters(1, [d, a])

    store.add_voters(1, [a, b, voters[3]])
    report = sync.reconcile(1)

    assert store.list_identifiers(1) == [c, b, d, a]
    assert report.onchain_count == 4
    assert report.mirror_count_before == 3
    assert report.added == 1
    assert report.removed == 0
    assert report.reordered


def test_reconcile_noop_when_in_sync(sync, store, voters):
    sync.register_batch(1, voters)
    report = sync.reconcile(1)
    assert not report.changed
    assert store.list_identifiers(1) == voters


def test_register_many_runs_elections_independently(tmp_path, hasher, voters):
    store = MirrorStore.from_url(f"sqlite:///{tmp_path / 'mirror.db'}")

    class OneBadElection(InMemoryRegistryChain):
        def batch_register_voters(self, election_id, identifiers):
            if election_id == 2:
                raise ChainTransactionFailed("reverted", revert_reason="VotingSystem: unknown election")
            return super().batch_register_voters(election_id, identifiers)

    sync = VoterRegistrySync(OneBadElection(), store, hasher, config=SyncConfig(max_parallel_elections=3))
    outcomes = sync.register_many({1: voters[:2], 2: voters[:2], 3: voters[2:]})

    assert outcomes[1].accepted == voters[:2]
    assert isinstance(outcomes[2], ChainTransactionFailed)
    assert outcomes[3].accepted == voters[2:]
    assert store.count(2) == 0


def test_writes_for_one_election_are_serialized(chain, store, hasher):
    in_flight = []
    overlap = []
    guard = threading.Lock()

    class SlowChain(InMemoryRegistryChain):
        def batch_register_voters(self, election_id, identifiers):
            with guard:
                if election_id in in_flight:
                    overlap.append(election_id)
                in_flight.append(election_id)
            try:
                threading.Event().wait(0.02)
                return super().batch_register_voters(election_id, identifiers)
            finally:
                with guard:
                    in_flight.remove(election_id)

    sync = VoterRegistrySync(SlowChain(), store, hasher)
    threads = [
        threading.Thread(target=sync.register_batch, args=(1, [make_identifier(100 + i)]))
        for i in range(5)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []
    assert store.count(1) == 5


def test_register_many_keeps_results_when_one_mirror_read_fails(tmp_path, hasher, voters):
    class UnreadableElection(MirrorStore):
        def existing_identifiers(self, election_id, identifiers):
            if election_id == 2:
                raise OperationalError("SELECT identifier", {}, Exception("disk I/O error"))
            return super().existing_identifiers(election_id, identifiers)

    store = UnreadableElection.from_url(f"sqlite:///{tmp_path / 'mirror.db'}")
    chain = InMemoryRegistryChain()
    sync = VoterRegistrySync(chain, store, hasher, config=SyncConfig(max_parallel_elections=3))

    outcomes = sync.register_many({1: voters[:2], 2: voters[2:3], 3: voters[3:]})

    assert outcomes[1].accepted == voters[:2]
    assert isinstance(outcomes[2], OperationalError)
    assert outcomes[3].accepted == voters[3:]
    assert store.list_identifiers(1) == voters[:2]
    assert store.list_identifiers(3) == voters[3:]
    assert not chain.is_registered_voter(2, voters[2])


def test_reconcile_leaves_out_identifiers_outside_the_field(sync, chain, store, proof_service, voters):
    sync.register_batch(1, voters[:3])
    sync.publish_root(1)
    chain.batch_register_voters(1, ['0x' + format(FIELD_PRIME + 5, '064x')])

    report = sync.reconcile(1)

    assert report.invalid == 1
    assert report.added == 0
    assert not report.changed
    assert report.to_dict()['invalid'] == 1
    assert store.list_identifiers(1) == voters[:3]
    assert proof_service.get_proof(1, voters[0]).root == sync.compute_root(1)


def test_election_locks_are_released_when_idle(sync, voters):
    held = sync._election_lock(5)
    assert sync._election_lock(5) is held
    del held

    sync.register_batch(1, voters[:1])
    sync.register_batch(2, voters[1:2])
    gc.collect()
    assert len(sync._locks) == 0
