#!/usr/bin/env python3
"""
Voter Registry System
=====================
Composition root for the privacy-preserving voter registry:

1. FieldHasher: Poseidon over BN254, bound once from configuration
2. VoterRegistrySync: chain-first registration into the mirror store
3. ProofService: per-voter Merkle membership proofs checked against the chain

The async facade runs the blocking chain calls and CPU-bound tree rebuilds in
a thread pool so an event loop stays responsive.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, Mapping, Optional, Sequence

from config.config import RegistryConfig
from merkle.leaf_encoder import IdentifierLike
from merkle.proof_codec import DirectionConvention, MerkleProof
from registry.activity_log import ActivityLog
from registry.chain_client import RegistryChain, Web3RegistryChain
from registry.mirror_store import MirrorStore
from registry.proof_service import ProofService
from registry.registry_sync import (
    BatchRegistrationResult, ReconciliationReport, RootPublication, VoterRegistrySync,
)
from utils.utils import PerformanceMonitor
from zk.field import FieldElement
from zk.field_hasher import create_field_hasher

logger = logging.getLogger(__name__)


class VoterRegistrySystem:
    """
    Wires configuration, chain adapter, mirror store, hasher and services.

    ``chain`` and ``store`` may be injected; otherwise they are built from the
    configuration (web3 HTTP provider and SQLAlchemy engine).
    """

    def __init__(self, config: Optional[RegistryConfig] = None,
                 chain: Optional[RegistryChain] = None,
                 store: Optional[MirrorStore] = None):
        self.config = config or RegistryConfig()

        logger.info("Initializing Voter Registry System...")

        self.hasher = create_field_hasher(self.config.merkle.hasher)
        self.convention = DirectionConvention(self.config.merkle.direction_convention)

        if store is None:
            store = MirrorStore.from_url(
                self.config.store.database_url, echo=self.config.store.echo_sql)
        self.store = store

        if chain is None:
            chain = Web3RegistryChain(self.config.chain)
        self.chain = chain

        self.performance_monitor = PerformanceMonitor()
        self.activity_log = ActivityLog(self.store)

        self.sync = VoterRegistrySync(
            self.chain, self.store, self.hasher,
            config=self.config.sync,
            activity_log=self.activity_log,
            monitor=self.performance_monitor,
        )
        self.proof_service = ProofService(
            self.chain, self.store, self.hasher,
            convention=self.convention,
            monitor=self.performance_monitor,
        )

        self._executor = ThreadPoolExecutor(
            max_workers=max(2, self.config.sync.max_parallel_elections),
            thread_name_prefix="voter-registry")
        self._initialized = False
        self._lock = asyncio.Lock()

        logger.info(
            f"Voter Registry System ready (hasher={self.hasher.name}, "
            f"convention={self.convention.value})")

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(fn, *args))

    async def initialize(self):
        """Check chain connectivity once"""
        async with self._lock:
            if self._initialized:
                return
            if isinstance(self.chain, Web3RegistryChain):
                await self._run(self.chain.ensure_connected)
                logger.info(f"Connected to Ethereum node at {self.config.chain.rpc_url}")
            self._initialized = True

    # ------------------------------------------------------------------
    # Async facade
    # ------------------------------------------------------------------

    async def register_voters(self, election_id: int,
                              identifiers: Sequence[IdentifierLike]) -> BatchRegistrationResult:
        if not self._initialized:
            await self.initialize()
        return await self._run(self.sync.register_batch, election_id, identifiers)

    async def register_many(self, batches: Mapping[int, Sequence[IdentifierLike]]):
        if not self._initialized:
            await self.initialize()
        return await self._run(self.sync.register_many, batches)

    async def get_proof(self, election_id: int, voter_identifier: IdentifierLike) -> MerkleProof:
        return await self._run(self.proof_service.get_proof, election_id, voter_identifier)

    async def compute_root(self, election_id: int) -> FieldElement:
        return await self._run(self.sync.compute_root, election_id)

    async def publish_root(self, election_id: int) -> RootPublication:
        return await self._run(self.sync.publish_root, election_id)

    async def remove_voter(self, election_id: int, identifier: IdentifierLike):
        return await self._run(self.sync.remove_voter, election_id, identifier)

    async def reconcile(self, election_id: int) -> ReconciliationReport:
        return await self._run(self.sync.reconcile, election_id)

    # ------------------------------------------------------------------

    def create_app(self, identity_resolver=None):
        from api import create_app
        return create_app(
            self.sync, self.proof_service,
            identity_resolver=identity_resolver, api_config=self.config.api)

    def get_system_metrics(self) -> Dict[str, Any]:
        return {
            'hasher': self.hasher.name,
            'direction_convention': self.convention.value,
            'chain_backend': type(self.chain).__name__,
            'performance': self.performance_monitor.get_summary(),
        }

    def close(self):
        self._executor.shutdown(wait=True)
        self.store.engine.dispose()
