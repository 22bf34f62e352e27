"""
Voter registry: on-chain adapter, mirror store, write-path sync and proof service.
"""

from .chain_client import (
    RegistryChain,
    RegistryEvent,
    TransactionReceipt,
    Web3RegistryChain,
    load_contract_abi,
)
from .local_chain import InMemoryRegistryChain
from .mirror_store import MirrorStore, RegisteredVoter, ActivityLogEntry
from .activity_log import ActivityLog
from .registry_sync import (
    VoterRegistrySync,
    BatchRegistrationResult,
    RejectedIdentifier,
    RootPublication,
    ReconciliationReport,
)
from .proof_service import ProofService

__all__ = [
    'RegistryChain',
    'RegistryEvent',
    'TransactionReceipt',
    'Web3RegistryChain',
    'load_contract_abi',
    'InMemoryRegistryChain',
    'MirrorStore',
    'RegisteredVoter',
    'ActivityLogEntry',
    'ActivityLog',
    'VoterRegistrySync',
    'BatchRegistrationResult',
    'RejectedIdentifier',
    'RootPublication',
    'ReconciliationReport',
    'ProofService',
]
