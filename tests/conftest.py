import os
import sys

import pytest

# Ensure repository root is on sys.path for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from config.config import SyncConfig  # noqa: E402
from registry.local_chain import InMemoryRegistryChain  # noqa: E402
from registry.mirror_store import MirrorStore  # noqa: E402
from registry.proof_service import ProofService  # noqa: E402
from registry.registry_sync import VoterRegistrySync  # noqa: E402
from zk.field_hasher import create_field_hasher  # noqa: E402


def make_identifier(n: int) -> str:
    """Deterministic bytes32 identifier for tests"""
    return '0x' + format(n, '064x')


@pytest.fixture(scope="session")
def hasher():
    # parameter derivation is cached per width, share one instance
    return create_field_hasher("poseidon-bn254")


@pytest.fixture
def store():
    mirror = MirrorStore.from_url("sqlite:///:memory:")
    yield mirror
    mirror.engine.dispose()


@pytest.fixture
def chain():
    return InMemoryRegistryChain()


@pytest.fixture
def sync(chain, store, hasher):
    return VoterRegistrySync(chain, store, hasher, config=SyncConfig())


@pytest.fixture
def proof_service(chain, store, hasher):
    return ProofService(chain, store, hasher)


@pytest.fixture
def voters():
    # A, B, C, D
    return [make_identifier(0xA11CE), make_identifier(0xB0B), make_identifier(0xC4A1), make_identifier(0xD0D0)]
