from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any
import logging
import os

import yaml

logger = logging.getLogger(__name__)

HASHERS = ("poseidon-bn254",)
DIRECTION_CONVENTIONS = ("left-is-zero", "right-is-zero")


@dataclass
class ChainConfig:
    rpc_url: str = "http://localhost:8545"
    contract_address: Optional[str] = None
    abi_path: Path = field(default_factory=lambda: Path(
        "artifacts/contracts/VotingSystem.sol/VotingSystem.json"))
    operator_private_key: Optional[str] = None
    request_timeout: float = 10.0
    receipt_timeout: float = 120.0
    read_retries: int = 3
    retry_backoff: float = 0.5
    from_block: int = 0

    def __post_init__(self):
        self.abi_path = Path(self.abi_path)


@dataclass
class StoreConfig:
    database_url: str = "sqlite:///data/voter_registry.db"
    echo_sql: bool = False


@dataclass
class MerkleConfig:
    hasher: str = "poseidon-bn254"
    direction_convention: str = "left-is-zero"

    def __post_init__(self):
        if self.hasher not in HASHERS:
            raise ValueError(
                f"Unknown hasher '{self.hasher}'. Available: {list(HASHERS)}")
        if self.direction_convention not in DIRECTION_CONVENTIONS:
            raise ValueError(
                f"Unknown direction convention '{self.direction_convention}'")


@dataclass
class SyncConfig:
    auto_publish_root: bool = False
    check_onchain_registration: bool = True
    max_parallel_elections: int = 4


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    identity_header: str = "X-Voter-Identifier"


@dataclass
class RegistryConfig:
    chain: ChainConfig = field(default_factory=ChainConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    merkle: MerkleConfig = field(default_factory=MerkleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)
        if self.enable_debug_mode:
            self.log_level = "DEBUG"


# Deployment secrets and endpoints come from the environment when set
ENV_OVERRIDES = {
    'ETHEREUM_RPC_URL': ('chain', 'rpc_url'),
    'CONTRACT_ADDRESS': ('chain', 'contract_address'),
    'ADMIN_SIGNER_PRIVATE_KEY': ('chain', 'operator_private_key'),
    'REGISTRY_DATABASE_URL': ('store', 'database_url'),
}


def apply_env_overrides(config: RegistryConfig, environ: Optional[Dict[str, str]] = None) -> RegistryConfig:
    environ = os.environ if environ is None else environ
    for var, (section, attr) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            setattr(getattr(config, section), attr, value)
    return config


def _from_dict(config_data: Dict[str, Any]) -> RegistryConfig:
    chain_data = config_data.get('chain', {}) or {}
    chain_config = ChainConfig(
        rpc_url=chain_data.get('rpc_url', 'http://localhost:8545'),
        contract_address=chain_data.get('contract_address'),
        abi_path=Path(chain_data.get(
            'abi_path', 'artifacts/contracts/VotingSystem.sol/VotingSystem.json')),
        request_timeout=float(chain_data.get('request_timeout', 10.0)),
        receipt_timeout=float(chain_data.get('receipt_timeout', 120.0)),
        read_retries=int(chain_data.get('read_retries', 3)),
        retry_backoff=float(chain_data.get('retry_backoff', 0.5)),
        from_block=int(chain_data.get('from_block', 0)),
    )

    store_data = config_data.get('store', {}) or {}
    store_config = StoreConfig(
        database_url=store_data.get('database_url', 'sqlite:///data/voter_registry.db'),
        echo_sql=store_data.get('echo_sql', False),
    )

    merkle_data = config_data.get('merkle', {}) or {}
    merkle_config = MerkleConfig(
        hasher=merkle_data.get('hasher', 'poseidon-bn254'),
        direction_convention=merkle_data.get('direction_convention', 'left-is-zero'),
    )

    sync_data = config_data.get('sync', {}) or {}
    sync_config = SyncConfig(
        auto_publish_root=sync_data.get('auto_publish_root', False),
        check_onchain_registration=sync_data.get('check_onchain_registration', True),
        max_parallel_elections=int(sync_data.get('max_parallel_elections', 4)),
    )

    api_data = config_data.get('api', {}) or {}
    api_config = ApiConfig(
        host=api_data.get('host', '127.0.0.1'),
        port=int(api_data.get('port', 5000)),
        identity_header=api_data.get('identity_header', 'X-Voter-Identifier'),
    )

    return RegistryConfig(
        chain=chain_config,
        store=store_config,
        merkle=merkle_config,
        sync=sync_config,
        api=api_config,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        log_level=config_data.get('log_level', 'INFO'),
        results_dir=Path(config_data.get('results_dir', 'results')),
        enable_debug_mode=config_data.get('enable_debug_mode', False),
    )


def load_config(config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> RegistryConfig:
    """Load configuration from file or return default.

    The operator private key is never read from the YAML file; it only comes
    from ADMIN_SIGNER_PRIVATE_KEY.
    """
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    config = None
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            if isinstance(config_data, dict):
                config = _from_dict(config_data)
            else:
                logger.warning(
                    f"Config file {config_path} must hold a mapping, "
                    f"got {type(config_data).__name__}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config file {config_path}: {e}")

        if config is None:
            logger.warning("Using default configuration")

    if config is None:
        config = RegistryConfig()

    return apply_env_overrides(config, environ)


def save_config(config: RegistryConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file (secrets excluded)"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'chain': {
            'rpc_url': config.chain.rpc_url,
            'contract_address': config.chain.contract_address,
            'abi_path': str(config.chain.abi_path),
            'request_timeout': config.chain.request_timeout,
            'receipt_timeout': config.chain.receipt_timeout,
            'read_retries': config.chain.read_retries,
            'retry_backoff': config.chain.retry_backoff,
            'from_block': config.chain.from_block,
        },
        'store': {
            'database_url': config.store.database_url,
            'echo_sql': config.store.echo_sql,
        },
        'merkle': {
            'hasher': config.merkle.hasher,
            'direction_convention': config.merkle.direction_convention,
        },
        'sync': {
            'auto_publish_root': config.sync.auto_publish_root,
            'check_onchain_registration': config.sync.check_onchain_registration,
            'max_parallel_elections': config.sync.max_parallel_elections,
        },
        'api': {
            'host': config.api.host,
            'port': config.api.port,
            'identity_header': config.api.identity_header,
        },
        'log_dir': str(config.log_dir),
        'log_level': config.log_level,
        'results_dir': str(config.results_dir),
        'enable_debug_mode': config.enable_debug_mode,
    }

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
