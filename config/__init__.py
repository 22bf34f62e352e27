"""Configuration management for the voter registry."""

from .config import (
    RegistryConfig,
    ChainConfig,
    StoreConfig,
    MerkleConfig,
    SyncConfig,
    ApiConfig,
    load_config,
    save_config,
    apply_env_overrides,
)

__all__ = ['RegistryConfig', 'ChainConfig', 'StoreConfig', 'MerkleConfig', 'SyncConfig',
           'ApiConfig', 'load_config', 'save_config', 'apply_env_overrides']
