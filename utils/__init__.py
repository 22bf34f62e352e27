"""Utilities for the voter registry."""

from .utils import (
    setup_logging,
    save_results,
    PerformanceMonitor,
    get_system_info,
    generate_secure_id,
    identifier_fingerprint,
)

__all__ = [
    'setup_logging',
    'save_results',
    'PerformanceMonitor',
    'get_system_info',
    'generate_secure_id',
    'identifier_fingerprint',
]
