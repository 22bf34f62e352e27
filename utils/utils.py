"""
Registry utilities: logging setup, operation timing, correlation ids,
identifier fingerprints and JSON reports.
"""

import logging
import json
import time
import hashlib
import secrets
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional
import platform
from dataclasses import dataclass, asdict

import numpy as np
import psutil

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

# chatty client libraries stay at WARNING regardless of the configured level
QUIET_LOGGERS = ("web3", "urllib3", "sqlalchemy.engine", "werkzeug")


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None,
                  log_dir: Optional[Path] = None):
    """Route registry logs to a timestamped file and the console"""
    if log_file is None:
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        log_file = Path(log_dir or "logs") / f"voter_registry_{stamp}.log"
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Registry logging at {log_level.upper()} -> {log_file}")
    return logger


@dataclass
class OperationSample:
    operation: str
    duration_seconds: float
    rss_mb: float
    failed: bool
    timestamp: float


class PerformanceMonitor:
    """Collects timings for tree rebuilds, batch registrations and the like.

    Samples are appended from several worker threads; list.append is atomic
    so no lock is taken.
    """

    def __init__(self):
        self.samples: List[OperationSample] = []
        self.process = psutil.Process()

    def start_operation(self, operation_name: str) -> 'OperationContext':
        return OperationContext(self, operation_name)

    def record(self, sample: OperationSample):
        self.samples.append(sample)

    def current_rss_mb(self) -> float:
        try:
            return self.process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logging.debug(f"RSS unavailable: {e}")
            return 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Per-operation count, failures and duration percentiles"""
        grouped: Dict[str, List[OperationSample]] = {}
        for sample in list(self.samples):
            grouped.setdefault(sample.operation, []).append(sample)

        operations = {}
        for name, samples in grouped.items():
            durations = np.array([s.duration_seconds for s in samples])
            total = float(durations.sum())
            operations[name] = {
                'count': len(samples),
                'failures': sum(1 for s in samples if s.failed),
                'total_duration': total,
                'avg_duration': float(durations.mean()),
                'p95_duration': float(np.percentile(durations, 95)),
                'max_duration': float(durations.max()),
                'peak_rss_mb': max(s.rss_mb for s in samples),
                'ops_per_sec': len(samples) / total if total > 0 else 0.0,
            }

        return {
            'total_operations': sum(op['count'] for op in operations.values()),
            'total_duration': sum(op['total_duration'] for op in operations.values()),
            'operations': operations,
        }


class OperationContext:
    """Times one operation; exceptions are recorded as failures and re-raised"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.monitor.record(OperationSample(
            operation=self.operation_name,
            duration_seconds=time.perf_counter() - self._started,
            rss_mb=self.monitor.current_rss_mb(),
            failed=exc_type is not None,
            timestamp=time.time(),
        ))


def get_system_info() -> Dict[str, Any]:
    info = {
        'platform': platform.platform(),
        'python_version': platform.python_version(),
        'cpu_count': psutil.cpu_count(logical=True),
    }
    try:
        info['total_memory_gb'] = round(psutil.virtual_memory().total / 1024 ** 3, 2)
    except psutil.Error as e:
        info['psutil_error'] = str(e)
    return info


def generate_secure_id(prefix: str = "", length: int = 16) -> str:
    """Random correlation id, e.g. ``batch_1697630400123_9f2c...``"""
    token = f"{int(time.time() * 1000)}_{secrets.token_hex(length // 2)}"
    return f"{prefix}_{token}" if prefix else token


def identifier_fingerprint(identifier: str) -> str:
    """Short non-reversible tag for log lines; never log identifiers directly"""
    return hashlib.sha256(identifier.lower().encode('utf-8')).hexdigest()[:12]


def _jsonable(obj):
    if hasattr(obj, 'to_hex'):
        return obj.to_hex()
    if hasattr(obj, '__dataclass_fields__'):
        return _jsonable(asdict(obj))
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(item) for item in obj]
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    if isinstance(obj, bytes):
        return '0x' + obj.hex()
    if isinstance(obj, (Path, datetime)):
        return str(obj) if isinstance(obj, Path) else obj.isoformat()
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Write a JSON report wrapped with generation metadata"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    report = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
        },
        'data': _jsonable(results),
    }
    with open(filepath, 'w') as f:
        json.dump(report, f, indent=2, default=str)

    logging.info(f"Report written to {filepath}")
