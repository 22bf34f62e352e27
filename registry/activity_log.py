"""
Audit trail for registry writes.

One entry per successfully registered identifier, keyed by a correlation id.
Entries hold the election id and the (public) transaction hash, never the
identifier itself.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from registry.mirror_store import ActivityLogEntry, MirrorStore, election_key
from utils.utils import generate_secure_id

logger = logging.getLogger(__name__)

ACTION_VOTER_REGISTERED = "voter_registered"
ACTION_VOTER_REMOVED = "voter_removed"
ACTION_MERKLE_ROOT_PUBLISHED = "election_set_merkle_root"
ACTION_MIRROR_RECONCILED = "mirror_reconciled"


@dataclass
class ActivityRecord:
    election_id: int
    action: str
    correlation_id: str
    transaction_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class ActivityLog:
    """Writes audit records to the mirror database and the application log"""

    def __init__(self, store: MirrorStore):
        self.store = store

    def record_registrations(self, election_id: int, count: int, batch_id: str,
                             transaction_hash: Optional[str]) -> List[ActivityRecord]:
        records = [
            ActivityRecord(
                election_id=election_id,
                action=ACTION_VOTER_REGISTERED,
                correlation_id=f"{batch_id}-{position:05d}",
                transaction_hash=transaction_hash,
                details={'batch_id': batch_id, 'position': position},
            )
            for position in range(count)
        ]
        self.emit(records)
        return records

    def record(self, election_id: int, action: str, transaction_hash: Optional[str] = None,
               **details: Any) -> ActivityRecord:
        record = ActivityRecord(
            election_id=election_id,
            action=action,
            correlation_id=generate_secure_id(action[:8]),
            transaction_hash=transaction_hash,
            details=details,
        )
        self.emit([record])
        return record

    def emit(self, records: List[ActivityRecord]):
        if not records:
            return
        for record in records:
            logger.info(
                f"[audit] {record.action} election={record.election_id} "
                f"correlation={record.correlation_id}")
        try:
            self.store.add_activity([
                ActivityLogEntry(
                    election_id=election_key(record.election_id),
                    action=record.action,
                    correlation_id=record.correlation_id,
                    transaction_hash=record.transaction_hash,
                    details=json.dumps(record.details, sort_keys=True),
                )
                for record in records
            ])
        except SQLAlchemyError as e:
            # the audit trail must not undo a confirmed registration
            logger.error(f"Failed to persist {len(records)} audit records: {e}")
