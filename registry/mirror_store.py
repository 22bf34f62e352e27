"""
Off-chain mirror of the on-chain voter registry.

One row per (election, identifier). Rows carry an autoincrement ``sequence``
which is the canonical tree order: every read for tree construction is
``ORDER BY sequence``. Rows are never updated; they are inserted after a
confirmed on-chain registration and deleted only by administrative removal or
by a reconciliation rewrite.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import (
    Column, DateTime, Index, Integer, String, Text, UniqueConstraint,
    create_engine, delete, func, select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegisteredVoter(Base):
    """Mirror record of an identifier registered on-chain for an election"""
    __tablename__ = 'registered_voters'

    # Canonical tree order
    sequence = Column(Integer, primary_key=True, autoincrement=True)

    # uint256 election id stored in decimal
    election_id = Column(String(78), nullable=False)

    # bytes32, lowercase 0x-prefixed hex
    identifier = Column(String(66), nullable=False)

    registered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('election_id', 'identifier', name='uq_registered_voter'),
        Index('idx_registered_voter_order', 'election_id', 'sequence'),
    )

    def __repr__(self):
        return f'<RegisteredVoter {self.sequence}: election={self.election_id}>'


class ActivityLogEntry(Base):
    """Audit entry consumed by the activity-log collaborator"""
    __tablename__ = 'activity_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    election_id = Column(String(78), nullable=False)
    action = Column(String(64), nullable=False)
    correlation_id = Column(String(64), nullable=False, unique=True)
    transaction_hash = Column(String(66))
    details = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_activity_election', 'election_id', 'created_at'),
    )


def election_key(election_id: int) -> str:
    if isinstance(election_id, bool) or not isinstance(election_id, int) or election_id < 0:
        raise ValueError(f"Election id must be a non-negative int, got {election_id!r}")
    return str(election_id)


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    url = make_url(database_url)
    kwargs = {'echo': echo}
    if url.get_backend_name() == 'sqlite':
        kwargs['connect_args'] = {'check_same_thread': False}
        if url.database in (None, '', ':memory:'):
            # one shared connection so every session sees the same in-memory db
            kwargs['poolclass'] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, **kwargs)


class MirrorStore:
    """SQLAlchemy-backed mirror store"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False, create_schema: bool = True) -> 'MirrorStore':
        store = cls(create_store_engine(database_url, echo=echo))
        if create_schema:
            store.create_schema()
        return store

    def create_schema(self):
        Base.metadata.create_all(self.engine)

    def session(self):
        return self._session_factory()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_identifiers(self, election_id: int) -> List[str]:
        """All identifiers for the election in registration sequence"""
        stmt = (
            select(RegisteredVoter.identifier)
            .where(RegisteredVoter.election_id == election_key(election_id))
            .order_by(RegisteredVoter.sequence)
        )
        with self.session() as session:
            return list(session.scalars(stmt))

    def list_voters(self, election_id: int) -> List[Tuple[str, datetime]]:
        stmt = (
            select(RegisteredVoter.identifier, RegisteredVoter.registered_at)
            .where(RegisteredVoter.election_id == election_key(election_id))
            .order_by(RegisteredVoter.sequence)
        )
        with self.session() as session:
            return [(row.identifier, row.registered_at) for row in session.execute(stmt)]

    def count(self, election_id: int) -> int:
        stmt = select(func.count()).select_from(RegisteredVoter).where(
            RegisteredVoter.election_id == election_key(election_id))
        with self.session() as session:
            return session.scalar(stmt)

    def existing_identifiers(self, election_id: int, identifiers: Iterable[str]) -> Set[str]:
        identifiers = list(identifiers)
        if not identifiers:
            return set()
        stmt = select(RegisteredVoter.identifier).where(
            RegisteredVoter.election_id == election_key(election_id),
            RegisteredVoter.identifier.in_(identifiers),
        )
        with self.session() as session:
            return set(session.scalars(stmt))

    def contains(self, election_id: int, identifier: str) -> bool:
        return identifier in self.existing_identifiers(election_id, [identifier])

    def list_activity(self, election_id: int) -> List[ActivityLogEntry]:
        stmt = (
            select(ActivityLogEntry)
            .where(ActivityLogEntry.election_id == election_key(election_id))
            .order_by(ActivityLogEntry.id)
        )
        with self.session() as session:
            return list(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_voters(self, election_id: int, identifiers: Sequence[str],
                   registered_at: Optional[datetime] = None) -> int:
        """Idempotent insert of a batch in the given order, one transaction.

        Returns the number of newly inserted rows.
        """
        key = election_key(election_id)
        registered_at = registered_at or utcnow()

        with self._session_factory.begin() as session:
            existing = set(session.scalars(
                select(RegisteredVoter.identifier).where(
                    RegisteredVoter.election_id == key,
                    RegisteredVoter.identifier.in_(list(identifiers)),
                )
            ))
            inserted = 0
            for identifier in identifiers:
                if identifier in existing:
                    continue
                session.add(RegisteredVoter(
                    election_id=key, identifier=identifier, registered_at=registered_at))
                existing.add(identifier)
                # flush per row so sequence follows batch order
                session.flush()
                inserted += 1

        logger.debug(f"Mirror insert for election {key}: {inserted} new rows")
        return inserted

    def remove_voter(self, election_id: int, identifier: str) -> bool:
        with self._session_factory.begin() as session:
            result = session.execute(
                delete(RegisteredVoter).where(
                    RegisteredVoter.election_id == election_key(election_id),
                    RegisteredVoter.identifier == identifier,
                )
            )
            return result.rowcount > 0

    def replace_election(self, election_id: int,
                         ordered_voters: Sequence[Tuple[str, Optional[datetime]]]) -> int:
        """Rewrite an election's rows in the given order, one transaction"""
        key = election_key(election_id)
        with self._session_factory.begin() as session:
            session.execute(delete(RegisteredVoter).where(RegisteredVoter.election_id == key))
            for identifier, registered_at in ordered_voters:
                session.add(RegisteredVoter(
                    election_id=key, identifier=identifier,
                    registered_at=registered_at or utcnow()))
                session.flush()
        return len(ordered_voters)

    def add_activity(self, entries: Sequence[ActivityLogEntry]):
        with self._session_factory.begin() as session:
            session.add_all(entries)
