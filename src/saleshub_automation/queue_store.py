"""Queue store implementations.

This module provides the storage side of the automation waiting queue:

- ``QueueRepository``: abstract interface the queue service is written against
- ``SQLAlchemyQueueRepository``: persistent table, survives restarts and can be
  shared by several server processes
- ``InMemoryQueueRepository``: process-local list for tests and development

Joins are atomic conditional inserts keyed by ``user_id``: the unique
constraint (or the lock, in memory) guarantees that two concurrent joins from
the same user produce a single entry.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing_extensions import override

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import QueueStoreError
from .models import QueueEntry
from .queue_translator import db_entries_to_models, db_entry_to_model
from .schemas import QueueEntryModel
from .timeutils import ms_to_iso, now_ms

WAITING = "Waiting"


def position_of(entries: Sequence[QueueEntryModel], user_id: str) -> int:
    """Zero-based rank of ``user_id`` in an ordered queue, or -1 when absent."""
    for index, entry in enumerate(entries):
        if entry.user_id == user_id:
            return index
    return -1


class QueueRepository(ABC):
    """Storage interface for queue entries, ordered by join time."""

    @abstractmethod
    def list_entries(self) -> list[QueueEntryModel]:
        """Return all entries ordered by ``joinedAt`` ascending (ties by insertion)."""

    @abstractmethod
    def get_entry(self, user_id: str) -> QueueEntryModel | None:
        """Return the entry for ``user_id`` or None."""

    @abstractmethod
    def insert_if_absent(
        self, user_id: str, user_name: str, process_type: str
    ) -> tuple[QueueEntryModel, bool]:
        """Insert a Waiting entry unless ``user_id`` already has one.

        Returns:
            (entry, created) where ``created`` is False if the entry already existed
        """

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        """Delete the entry for ``user_id``. Returns False if there was none."""

    @abstractmethod
    def purge_older_than(self, cutoff_ms: int) -> int:
        """Delete entries joined before ``cutoff_ms``. Returns the number removed."""


class SQLAlchemyQueueRepository(QueueRepository):
    """SQLAlchemy implementation of QueueRepository.

    Example:
        engine = create_engine("sqlite:///queue.db")
        Base.metadata.create_all(engine)
        repository = SQLAlchemyQueueRepository(sessionmaker(bind=engine))

        entry, created = repository.insert_if_absent("user_abc", "Alice", "ROM Generator")
        queue = repository.list_entries()
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        """Initialize repository with session factory.

        Args:
            session_factory: SQLAlchemy session factory (sessionmaker)
        """
        self.session_factory: sessionmaker[Session] = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise QueueStoreError(f"Queue store unavailable: {e}") from e

    @override
    def list_entries(self) -> list[QueueEntryModel]:
        with self._session() as session:
            stmt = select(QueueEntry).order_by(QueueEntry.joined_at, QueueEntry.id)
            return db_entries_to_models(list(session.execute(stmt).scalars()))

    @override
    def get_entry(self, user_id: str) -> QueueEntryModel | None:
        with self._session() as session:
            stmt = select(QueueEntry).where(QueueEntry.user_id == user_id)
            db_entry = session.execute(stmt).scalar_one_or_none()

            if db_entry:
                return db_entry_to_model(db_entry)
            return None

    @override
    def insert_if_absent(
        self, user_id: str, user_name: str, process_type: str
    ) -> tuple[QueueEntryModel, bool]:
        """Insert a Waiting entry unless ``user_id`` already has one.

        The existence check is only a fast path. A concurrent insert for the
        same user loses on the unique constraint and falls back to reading the
        winner's row, so no duplicate can be created.

        Args:
            user_id: Stable per-browser identity
            user_name: Display name
            process_type: Automation process label

        Returns:
            (entry, created)
        """
        with self._session() as session:
            stmt = select(QueueEntry).where(QueueEntry.user_id == user_id)
            existing = session.execute(stmt).scalar_one_or_none()
            if existing is not None:
                return db_entry_to_model(existing), False

            db_entry = QueueEntry(
                user_id=user_id,
                user_name=user_name,
                process_type=process_type,
                joined_at=now_ms(),
                status=WAITING,
            )
            session.add(db_entry)
            try:
                session.commit()
            except IntegrityError:
                # Lost the race against another join for the same user
                session.rollback()
                winner = session.execute(stmt).scalar_one()
                return db_entry_to_model(winner), False

            session.refresh(db_entry)
            return db_entry_to_model(db_entry), True

    @override
    def delete(self, user_id: str) -> bool:
        with self._session() as session:
            stmt = delete(QueueEntry).where(QueueEntry.user_id == user_id).returning(QueueEntry.id)
            deleted_ids = list(session.execute(stmt).scalars())
            session.commit()
            return bool(deleted_ids)

    @override
    def purge_older_than(self, cutoff_ms: int) -> int:
        with self._session() as session:
            stmt = delete(QueueEntry).where(QueueEntry.joined_at < cutoff_ms).returning(QueueEntry.id)
            deleted_ids = list(session.execute(stmt).scalars())
            session.commit()
            return len(deleted_ids)


@dataclass
class _MemoryRow:
    id: int
    user_id: str
    user_name: str
    process_type: str
    joined_at: int
    status: str

    def to_model(self) -> QueueEntryModel:
        return QueueEntryModel(
            id=self.id,
            user_id=self.user_id,
            user_name=self.user_name,
            process_type=self.process_type,
            joined_at=ms_to_iso(self.joined_at),
            status=self.status,
        )


class InMemoryQueueRepository(QueueRepository):
    """Process-local QueueRepository. State is lost when the process exits."""

    def __init__(self) -> None:
        self._rows: list[_MemoryRow] = []
        self._next_id: int = 1
        self._lock: threading.Lock = threading.Lock()

    def _ordered(self) -> list[_MemoryRow]:
        return sorted(self._rows, key=lambda row: (row.joined_at, row.id))

    @override
    def list_entries(self) -> list[QueueEntryModel]:
        with self._lock:
            return [row.to_model() for row in self._ordered()]

    @override
    def get_entry(self, user_id: str) -> QueueEntryModel | None:
        with self._lock:
            for row in self._rows:
                if row.user_id == user_id:
                    return row.to_model()
            return None

    @override
    def insert_if_absent(
        self, user_id: str, user_name: str, process_type: str
    ) -> tuple[QueueEntryModel, bool]:
        with self._lock:
            for row in self._rows:
                if row.user_id == user_id:
                    return row.to_model(), False

            row = _MemoryRow(
                id=self._next_id,
                user_id=user_id,
                user_name=user_name,
                process_type=process_type,
                joined_at=now_ms(),
                status=WAITING,
            )
            self._next_id += 1
            self._rows.append(row)
            return row.to_model(), True

    @override
    def delete(self, user_id: str) -> bool:
        with self._lock:
            remaining = [row for row in self._rows if row.user_id != user_id]
            removed = len(remaining) != len(self._rows)
            self._rows = remaining
            return removed

    @override
    def purge_older_than(self, cutoff_ms: int) -> int:
        with self._lock:
            remaining = [row for row in self._rows if row.joined_at >= cutoff_ms]
            removed = len(self._rows) - len(remaining)
            self._rows = remaining
            return removed
