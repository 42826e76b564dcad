"""Queue operations behind the HTTP API: list, join, leave.

Positions are recomputed from a freshly fetched ordered list on every call,
never cached. Storage failures degrade to empty snapshots carrying an
advisory ``error`` so callers can render "unknown" instead of crashing.
"""

import logging
from dataclasses import dataclass, field

from .broadcast import Broadcaster, QueueChange, get_broadcaster
from .config import Config
from .errors import QueueStoreError, QueueValidationError
from .queue_store import QueueRepository, position_of
from .schemas import QueueEntryModel
from .timeutils import now_ms

logger = logging.getLogger(__name__)


@dataclass
class QueueSnapshot:
    queue: list[QueueEntryModel] = field(default_factory=list)
    error: str | None = None


@dataclass
class JoinResult:
    position: int
    queue: list[QueueEntryModel] = field(default_factory=list)
    error: str | None = None


@dataclass
class LeaveResult:
    success: bool
    queue: list[QueueEntryModel] = field(default_factory=list)
    error: str | None = None


class QueueService:
    """Stateless queue handlers over an injected QueueRepository.

    Args:
        repository: Storage backend
        broadcaster: Change feed publisher. Defaults to the global broadcaster from Config.
    """

    def __init__(self, repository: QueueRepository, broadcaster: Broadcaster | None = None):
        self.repository: QueueRepository = repository
        self.broadcaster: Broadcaster = broadcaster or get_broadcaster(
            broadcast_type=Config.BROADCAST_TYPE,
            broker=Config.MQTT_BROKER,
            port=Config.MQTT_PORT,
            topic=Config.MQTT_TOPIC,
        )

    def _broadcast(self, event_type: str, user_id: str, process_type: str | None, queue_length: int) -> None:
        change = QueueChange(event_type, user_id, queue_length, process_type)
        if not self.broadcaster.publish_change(change):
            logger.debug(f"Queue feed did not publish {event_type} for {user_id}")

    def list_queue(self) -> QueueSnapshot:
        """Ordered queue. Never raises; a store failure yields an empty, error-flagged snapshot."""
        try:
            return QueueSnapshot(queue=self.repository.list_entries())
        except QueueStoreError as e:
            logger.error(f"Failed to list queue: {e}")
            return QueueSnapshot(queue=[], error="Queue is temporarily unavailable")

    def join(
        self,
        user_id: str | None,
        user_name: str | None = None,
        process_type: str | None = None,
    ) -> JoinResult:
        """Join the queue, or report the current position if already queued.

        Raises:
            QueueValidationError: If ``user_id`` is missing
        """
        if not user_id:
            raise QueueValidationError("User ID is required")

        try:
            entry, created = self.repository.insert_if_absent(
                user_id,
                user_name or Config.DEFAULT_USER_NAME,
                process_type or Config.DEFAULT_PROCESS_TYPE,
            )
            queue = self.repository.list_entries()
        except QueueStoreError as e:
            logger.error(f"Failed to join queue for {user_id}: {e}")
            return JoinResult(position=0, queue=[], error="Failed to join queue")

        position = position_of(queue, user_id)
        if created:
            logger.info(f"{user_id} joined queue for {entry.process_type} at position {position}")
            self._broadcast("joined", user_id, entry.process_type, len(queue))

        return JoinResult(position=position, queue=queue)

    def check_status(self, user_id: str | None) -> int:
        """Current position of an existing entry, -1 if absent. Never inserts.

        Raises:
            QueueValidationError: If ``user_id`` is missing
            QueueStoreError: If the store is unavailable
        """
        if not user_id:
            raise QueueValidationError("User ID is required")
        return position_of(self.repository.list_entries(), user_id)

    def leave(self, user_id: str | None) -> LeaveResult:
        """Remove the entry for ``user_id``. Idempotent.

        Raises:
            QueueValidationError: If ``user_id`` is missing
        """
        if not user_id:
            raise QueueValidationError("User ID is required")

        try:
            removed = self.repository.delete(user_id)
            queue = self.repository.list_entries()
        except QueueStoreError as e:
            logger.error(f"Failed to leave queue for {user_id}: {e}")
            return LeaveResult(success=False, queue=[], error="Failed to leave queue")

        if removed:
            logger.info(f"{user_id} left queue")
            self._broadcast("left", user_id, None, len(queue))

        return LeaveResult(success=True, queue=queue)

    def purge_stale(self, max_age_seconds: float) -> int:
        """Delete entries older than ``max_age_seconds``.

        Not run automatically: crashed clients leave entries behind until an
        operator (or ``utils/purge_queue.py``) removes them.
        """
        cutoff = now_ms() - int(max_age_seconds * 1000)
        removed = self.repository.purge_older_than(cutoff)
        if removed:
            logger.info(f"Purged {removed} stale queue entries")
            self._broadcast("purged", "*", None, len(self.repository.list_entries()))
        return removed
