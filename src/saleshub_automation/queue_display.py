"""Merge of the server queue with this client's active processes for display."""

from collections.abc import Sequence
from dataclasses import dataclass

from .config import Config
from .schemas import ActiveProcess, QueueEntryModel
from .timeutils import iso_to_ms, now_ms

PROCESSING = "Processing"


@dataclass(frozen=True)
class DisplayEntry:
    user_id: str
    user_name: str
    process_type: str
    joined_at: str
    status: str
    is_local: bool


def _age_ms(joined_at: str, now: int) -> int | None:
    try:
        return now - iso_to_ms(joined_at)
    except ValueError:
        return None


def merge_queue(
    server_queue: Sequence[QueueEntryModel],
    active_processes: Sequence[ActiveProcess],
    now: int | None = None,
    max_age_seconds: float | None = None,
) -> list[DisplayEntry]:
    """Local active processes first, then server entries of other process types.

    A server entry whose ``processType`` matches a local active process is
    assumed to be that same process and is suppressed, unless the local
    process is itself too old to show. Entries older than
    ``max_age_seconds`` (or with an unparseable timestamp) are dropped
    whatever their source.

    Args:
        server_queue: Entries as returned by ``GET /api/queue``
        active_processes: This client's running processes
        now: Reference time in epoch ms, defaults to the current time
        max_age_seconds: Display cut-off, defaults to DISPLAY_MAX_AGE_SECONDS

    Returns:
        Display rows; the first one is the process currently running
    """
    if now is None:
        now = now_ms()
    if max_age_seconds is None:
        max_age_seconds = Config.DISPLAY_MAX_AGE_SECONDS
    max_age_ms = max_age_seconds * 1000

    def fresh(joined_at: str) -> bool:
        age = _age_ms(joined_at, now)
        return age is not None and age <= max_age_ms

    local_entries = [
        DisplayEntry(
            user_id=process.user_id,
            user_name=process.user_name,
            process_type=process.process_type,
            joined_at=process.started_at,
            status=PROCESSING,
            is_local=True,
        )
        for process in active_processes
        if fresh(process.started_at)
    ]

    local_types = {entry.process_type for entry in local_entries}
    server_entries = [
        DisplayEntry(
            user_id=entry.user_id,
            user_name=entry.user_name,
            process_type=entry.process_type,
            joined_at=entry.joined_at,
            status=entry.status,
            is_local=False,
        )
        for entry in server_queue
        if entry.process_type not in local_types and fresh(entry.joined_at)
    ]

    return [*local_entries, *server_entries]
