"""Conversion between the QueueEntry table and its external JSON model."""

from .models import QueueEntry
from .schemas import QueueEntryModel
from .timeutils import ms_to_iso


def db_entry_to_model(db_entry: QueueEntry) -> QueueEntryModel:
    """Convert SQLAlchemy QueueEntry to the Pydantic QueueEntryModel.

    Returns:
        QueueEntryModel with ``joinedAt`` rendered as ISO-8601
    """
    return QueueEntryModel(
        id=db_entry.id,
        user_id=db_entry.user_id,
        user_name=db_entry.user_name,
        process_type=db_entry.process_type,
        joined_at=ms_to_iso(db_entry.joined_at),
        status=db_entry.status,
    )


def db_entries_to_models(db_entries: list[QueueEntry]) -> list[QueueEntryModel]:
    return [db_entry_to_model(entry) for entry in db_entries]
