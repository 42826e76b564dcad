"""Locally known running automations, at most one per process type."""

import logging
import uuid
from typing import Any

from pydantic import ValidationError

from .local_store import ACTIVE_PROCESSES_KEY, LocalStateStore
from .schemas import ActiveProcess
from .timeutils import ms_to_iso, now_ms

logger = logging.getLogger(__name__)


def _parse(raw: Any) -> list[ActiveProcess]:
    if not isinstance(raw, list):
        return []

    processes: list[ActiveProcess] = []
    for item in raw:
        try:
            processes.append(ActiveProcess.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping unreadable active process: {e}")
    return processes


def _without(raw: Any, process_type: str) -> list[ActiveProcess]:
    return [p for p in _parse(raw) if p.process_type != process_type]


def _dump(processes: list[ActiveProcess]) -> list[dict[str, Any]]:
    return [process.to_json_dict() for process in processes]


class ActiveProcessRegistry:
    """Persisted list of this client's active processes.

    Starting a process of a type that is already listed replaces the old entry.
    Updates are applied atomically in the store, so orchestrators sharing one
    registry never drop each other's entries.
    """

    def __init__(self, store: LocalStateStore):
        self.store: LocalStateStore = store

    async def list_processes(self) -> list[ActiveProcess]:
        return _parse(await self.store.get_item(ACTIVE_PROCESSES_KEY))

    async def add(self, process_type: str, user_name: str, user_id: str) -> ActiveProcess:
        process = ActiveProcess(
            id=uuid.uuid4().hex,
            process_type=process_type,
            user_name=user_name,
            user_id=user_id,
            started_at=ms_to_iso(now_ms()),
        )
        _ = await self.store.update_item(
            ACTIVE_PROCESSES_KEY, lambda raw: _dump([*_without(raw, process_type), process])
        )
        return process

    async def remove(self, process_type: str) -> None:
        _ = await self.store.update_item(
            ACTIVE_PROCESSES_KEY, lambda raw: _dump(_without(raw, process_type))
        )

    async def clear(self) -> None:
        _ = await self.store.remove_item(ACTIVE_PROCESSES_KEY)
