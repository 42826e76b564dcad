from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
from collections.abc import Callable
from pathlib import Path
from typing import Any, Final

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from .schemas import AutomationState
from .timeutils import now_ms

logger = logging.getLogger(__name__)

AUTOMATION_STATE_KEY: Final[str] = "automation_state"
ACTIVE_JOB_ID_KEY: Final[str] = "active_job_id"
ACTIVE_PROCESSES_KEY: Final[str] = "active_processes"
LAST_ACTIVITY_KEY: Final[str] = "last_activity"
USER_ID_KEY: Final[str] = "automation_user_id"

_ID_ALPHABET: Final[str] = string.ascii_lowercase + string.digits


class LocalStateStore:
    """Durable client-side key/value store backed by one JSON file.

    Plays the part browser local storage plays for the web client: it keeps
    in-flight automation state across restarts. Persistence is best-effort;
    read and write failures are logged and never raised.
    """

    def __init__(self, path: str | None = None):
        """
        Initialize the store.

        Args:
            path: JSON file location. If None, uses LOCAL_STATE_PATH from config.
        """
        if path is None:
            from .config import Config

            path = Config.LOCAL_STATE_PATH

        self.path: Path = Path(path)
        self._lock: asyncio.Lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Raw key/value access
    # -------------------------------------------------------------------------

    async def _read_all(self) -> dict[str, Any]:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning(f"Failed to read local state {self.path}: {e}")
            return {}

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding corrupt local state {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    async def _write_all(self, data: dict[str, Any]) -> bool:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                _ = await f.write(json.dumps(data))
            await aiofiles.os.replace(tmp_path, self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write local state {self.path}: {e}")
            return False

    async def get_item(self, key: str) -> Any | None:
        async with self._lock:
            return (await self._read_all()).get(key)

    async def set_item(self, key: str, value: Any) -> bool:
        async with self._lock:
            data = await self._read_all()
            data[key] = value
            return await self._write_all(data)

    async def update_item(self, key: str, update: Callable[[Any | None], Any]) -> bool:
        """Replace the value at ``key`` with ``update(current)`` under one lock hold."""
        async with self._lock:
            data = await self._read_all()
            data[key] = update(data.get(key))
            return await self._write_all(data)

    async def remove_item(self, key: str) -> bool:
        async with self._lock:
            data = await self._read_all()
            if key not in data:
                return True
            del data[key]
            return await self._write_all(data)

    # -------------------------------------------------------------------------
    # Automation state
    # -------------------------------------------------------------------------

    async def save_automation_state(
        self, state: AutomationState, key: str = AUTOMATION_STATE_KEY
    ) -> bool:
        """Persist ``state``, stamping its ``timestamp`` with the write time."""
        stamped = state.model_copy(update={"timestamp": now_ms()})
        return await self.set_item(key, stamped.to_json_dict())

    async def load_automation_state(
        self, max_age_seconds: float, key: str = AUTOMATION_STATE_KEY
    ) -> AutomationState | None:
        """Load persisted state if it is younger than ``max_age_seconds``.

        Expired or unreadable state is removed and None is returned.
        """
        raw = await self.get_item(key)
        if raw is None:
            return None

        try:
            state = AutomationState.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable automation state: {e}")
            _ = await self.remove_item(key)
            return None

        if now_ms() - state.timestamp > max_age_seconds * 1000:
            logger.info("Discarding expired automation state")
            _ = await self.remove_item(key)
            return None
        return state

    async def clear_automation_state(self, key: str = AUTOMATION_STATE_KEY) -> None:
        _ = await self.remove_item(key)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def get_or_create_user_id(self) -> str:
        """Cached per-installation user id, created as ``user_<9 chars>`` on first use."""
        user_id = await self.get_item(USER_ID_KEY)
        if isinstance(user_id, str) and user_id:
            return user_id

        user_id = "user_" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
        _ = await self.set_item(USER_ID_KEY, user_id)
        return user_id
