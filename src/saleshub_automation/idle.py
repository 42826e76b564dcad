"""Idle session tracking on top of the local state store."""

import logging

from .config import Config
from .local_store import LAST_ACTIVITY_KEY, LocalStateStore
from .timeutils import now_ms

logger = logging.getLogger(__name__)

THROTTLE_SECONDS = 10.0


class IdleTracker:
    """Detect a session left idle longer than ``timeout_seconds``.

    Activity timestamps are written at most once per ``throttle_seconds``.
    Once expiry has been reported the tracker stays expired until ``reset``.
    """

    def __init__(
        self,
        store: LocalStateStore,
        timeout_seconds: float | None = None,
        throttle_seconds: float = THROTTLE_SECONDS,
    ):
        self.store: LocalStateStore = store
        self.timeout_ms: int = int((timeout_seconds or Config.IDLE_TIMEOUT_SECONDS) * 1000)
        self.throttle_ms: int = int(throttle_seconds * 1000)
        self._last_write: int = 0
        self._timed_out: bool = False

    async def _last_activity(self) -> int | None:
        value = await self.store.get_item(LAST_ACTIVITY_KEY)
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    async def start(self) -> bool:
        """Begin tracking. Returns True if the stored session had already expired."""
        self._timed_out = False
        if await self.check_expired():
            return True
        now = now_ms()
        if await self._last_activity() is None:
            _ = await self.store.set_item(LAST_ACTIVITY_KEY, str(now))
        self._last_write = now
        return False

    async def record_activity(self) -> None:
        if self._timed_out:
            return
        now = now_ms()
        if now - self._last_write >= self.throttle_ms:
            self._last_write = now
            _ = await self.store.set_item(LAST_ACTIVITY_KEY, str(now))

    async def check_expired(self) -> bool:
        """True exactly once when the last activity is older than the timeout."""
        if self._timed_out:
            return False
        last = await self._last_activity()
        if last is not None and now_ms() - last >= self.timeout_ms:
            logger.info("Session idle timeout reached")
            self._timed_out = True
            await self.clear()
            return True
        return False

    async def clear(self) -> None:
        _ = await self.store.remove_item(LAST_ACTIVITY_KEY)

    def reset(self) -> None:
        self._timed_out = False
        self._last_write = 0
