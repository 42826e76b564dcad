"""Timer guard that trips when a job runs too long or stops making progress."""

import asyncio
import logging
import time
from collections.abc import Callable

from .errors import FailureKind

logger = logging.getLogger(__name__)

TripCallback = Callable[[FailureKind, str], None]


def describe_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"


class Watchdog:
    """Checks elapsed time and progress movement every ``check_interval`` seconds.

    Trips at most once, with kind ``timeout`` when ``total_timeout`` has elapsed
    since ``start`` or ``stall`` when the progress value has not changed for
    ``stall_timeout``. The callback runs synchronously inside the watchdog task.
    """

    def __init__(
        self,
        total_timeout: float,
        stall_timeout: float,
        check_interval: float,
        on_trip: TripCallback,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total_timeout: float = total_timeout
        self.stall_timeout: float = stall_timeout
        self.check_interval: float = check_interval
        self.on_trip: TripCallback = on_trip
        self.clock: Callable[[], float] = clock

        self._started_at: float = 0.0
        self._last_change_at: float = 0.0
        self._last_progress: float | None = None
        self._tripped: bool = False
        self._task: asyncio.Task[None] | None = None

    @property
    def tripped(self) -> bool:
        return self._tripped

    def start(self) -> None:
        self._started_at = self._last_change_at = self.clock()
        self._task = asyncio.create_task(self._run())

    def observe(self, progress: float) -> None:
        """Record a progress value; only a changed value resets the stall window."""
        if progress != self._last_progress:
            self._last_progress = progress
            self._last_change_at = self.clock()

    def check(self) -> tuple[FailureKind, str] | None:
        now = self.clock()
        if now - self._started_at >= self.total_timeout:
            return "timeout", (
                f"Automation timed out after {describe_duration(self.total_timeout)}"
            )
        if now - self._last_change_at >= self.stall_timeout:
            return "stall", (
                f"Automation stalled: no progress for {describe_duration(self.stall_timeout)}"
            )
        return None

    async def _run(self) -> None:
        while not self._tripped:
            await asyncio.sleep(self.check_interval)
            trip = self.check()
            if trip is not None:
                self._tripped = True
                kind, message = trip
                logger.warning(f"Watchdog tripped ({kind}): {message}")
                self.on_trip(kind, message)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        _ = task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
