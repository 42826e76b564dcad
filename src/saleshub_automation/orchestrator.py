"""Client-side automation orchestration.

Drives one automation run through the waiting queue and the job runner:

    IDLE -> JOINING_QUEUE -> WAITING_IN_QUEUE -> RUNNING -> COMPLETED | FAILED | ABORTED

Progress, terminal frames, stream faults, status polls and watchdog trips are
all turned into outcomes on one queue; the driver settles the run on the
first terminal outcome, so a run resolves exactly once and anything arriving
afterwards is ignored.

A stream fault is not treated as job failure: the runner may still be
working, so the orchestrator falls back to polling the job status endpoint.
State is persisted to the local store so ``resume`` can pick a run back up
after a restart, by polling status (a dropped stream cannot be reattached).
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from .active_processes import ActiveProcessRegistry
from .config import Config
from .errors import (
    AutomationError,
    FailureKind,
    JobStatusError,
    QueueJoinError,
    RemoteJobError,
    SalesHubError,
)
from .job_client import JobClient, JobStream
from .local_store import LocalStateStore
from .queue_client import QueueClient
from .schemas import AutomationState, QueueInfo
from .sse import SSEProgressClient
from .watchdog import Watchdog

logger = logging.getLogger(__name__)

JOINING_STEP = "Joining queue..."


class AutomationPhase(StrEnum):
    IDLE = "idle"
    JOINING_QUEUE = "joining_queue"
    WAITING_IN_QUEUE = "waiting_in_queue"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class AutomationProfile:
    """Per process type settings.

    Attributes:
        key: Namespace for this profile's persisted keys
        process_type: Queue label, e.g. "ROM Generator"
        stream_path: Job runner path that starts the job and streams progress
        status_path_template: Job status path, formatted with ``job_id``
        start_step: Step label shown while the job starts
        watchdog: Enforce total and stall timeouts
        require_screenshots: Reject a success payload without ``screenshots``
        failure_message: Message for a failure that carries none
    """

    key: str
    process_type: str
    stream_path: str
    status_path_template: str
    start_step: str
    watchdog: bool = False
    require_screenshots: bool = False
    failure_message: str = "Automation failed"

    def status_path(self, job_id: str) -> str:
        return self.status_path_template.format(job_id=job_id)


COVERAGE_PLOT = AutomationProfile(
    key="coverage_plot",
    process_type="Coverage Plot",
    stream_path="/api/automate/stream",
    status_path_template="/api/automate/status/{job_id}",
    start_step="Starting automation...",
    require_screenshots=True,
)

ROM_GENERATOR = AutomationProfile(
    key="rom",
    process_type="ROM Generator",
    stream_path="/api/rom/automate/stream",
    status_path_template="/api/rom/automate/status/{job_id}",
    start_step="Starting ROM automation...",
    watchdog=True,
    failure_message="ROM automation failed",
)


@dataclass(frozen=True)
class AutomationTimings:
    """Orchestrator timers in seconds; defaults come from Config."""

    queue_poll_interval: float = Config.QUEUE_POLL_INTERVAL
    resume_poll_interval: float = Config.RESUME_POLL_INTERVAL
    total_timeout: float = Config.JOB_TOTAL_TIMEOUT
    stall_timeout: float = Config.JOB_STALL_TIMEOUT
    watchdog_check_interval: float = Config.WATCHDOG_CHECK_INTERVAL
    state_expiry: float = Config.STATE_EXPIRY_SECONDS
    max_status_failures: int = Config.MAX_STATUS_FAILURES


OutcomeKind = Literal["complete", "failed", "stream_error", "aborted", "lost", "reset"]


@dataclass
class _Outcome:
    kind: OutcomeKind
    message: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    failure: FailureKind = "failed"


class AutomationOrchestrator:
    """Coordinate queue admission, the job stream and recovery for one profile.

    Args:
        profile: Process type settings (COVERAGE_PLOT, ROM_GENERATOR...)
        queue_client: Queue API client for this user
        job_client: Job runner client
        store: Local persisted state
        active_processes: Registry of this client's running processes
        timings: Timer overrides
        lease_renewal: Renew the job lease on every progress event
        sse_client_factory: Builds one SSE client per job stream

    Concurrent ``start_automation`` calls on one instance are not deduplicated;
    callers are expected to prevent double submission.
    """

    def __init__(
        self,
        profile: AutomationProfile,
        queue_client: QueueClient,
        job_client: JobClient,
        store: LocalStateStore,
        *,
        active_processes: ActiveProcessRegistry | None = None,
        timings: AutomationTimings | None = None,
        lease_renewal: bool = Config.LEASE_RENEWAL_ENABLED,
        sse_client_factory: Callable[[], SSEProgressClient] = SSEProgressClient,
    ):
        self.profile: AutomationProfile = profile
        self.queue_client: QueueClient = queue_client
        self.job_client: JobClient = job_client
        self.store: LocalStateStore = store
        self.active_processes: ActiveProcessRegistry = active_processes or ActiveProcessRegistry(store)
        self.timings: AutomationTimings = timings or AutomationTimings()
        self.lease_renewal: bool = lease_renewal
        self.sse_client_factory: Callable[[], SSEProgressClient] = sse_client_factory

        self._phase: AutomationPhase = AutomationPhase.IDLE
        self._state: AutomationState = AutomationState()
        self._state_key: str = f"{profile.key}_automation_state"
        self._job_key: str = f"{profile.key}_active_job_id"

        self._outcomes: asyncio.Queue[_Outcome] = asyncio.Queue()
        self._settled: bool = False
        self._cancel_requested: asyncio.Event = asyncio.Event()
        self._reset_requested: bool = False
        self._job_id: str | None = None
        self._lease_job_id: str | None = None
        self._sse: SSEProgressClient | None = None
        self._watchdog: Watchdog | None = None
        self._recovering: bool = False
        self._tasks: set[asyncio.Task[Any]] = set()

    # -------------------------------------------------------------------------
    # Public state
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> AutomationPhase:
        return self._phase

    @property
    def job_id(self) -> str | None:
        return self._job_id

    def snapshot(self) -> AutomationState:
        return self._state.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def start_automation(
        self, payload: dict[str, Any], user_name: str = Config.DEFAULT_USER_NAME
    ) -> dict[str, Any]:
        """Queue up, run the job and return its final payload.

        Args:
            payload: Job description sent to the runner
            user_name: Display name shown in the queue

        Returns:
            Terminal success payload from the job runner

        Raises:
            AutomationError: On confirmed failure, watchdog abort, cancellation or lost job
        """
        self._begin_run()
        self._phase = AutomationPhase.JOINING_QUEUE
        self._state = AutomationState(is_loading=True, progress=0, current_step=JOINING_STEP)
        await self._persist()

        try:
            position = await self.queue_client.join(user_name, self.profile.process_type)
            self._raise_if_cancelled()
            self._state.queue_info = QueueInfo(position=position)

            if position > 0:
                self._phase = AutomationPhase.WAITING_IN_QUEUE
                self._state.current_step = _waiting_step(position)
                await self._persist()
                await self._wait_for_turn(user_name)

            self._phase = AutomationPhase.RUNNING
            self._state.current_step = self.profile.start_step
            await self._persist()

            job = await self.job_client.start_stream(self.profile.stream_path, payload)
            if self._cancel_requested.is_set():
                await job.response.aclose()
                _ = await self.job_client.cancel(job.job_id)
                self._raise_if_cancelled()
        except AutomationError as e:
            if not self._reset_requested:
                await self._finish(AutomationPhase.ABORTED, e.message, leave_queue=True)
            raise
        except SalesHubError as e:
            logger.error(f"[{self.profile.process_type}] Automation could not start: {e}")
            message = str(e) or self.profile.failure_message
            await self._finish(AutomationPhase.FAILED, message, leave_queue=True)
            raise AutomationError(message) from e

        await self._attach(job, user_name)
        return await self._drive()

    async def resume(self) -> dict[str, Any] | None:
        """Pick up a run persisted before a restart.

        Only status polling is resumed; the earlier progress stream is gone.

        Returns:
            Final payload if the resumed job completed, None if there was nothing to resume

        Raises:
            AutomationError: If the resumed job failed or was lost
        """
        state = await self.store.load_automation_state(self.timings.state_expiry, key=self._state_key)
        job_id = await self.store.get_item(self._job_key)

        if state is None or not state.is_loading:
            await self._clear_persisted()
            return None

        if not isinstance(job_id, str) or not job_id:
            logger.info(f"[{self.profile.process_type}] Persisted run never started a job; leaving queue")
            _ = await self.queue_client.leave()
            await self.active_processes.remove(self.profile.process_type)
            await self._clear_persisted()
            return None

        logger.info(f"[{self.profile.process_type}] Resuming job {job_id} by status polling")
        self._begin_run()
        self._state = state
        self._phase = AutomationPhase.RUNNING
        self._job_id = job_id
        self._start_watchdog()
        self._recovering = True
        self._spawn(self._poll_job_status(job_id))
        return await self._drive()

    async def cancel(self) -> None:
        """User-initiated cancellation; same teardown as a watchdog abort."""
        if self._phase in (AutomationPhase.JOINING_QUEUE, AutomationPhase.WAITING_IN_QUEUE):
            self._cancel_requested.set()
        elif self._phase is AutomationPhase.RUNNING:
            if self._job_id is None:
                # Job start still in flight; start_automation tears down once it returns
                self._cancel_requested.set()
            else:
                self._put(_Outcome("aborted", message="Automation cancelled", failure="cancelled"))

    async def reset_automation(self) -> None:
        """Clear local state and timers. The server queue is not contacted."""
        self._reset_requested = True
        self._cancel_requested.set()
        self._put(_Outcome("reset", message="Automation was reset", failure="cancelled"))
        await self._stop_background()
        await self._clear_persisted()
        self._state = AutomationState()
        self._phase = AutomationPhase.IDLE
        self._job_id = None

    # -------------------------------------------------------------------------
    # Queue admission
    # -------------------------------------------------------------------------

    def _begin_run(self) -> None:
        self._outcomes = asyncio.Queue()
        self._settled = False
        self._cancel_requested = asyncio.Event()
        self._reset_requested = False
        self._job_id = None
        self._lease_job_id = None
        self._recovering = False

    def _raise_if_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            raise AutomationError("Automation cancelled", "cancelled")

    async def _wait_for_turn(self, user_name: str) -> None:
        """Poll the queue position until it reaches 0.

        A position of -1 means the entry is gone (purged, or left from another
        session) or the poll failed. Joining again is idempotent for a queued
        user and puts a removed one at the back. More than
        ``max_status_failures`` failed joins in a row fail the run.
        """
        rejoin_failures = 0
        while True:
            try:
                _ = await asyncio.wait_for(
                    self._cancel_requested.wait(), timeout=self.timings.queue_poll_interval
                )
            except TimeoutError:
                pass
            self._raise_if_cancelled()

            position = await self.queue_client.check_status()
            self._raise_if_cancelled()
            if self._phase is not AutomationPhase.WAITING_IN_QUEUE:
                return
            if position < 0:
                logger.warning(f"[{self.profile.process_type}] Not found in the queue; joining again")
                try:
                    position = await self.queue_client.join(user_name, self.profile.process_type)
                except QueueJoinError:
                    rejoin_failures += 1
                    if rejoin_failures > self.timings.max_status_failures:
                        raise
                    continue
                rejoin_failures = 0
                self._raise_if_cancelled()
            if position == 0:
                self._state.queue_info = QueueInfo(position=0)
                return
            if position > 0:
                self._state.queue_info = QueueInfo(position=position)
                step = _waiting_step(position)
                if step != self._state.current_step:
                    self._state.current_step = step
                    await self._persist()

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def _attach(self, job: JobStream, user_name: str) -> None:
        self._job_id = job.job_id
        self._lease_job_id = job.job_id if job.job_id_from_server else None
        _ = await self.store.set_item(self._job_key, job.job_id)
        _ = await self.active_processes.add(
            self.profile.process_type, user_name, self.queue_client.user_id
        )

        self._sse = self.sse_client_factory()
        self._spawn(
            self._sse.consume(job.response, self._on_progress, self._on_complete, self._on_stream_error)
        )
        self._start_watchdog()

    def _start_watchdog(self) -> None:
        if not self.profile.watchdog:
            return
        self._watchdog = Watchdog(
            total_timeout=self.timings.total_timeout,
            stall_timeout=self.timings.stall_timeout,
            check_interval=self.timings.watchdog_check_interval,
            on_trip=self._on_watchdog_trip,
        )
        self._watchdog.start()

    def _on_progress(self, progress: float, step: str, status: str) -> None:
        if self._settled or self._phase is not AutomationPhase.RUNNING:
            return
        self._state.progress = progress
        if step:
            self._state.current_step = step
        if self._watchdog is not None:
            self._watchdog.observe(progress)
        self._spawn(self._persist())
        if self.lease_renewal and self._lease_job_id is not None:
            self._spawn(self.job_client.renew_lease(self._lease_job_id))

    def _on_complete(self, payload: dict[str, Any]) -> None:
        self._put(_Outcome("complete", payload=payload))

    def _on_stream_error(self, error: Exception) -> None:
        if isinstance(error, RemoteJobError):
            self._put(_Outcome("failed", message=str(error) or self.profile.failure_message))
        else:
            self._put(_Outcome("stream_error", message=str(error)))

    def _on_watchdog_trip(self, kind: FailureKind, message: str) -> None:
        self._put(_Outcome("aborted", message=message, failure=kind))

    async def _poll_job_status(self, job_id: str) -> None:
        """Poll the job status endpoint until a terminal status is seen."""
        failures = 0
        while True:
            try:
                report = await self.job_client.get_status(self.profile.status_path(job_id))
            except JobStatusError:
                failures += 1
                if failures > self.timings.max_status_failures:
                    self._put(_Outcome("lost", message="Lost connection to the automation job", failure="lost"))
                    return
            else:
                failures = 0
                if report.is_completed:
                    result = report.result
                    payload: dict[str, Any] = dict(result) if isinstance(result, dict) else {"result": result}
                    _ = payload.setdefault("success", True)
                    self._put(_Outcome("complete", payload=payload))
                    return
                if report.is_failed:
                    self._put(_Outcome("failed", message=report.error or self.profile.failure_message))
                    return
                if report.progress is not None:
                    self._on_progress(report.progress, report.step or "", report.status)

            await asyncio.sleep(self.timings.resume_poll_interval)

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def _put(self, outcome: _Outcome) -> None:
        if self._settled:
            return
        if outcome.kind != "stream_error":
            self._settled = True
        self._outcomes.put_nowait(outcome)

    async def _drive(self) -> dict[str, Any]:
        try:
            while True:
                outcome = await self._outcomes.get()
                if outcome.kind != "stream_error":
                    break
                logger.warning(
                    f"[{self.profile.process_type}] Stream lost ({outcome.message}); polling job status"
                )
                if self._job_id is not None and not self._recovering:
                    self._recovering = True
                    self._spawn(self._poll_job_status(self._job_id))
        except asyncio.CancelledError:
            await self._stop_background()
            raise

        return await self._settle(outcome)

    async def _settle(self, outcome: _Outcome) -> dict[str, Any]:
        if outcome.kind == "reset":
            raise AutomationError(outcome.message, outcome.failure)

        if outcome.kind == "complete":
            payload = outcome.payload
            if payload.get("success") is False:
                message = str(payload.get("error") or self.profile.failure_message)
                await self._finish(AutomationPhase.FAILED, message, leave_queue=True)
                raise AutomationError(message)
            if self.profile.require_screenshots and not payload.get("screenshots"):
                await self._finish(AutomationPhase.FAILED, "No screenshots received", leave_queue=True)
                raise AutomationError("No screenshots received")
            self._state.progress = 100
            await self._finish(AutomationPhase.COMPLETED, None, leave_queue=True)
            logger.info(f"[{self.profile.process_type}] Automation completed")
            return payload

        if outcome.kind == "aborted":
            if self._job_id is not None:
                _ = await self.job_client.cancel(self._job_id)
            # Watchdog trips are failures; only a user cancel ends ABORTED
            phase = AutomationPhase.ABORTED if outcome.failure == "cancelled" else AutomationPhase.FAILED
            await self._finish(phase, outcome.message, leave_queue=True)
        elif outcome.kind == "lost":
            # The job may still be running server-side; keep its queue entry
            await self._finish(AutomationPhase.FAILED, outcome.message, leave_queue=False)
        else:
            await self._finish(AutomationPhase.FAILED, outcome.message, leave_queue=True)

        logger.error(f"[{self.profile.process_type}] Automation {outcome.failure}: {outcome.message}")
        raise AutomationError(outcome.message, outcome.failure)

    async def _finish(self, phase: AutomationPhase, error: str | None, *, leave_queue: bool) -> None:
        self._settled = True
        await self._stop_background()
        if leave_queue:
            _ = await self.queue_client.leave()
        await self.active_processes.remove(self.profile.process_type)
        await self._clear_persisted()
        self._state.is_loading = False
        self._state.error = error
        self._phase = phase

    async def _stop_background(self) -> None:
        if self._watchdog is not None:
            await self._watchdog.stop()
            self._watchdog = None

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            _ = task.cancel()
        _ = await asyncio.gather(*pending, return_exceptions=True)

        if self._sse is not None:
            await self._sse.cancel()
            self._sse = None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _persist(self) -> None:
        _ = await self.store.save_automation_state(self._state, key=self._state_key)

    async def _clear_persisted(self) -> None:
        await self.store.clear_automation_state(key=self._state_key)
        _ = await self.store.remove_item(self._job_key)


def _waiting_step(position: int) -> str:
    return f"Waiting in queue... Position: {position + 1}"
