"""Client-side wiring: HTTP clients, identity, orchestrators and the queue view."""

import httpx

from .active_processes import ActiveProcessRegistry
from .config import Config
from .idle import IdleTracker
from .job_client import JobClient
from .local_store import LocalStateStore
from .orchestrator import AutomationOrchestrator, AutomationProfile, AutomationTimings
from .queue_client import QueueClient
from .queue_display import DisplayEntry, merge_queue

QUEUE_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
# Progress streams can stay silent for minutes; the watchdog enforces limits
RUNNER_TIMEOUT = httpx.Timeout(30.0, connect=10.0, read=None)


class AutomationClient:
    """Everything one installation needs to run automations.

    Example:
        async with AutomationClient() as client:
            rom = await client.orchestrator(ROM_GENERATOR)
            result = await rom.start_automation(payload, "Alice")

    Args:
        queue_http: Client for the queue API. Defaults to one on QUEUE_API_URL.
        runner_http: Client for the job runner. Defaults to one on JOB_RUNNER_URL.
        store: Local persisted state. Defaults to LOCAL_STATE_PATH.
    """

    def __init__(
        self,
        queue_http: httpx.AsyncClient | None = None,
        runner_http: httpx.AsyncClient | None = None,
        store: LocalStateStore | None = None,
    ):
        self.queue_http: httpx.AsyncClient = queue_http or httpx.AsyncClient(
            base_url=Config.QUEUE_API_URL, timeout=QUEUE_TIMEOUT
        )
        self.runner_http: httpx.AsyncClient = runner_http or httpx.AsyncClient(
            base_url=Config.JOB_RUNNER_URL, timeout=RUNNER_TIMEOUT
        )
        self.store: LocalStateStore = store or LocalStateStore()
        self.active_processes: ActiveProcessRegistry = ActiveProcessRegistry(self.store)
        self.idle: IdleTracker = IdleTracker(self.store)

    async def queue_client(self) -> QueueClient:
        return QueueClient(self.queue_http, await self.store.get_or_create_user_id())

    async def orchestrator(
        self, profile: AutomationProfile, timings: AutomationTimings | None = None
    ) -> AutomationOrchestrator:
        return AutomationOrchestrator(
            profile,
            await self.queue_client(),
            JobClient(self.runner_http),
            self.store,
            active_processes=self.active_processes,
            timings=timings,
        )

    async def display_queue(self) -> list[DisplayEntry]:
        """Server queue merged with this installation's running processes."""
        queue_client = await self.queue_client()
        server_queue = await queue_client.list_queue()
        return merge_queue(server_queue, await self.active_processes.list_processes())

    async def aclose(self) -> None:
        await self.queue_http.aclose()
        await self.runner_http.aclose()

    async def __aenter__(self) -> "AutomationClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
