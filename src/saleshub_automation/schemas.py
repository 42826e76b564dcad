"""
Pydantic schemas for the queue API, the progress stream and local state.
Shared between the queue server and the automation clients.

All models serialize with camelCase keys (``userId``, ``joinedAt``...) so the
JSON shape matches what browser clients already exchange.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# -------------------------------------------------------------------------
# Queue API
# -------------------------------------------------------------------------


class QueueEntryModel(CamelModel):
    """External shape of a queue entry: ``id, userId, userName, processType, joinedAt, status``."""

    id: int | str
    user_id: str
    user_name: str = "Guest"
    process_type: str = "Coverage Plot"
    joined_at: str
    status: str = "Waiting"


class JoinRequest(CamelModel):
    user_id: str | None = None
    user_name: str | None = None
    process_type: str | None = None


class QueueListResponse(CamelModel):
    queue: list[QueueEntryModel] = Field(default_factory=list)
    error: str | None = None


class JoinResponse(CamelModel):
    position: int
    queue: list[QueueEntryModel] = Field(default_factory=list)
    error: str | None = None


class LeaveResponse(CamelModel):
    success: bool
    queue: list[QueueEntryModel] = Field(default_factory=list)
    error: str | None = None


class PositionResponse(CamelModel):
    position: int


# -------------------------------------------------------------------------
# Job runner stream and status
# -------------------------------------------------------------------------


class ProgressFrame(CamelModel):
    """One decoded ``data:`` frame from the job progress stream.

    Terminal frames carry ``final: true`` or a ``success`` flag; any other
    keys (``screenshots``, ``excelFiles``...) are preserved as extras.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    progress: float = 0
    step: str = ""
    status: str = ""
    final: bool = False
    success: bool | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.final or self.success is not None

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    def payload(self) -> dict[str, Any]:
        """Frame contents as a plain dict, extras included, ``None`` values dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatusReport(CamelModel):
    """Body of the job status endpoint, used only for reconnection."""

    status: str
    progress: float | None = None
    step: str | None = None
    result: JsonValue = None
    error: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.status in ("failed", "error")

    @property
    def is_terminal(self) -> bool:
        return self.is_completed or self.is_failed


# -------------------------------------------------------------------------
# Client-local persisted state
# -------------------------------------------------------------------------


class QueueInfo(CamelModel):
    position: int


class AutomationState(CamelModel):
    """Snapshot of an in-flight automation, persisted for reload survival."""

    is_loading: bool = False
    progress: float = 0
    current_step: str = ""
    error: str | None = None
    queue_info: QueueInfo | None = None
    timestamp: int = 0


class ActiveProcess(CamelModel):
    id: str
    process_type: str
    user_name: str = "Guest"
    user_id: str
    started_at: str
