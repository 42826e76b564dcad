"""Exception hierarchy shared by the queue server and automation clients."""

from typing import Literal

FailureKind = Literal["failed", "timeout", "stall", "cancelled", "lost"]


class SalesHubError(Exception):
    """Base class for all errors raised by saleshub_automation."""


# -------------------------------------------------------------------------
# Queue
# -------------------------------------------------------------------------


class QueueError(SalesHubError):
    pass


class QueueValidationError(QueueError):
    """Request rejected before touching the store (e.g. missing user id)."""


class QueueStoreError(QueueError):
    """Backing store unreachable or its schema is missing."""


class QueueJoinError(QueueError):
    """Queue API refused or failed a join request."""


# -------------------------------------------------------------------------
# Job runner
# -------------------------------------------------------------------------


class JobError(SalesHubError):
    pass


class JobStartError(JobError):
    """Job runner rejected the start request."""


class JobStatusError(JobError):
    """Job status endpoint failed or returned an unusable body."""


class StreamError(SalesHubError):
    """Progress stream dropped, returned a bad status or ended early.

    The job may still be running server-side.
    """


class RemoteJobError(StreamError):
    """The job runner sent an error frame: the job has definitely failed."""


# -------------------------------------------------------------------------
# Orchestration
# -------------------------------------------------------------------------


class AutomationError(SalesHubError):
    """User-facing automation failure.

    Args:
        message: Short message safe to show to the user
        kind: Failure category; ``timeout`` and ``stall`` come from the watchdog
    """

    def __init__(self, message: str, kind: FailureKind = "failed"):
        super().__init__(message)
        self.message: str = message
        self.kind: FailureKind = kind
