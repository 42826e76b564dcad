"""Automation queue and orchestration for SalesHub."""

# Public API - Configuration and errors
from .config import Config
from .errors import AutomationError, QueueStoreError, QueueValidationError, StreamError

# Public API - Queue server side
from .queue_service import QueueService
from .queue_store import InMemoryQueueRepository, QueueRepository, SQLAlchemyQueueRepository

# Public API - Automation client side
from .automation_client import AutomationClient
from .local_store import LocalStateStore
from .orchestrator import (
    COVERAGE_PLOT,
    ROM_GENERATOR,
    AutomationOrchestrator,
    AutomationPhase,
    AutomationProfile,
    AutomationTimings,
)
from .queue_display import merge_queue

__all__ = [
    # Configuration
    "Config",
    # Errors
    "AutomationError",
    "QueueStoreError",
    "QueueValidationError",
    "StreamError",
    # Queue server
    "QueueService",
    "QueueRepository",
    "SQLAlchemyQueueRepository",
    "InMemoryQueueRepository",
    # Automation client
    "AutomationClient",
    "LocalStateStore",
    "AutomationOrchestrator",
    "AutomationPhase",
    "AutomationProfile",
    "AutomationTimings",
    "COVERAGE_PLOT",
    "ROM_GENERATOR",
    "merge_queue",
]
