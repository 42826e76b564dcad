"""Async client for the queue API, bound to one user identity."""

import logging

import httpx
from pydantic import ValidationError

from .config import Config
from .errors import QueueJoinError
from .schemas import JoinResponse, PositionResponse, QueueEntryModel, QueueListResponse

logger = logging.getLogger(__name__)

QUEUE_PATH = "/api/queue"


class QueueClient:
    """Join, poll and leave the automation queue as ``user_id``.

    Args:
        http_client: AsyncClient whose ``base_url`` points at the queue server
        user_id: Stable per-browser identity (see ``LocalStateStore.get_or_create_user_id``)
    """

    def __init__(self, http_client: httpx.AsyncClient, user_id: str):
        self.http_client: httpx.AsyncClient = http_client
        self.user_id: str = user_id

    async def join(
        self,
        user_name: str = Config.DEFAULT_USER_NAME,
        process_type: str = Config.DEFAULT_PROCESS_TYPE,
    ) -> int:
        """Join the queue and return the zero-based position.

        Raises:
            QueueJoinError: If the server rejects or fails the request
        """
        try:
            response = await self.http_client.post(
                QUEUE_PATH,
                json={"userId": self.user_id, "userName": user_name, "processType": process_type},
            )
            response.raise_for_status()
            return JoinResponse.model_validate(response.json()).position
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.error(f"Queue join error: {e}")
            raise QueueJoinError("Failed to join queue") from e

    async def check_status(self) -> int:
        """Current position, or -1 when unknown (not queued or request failed)."""
        try:
            response = await self.http_client.get(
                f"{QUEUE_PATH}/position", params={"userId": self.user_id}
            )
            response.raise_for_status()
            return PositionResponse.model_validate(response.json()).position
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.error(f"Queue check error: {e}")
            return -1

    async def leave(self) -> bool:
        """Leave the queue. Failures are logged, never raised."""
        try:
            response = await self.http_client.delete(QUEUE_PATH, params={"userId": self.user_id})
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"Queue leave error: {e}")
            return False

    async def list_queue(self) -> list[QueueEntryModel]:
        """Server queue, or an empty list when it cannot be fetched."""
        try:
            response = await self.http_client.get(QUEUE_PATH)
            response.raise_for_status()
            return QueueListResponse.model_validate(response.json()).queue
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.error(f"Failed to fetch queue: {e}")
            return []
