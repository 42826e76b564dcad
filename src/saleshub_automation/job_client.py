"""Async client for the external job runner.

The runner accepts a job-start POST and answers with a streaming body of
progress frames. It also exposes a status endpoint per job id, a lease
renewal endpoint and a cancel endpoint; the last two are best-effort.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from .errors import JobStartError, JobStatusError
from .schemas import JobStatusReport
from .timeutils import now_ms

logger = logging.getLogger(__name__)

JOB_ID_HEADER = "X-Job-Id"
_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_job_id() -> str:
    """Client-side job id used when the runner does not send ``X-Job-Id``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"job_{now_ms()}_{suffix}"


@dataclass
class JobStream:
    response: httpx.Response
    job_id: str
    job_id_from_server: bool


class JobClient:
    """Start jobs and query their status.

    Args:
        http_client: AsyncClient whose ``base_url`` points at the job runner
    """

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client: httpx.AsyncClient = http_client

    async def start_stream(self, stream_path: str, payload: dict[str, Any]) -> JobStream:
        """POST the job payload and open its progress stream.

        Args:
            stream_path: Runner path, e.g. ``/api/rom/automate/stream``
            payload: Job description (address, carriers, form fields...)

        Returns:
            JobStream holding the open streaming response

        Raises:
            JobStartError: If the runner rejects the job or cannot be reached
        """
        request = self.http_client.build_request(
            "POST",
            stream_path,
            json=payload,
            headers={"Accept": "text/event-stream"},
        )
        try:
            response = await self.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"Failed to reach job runner: {e}")
            raise JobStartError("Failed to start automation") from e

        if response.is_error:
            message = await self._error_message(response)
            await response.aclose()
            raise JobStartError(message)

        header_id = response.headers.get(JOB_ID_HEADER)
        job_id = header_id or generate_job_id()
        logger.info(f"Job {job_id} started on {stream_path}")
        return JobStream(response=response, job_id=job_id, job_id_from_server=header_id is not None)

    @staticmethod
    async def _error_message(response: httpx.Response) -> str:
        fallback = f"Automation failed with status {response.status_code}"
        try:
            _ = await response.aread()
            body = response.json()
        except (httpx.HTTPError, ValueError):
            return fallback
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return fallback

    async def get_status(self, status_path: str) -> JobStatusReport:
        """Fetch the status of one job.

        Args:
            status_path: Runner path for this job, e.g. ``/api/automate/status/job_123``

        Raises:
            JobStatusError: On transport failure, non-OK status or an unusable body
        """
        try:
            response = await self.http_client.get(status_path)
            response.raise_for_status()
            return JobStatusReport.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.error(f"Error checking job status: {e}")
            raise JobStatusError("Failed to check job status") from e

    async def renew_lease(self, job_id: str) -> bool:
        """Tell the runner this client is still watching ``job_id``."""
        return await self._signal(f"/api/jobs/{job_id}/lease")

    async def cancel(self, job_id: str) -> bool:
        """Ask the runner to stop ``job_id``."""
        return await self._signal(f"/api/jobs/{job_id}/cancel")

    async def _signal(self, path: str) -> bool:
        try:
            response = await self.http_client.post(path)
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Job runner signal {path} failed: {e}")
            return False
