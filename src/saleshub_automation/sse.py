"""Client for the job runner's server-sent-event progress stream.

The stream body is a sequence of ``data: <json>`` lines. Each JSON object is a
progress frame ``{progress, step, status}``; a frame with ``final: true`` (or a
``success`` flag) ends the stream successfully and a frame with
``status: "error"`` ends it with a failure.
"""

import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
from pydantic import ValidationError

from .errors import RemoteJobError, StreamError
from .schemas import ProgressFrame

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str, str], None]
CompleteCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]

DATA_PREFIX = "data:"


class SSEProgressClient:
    """Decode one progress stream into callbacks.

    One client instance consumes one response. The client never retries: a
    dropped connection is reported through ``on_error`` and recovery is left
    to the caller.

    Args:
        max_malformed_frames: Consecutive undecodable ``data:`` lines tolerated
            before the stream is treated as broken
    """

    def __init__(self, max_malformed_frames: int = 3):
        self.max_malformed_frames: int = max_malformed_frames
        self._cancelled: bool = False
        self._response: httpx.Response | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def iter_frames(self, response: httpx.Response) -> AsyncIterator[ProgressFrame]:
        """Lazily yield decoded frames in arrival order.

        Raises:
            StreamError: After too many consecutive malformed frames
            httpx.HTTPError: On transport failure
        """
        malformed = 0
        async for line in response.aiter_lines():
            if self._cancelled:
                return
            if not line.startswith(DATA_PREFIX):
                continue

            raw = line[len(DATA_PREFIX):].strip()
            try:
                frame = ProgressFrame.model_validate_json(raw)
            except ValidationError:
                malformed += 1
                logger.warning(f"[SSE] Skipping malformed frame: {raw[:200]!r}")
                if malformed > self.max_malformed_frames:
                    raise StreamError("Received malformed progress data")
                continue

            malformed = 0
            yield frame

    async def consume(
        self,
        response: httpx.Response,
        on_progress: ProgressCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Read the stream to its end, invoking callbacks synchronously.

        ``on_progress`` fires once per non-terminal frame. Exactly one of
        ``on_complete`` or ``on_error`` fires, unless ``cancel`` was called
        first, in which case nothing fires afterwards.

        Args:
            response: Streaming httpx response (opened with ``stream=True``)
            on_progress: Called with (progress, step, status)
            on_complete: Called with the terminal frame's payload
            on_error: Called with a StreamError (RemoteJobError for error frames)
        """
        self._response = response
        logger.debug("[SSE] Connection established, reading stream")
        try:
            if response.is_error:
                raise StreamError(f"Progress stream failed with status {response.status_code}")

            async for frame in self.iter_frames(response):
                if self._cancelled:
                    return
                if frame.is_error:
                    logger.error(f"[SSE] Error frame received: {frame.step or frame.error}")
                    on_error(RemoteJobError(frame.step or frame.error or "Automation failed"))
                    return
                if frame.is_terminal:
                    logger.info("[SSE] Final frame received")
                    on_complete(frame.payload())
                    return

                logger.debug(f"[SSE] Progress: {frame.progress}% - {frame.step}")
                on_progress(frame.progress, frame.step, frame.status)

            if not self._cancelled:
                logger.warning("[SSE] Stream ended without a final frame")
                on_error(StreamError("Progress stream ended before completion"))
        except StreamError as e:
            if not self._cancelled:
                on_error(e)
        except (httpx.HTTPError, httpx.StreamError) as e:
            if not self._cancelled:
                logger.error(f"[SSE] Stream error: {e}")
                on_error(StreamError(f"Progress stream dropped: {e}"))
        finally:
            await response.aclose()

    async def cancel(self) -> None:
        """Suppress further callbacks and close the underlying connection."""
        self._cancelled = True
        if self._response is not None:
            await self._response.aclose()
