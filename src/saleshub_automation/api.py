"""HTTP routes for the automation waiting queue.

    GET    /api/queue                    -> {"queue": [...]}
    POST   /api/queue                    -> {"position": n, "queue": [...]}
    DELETE /api/queue?userId=...         -> {"success": true, "queue": [...]}
    GET    /api/queue/position?userId=.. -> {"position": n}
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import QueueStoreError, QueueValidationError
from .queue_service import QueueService
from .schemas import (
    JoinRequest,
    JoinResponse,
    LeaveResponse,
    PositionResponse,
    QueueListResponse,
)

logger = logging.getLogger(__name__)

Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]


def _json(model: JoinResponse | LeaveResponse | QueueListResponse | PositionResponse, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        model.model_dump(mode="json", by_alias=True, exclude_none=True),
        status_code=status_code,
    )


def create_app(service: QueueService, lifespan: Lifespan | None = None) -> FastAPI:
    """Build the queue API around a QueueService.

    Args:
        service: Queue operations bound to a repository and broadcaster
        lifespan: Optional startup/shutdown context for the application

    Returns:
        FastAPI application
    """
    app = FastAPI(title="SalesHub Automation Queue", lifespan=lifespan)
    app.state.queue_service = service

    @app.exception_handler(QueueValidationError)
    async def _validation_error(request: Request, exc: QueueValidationError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def _malformed_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"Malformed queue request: {exc.errors()}")
        return JSONResponse({"error": "User ID is required"}, status_code=400)

    @app.get("/api/queue")
    def list_queue() -> JSONResponse:
        snapshot = service.list_queue()
        return _json(QueueListResponse(queue=snapshot.queue, error=snapshot.error))

    @app.post("/api/queue")
    def join_queue(body: JoinRequest) -> JSONResponse:
        result = service.join(body.user_id, body.user_name, body.process_type)
        response = JoinResponse(position=result.position, queue=result.queue, error=result.error)
        return _json(response, status_code=500 if result.error else 200)

    @app.delete("/api/queue")
    def leave_queue(user_id: str | None = Query(default=None, alias="userId")) -> JSONResponse:
        result = service.leave(user_id)
        response = LeaveResponse(success=result.success, queue=result.queue, error=result.error)
        return _json(response, status_code=500 if result.error else 200)

    @app.get("/api/queue/position")
    def queue_position(user_id: str | None = Query(default=None, alias="userId")) -> JSONResponse:
        try:
            position = service.check_status(user_id)
        except QueueStoreError as e:
            logger.error(f"Failed to check queue position: {e}")
            return JSONResponse({"error": "Queue is temporarily unavailable", "position": -1}, status_code=500)
        return _json(PositionResponse(position=position))

    return app
