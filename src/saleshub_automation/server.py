"""Queue server entry point (``saleshub-queue`` console script)."""

import argparse
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .api import create_app
from .broadcast import shutdown_broadcaster
from .config import Config
from .database import create_db_engine, create_session_factory
from .queue_service import QueueService
from .queue_store import SQLAlchemyQueueRepository

logger = logging.getLogger("saleshub-queue")


def build_app(database_url: str | None = None) -> FastAPI:
    """Wire engine, repository and service into the queue API."""
    engine = create_db_engine(database_url or Config.QUEUE_DATABASE_URL)
    repository = SQLAlchemyQueueRepository(create_session_factory(engine))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        shutdown_broadcaster()
        engine.dispose()

    return create_app(QueueService(repository), lifespan=lifespan)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the SalesHub automation queue server")
    parser.add_argument("--host", default=Config.SERVER_HOST)
    parser.add_argument("--port", type=int, default=Config.SERVER_PORT)
    parser.add_argument("--database-url", default=Config.QUEUE_DATABASE_URL)
    args = parser.parse_args()

    logging.basicConfig(level=Config.LOG_LEVEL)
    logger.info(f"Queue server starting on {args.host}:{args.port}")

    uvicorn.run(
        build_app(args.database_url),
        host=args.host,
        port=args.port,
        log_level=Config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
