"""Shared test fixtures for saleshub_automation tests."""

from __future__ import annotations

import os
import tempfile

# Keep Config from touching the real home directory
_ = os.environ.setdefault("SALESHUB_DIR", tempfile.mkdtemp(prefix="saleshub_test_"))

from typing import TYPE_CHECKING

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from saleshub_automation.api import create_app
from saleshub_automation.broadcast import NoOpBroadcaster
from saleshub_automation.database import create_db_engine, create_session_factory
from saleshub_automation.local_store import LocalStateStore
from saleshub_automation.queue_service import QueueService
from saleshub_automation.queue_store import InMemoryQueueRepository, SQLAlchemyQueueRepository

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.engine import Engine


@pytest.fixture
def in_memory_engine() -> Generator[Engine, None, None]:
    """Create SQLite in-memory engine shared across threads.

    Yields:
        Engine: SQLAlchemy engine with in-memory SQLite database
    """
    engine = create_db_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(in_memory_engine: Engine) -> sessionmaker[Session]:
    """Create session factory bound to in-memory engine, tables created.

    Args:
        in_memory_engine: SQLAlchemy engine fixture

    Returns:
        sessionmaker: Factory for creating database sessions
    """
    return create_session_factory(in_memory_engine)


@pytest.fixture
def sql_repository(session_factory: sessionmaker[Session]) -> SQLAlchemyQueueRepository:
    return SQLAlchemyQueueRepository(session_factory)


@pytest.fixture(params=["sqlalchemy", "memory"])
def repository(
    request: pytest.FixtureRequest, session_factory: sessionmaker[Session]
) -> SQLAlchemyQueueRepository | InMemoryQueueRepository:
    """Both queue repository implementations, so each test runs against each."""
    if request.param == "sqlalchemy":
        return SQLAlchemyQueueRepository(session_factory)
    return InMemoryQueueRepository()


@pytest.fixture
def queue_service(sql_repository: SQLAlchemyQueueRepository) -> QueueService:
    """QueueService over the SQLite repository with the feed disabled."""
    return QueueService(sql_repository, broadcaster=NoOpBroadcaster())


@pytest.fixture
def queue_app(queue_service: QueueService) -> FastAPI:
    return create_app(queue_service)


@pytest.fixture
def client(queue_app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(queue_app) as test_client:
        yield test_client


@pytest.fixture
def local_store(tmp_path: Path) -> LocalStateStore:
    """LocalStateStore writing to a per-test JSON file."""
    return LocalStateStore(str(tmp_path / "local_state.json"))
