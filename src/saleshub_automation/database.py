"""Engine and session factory setup for the queue database."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def create_db_engine(database_url: str) -> Engine:
    """Create an engine, with SQLite settings suited to a threaded web server.

    In-memory SQLite gets a StaticPool so every thread sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: Engine, *, create_tables: bool = True) -> sessionmaker[Session]:
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
