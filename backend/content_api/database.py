"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from the
`DATABASE_URL` setting (a local SQLite file `app.db` next to the
package by default) and provides the session dependency used by the
HTTP layer and tests.
"""

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from .config import get_settings


def _build_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, pool_pre_ping=True)
    connect_args = {"check_same_thread": False}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # a single shared connection keeps the in-memory database alive across threads
        return create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, echo=False, connect_args=connect_args)


engine = _build_engine(get_settings().DATABASE_URL)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This is intended for local development and tests; production
    deployments should manage the schema with a migration tool.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
