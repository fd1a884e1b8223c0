"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `registrar.db` next to the
package by default) and provides small helpers used by the application,
the seed script and tests.
"""

from sqlmodel import SQLModel, create_engine, Session

from .config import settings


def make_engine(url: str, echo: bool = False):
    """Build an engine for `url`.

    SQLite connections are shared across FastAPI's worker threads, so the
    same-thread check is disabled and a busy timeout lets concurrent
    writers on different courses wait for each other instead of failing.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, echo=echo, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    # the import registers every table on SQLModel.metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
