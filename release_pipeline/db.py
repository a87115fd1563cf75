"""SQLAlchemy plumbing for build run and publication records.

Build runs are written from pipeline worker threads while the CLI or the
HTTP API reads them, so SQLite connections are opened with
``check_same_thread=False`` and a busy timeout. Every status update uses
its own short transaction via get_session().
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from release_pipeline.config import get_settings

SQLITE_BUSY_TIMEOUT_MS = 30_000


class Base(DeclarativeBase):
    """Declarative base shared by BuildRun and PublishedArtifact."""


def _sqlite_file(db_url: str) -> Path | None:
    path = db_url.removeprefix("sqlite:///")
    if path == db_url or not path or path == ":memory:":
        return None
    return Path(path)


def _set_sqlite_pragmas(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create an engine for db_url (settings.db_url by default).

    For file-based SQLite the parent directory is created first.
    """
    url = db_url if db_url is not None else get_settings().db_url

    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    sqlite_file = _sqlite_file(url)
    if sqlite_file is not None:
        sqlite_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to engine.

    Objects stay usable after commit (``expire_on_commit=False``) since
    run records are handed to callers once their session is closed.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def open_session_factory(db_url: str | None = None) -> sessionmaker[Session]:
    """Create the engine and tables for db_url and return a session factory."""
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Run a block in one transaction: commit on success, roll back on error.

    Args:
        session_factory: Factory to open the session from; one is created
            from settings when omitted.

    Yields:
        Open session.
    """
    if session_factory is None:
        session_factory = get_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the build run and publication tables if missing."""
    # Registers the models with Base.metadata
    from release_pipeline.artifacts import models as artifacts_models  # noqa: F401
    from release_pipeline.builds import models as builds_models  # noqa: F401

    Base.metadata.create_all(bind=engine if engine is not None else get_engine())


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "open_session_factory",
]
