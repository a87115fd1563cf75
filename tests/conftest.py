"""Shared fixtures for release_pipeline tests."""

from pathlib import Path

import pytest

from release_pipeline.db import create_all_tables, get_engine, get_session_factory


@pytest.fixture
def db_engine(tmp_path: Path):
    """Create a file-backed SQLite engine shared across threads."""
    engine = get_engine(f"sqlite:///{tmp_path}/test.db")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Create a session factory for testing."""
    return get_session_factory(db_engine)


@pytest.fixture
def session(session_factory):
    """Create a session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
