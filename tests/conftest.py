"""
Pytest configuration and shared fixtures.

Points DATABASE_URL at a throwaway SQLite file before any guestbook module is
imported, so settings are built with test values.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="guestbook-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'guestbook.db')}"
os.environ["ARRANGEMENT_MODE"] = "list"
os.environ["STRICT_REORDER"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from guestbook.config import get_settings
get_settings.cache_clear()

import guestbook.models  # noqa: E402,F401  registers the table on Base.metadata
from guestbook.arrangement import ArrangementEngine
from guestbook.storage import Base, SessionLocal, get_engine, schema_gate


@pytest.fixture
def fresh_store():
    """Drop the table and forget the schema gate after each test."""
    yield
    Base.metadata.drop_all(bind=get_engine())
    schema_gate.reset()


@pytest.fixture
def db(fresh_store):
    session = SessionLocal(bind=get_engine())
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def list_engine():
    return ArrangementEngine("list")


@pytest.fixture
def spatial_engine():
    return ArrangementEngine("spatial")


@pytest.fixture
def client(fresh_store):
    """Test client for a list-mode board."""
    from guestbook.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def spatial_client(fresh_store):
    """Test client for a canvas board."""
    from guestbook.main import app, get_arrangement_engine

    app.dependency_overrides[get_arrangement_engine] = lambda: ArrangementEngine("spatial")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
