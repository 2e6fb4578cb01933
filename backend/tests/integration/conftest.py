"""
Fixtures for API integration tests.

Each request gets its own session from the test database, the same way
get_db hands one out per request in production. Tests that read the database
between requests must end their read transaction (commit or close) first.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from core.database import get_db
from main import app


@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    """TestClient bound to the per-test database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
