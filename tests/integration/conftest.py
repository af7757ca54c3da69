"""
Integration test configuration
"""
import pytest
from fastapi.testclient import TestClient

from src.api.deps import get_cache, get_dispatcher
from src.app.main import app
from src.db.base import get_db


@pytest.fixture
def client(db_session, dispatcher, memory_cache):
    """FastAPI test client bound to the in-memory database and fakes."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_cache] = lambda: memory_cache

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
