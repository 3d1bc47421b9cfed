"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from sqlgate.config import settings
from sqlgate.database import Store
from sqlgate.main import app

TEST_WRITE_TOKEN = "test_write_token_for_testing"
TEST_READ_TOKEN = "test_read_only_token_for_testing"


@pytest.fixture
def tokens(monkeypatch):
    """Configure both credentials."""
    monkeypatch.setattr(settings, "write_token", TEST_WRITE_TOKEN)
    monkeypatch.setattr(settings, "read_only_token", TEST_READ_TOKEN)
    yield


@pytest.fixture
def store():
    """An open in-memory store, closed after the test."""
    s = Store(":memory:")
    s.open()
    yield s
    s.close()


@pytest.fixture
def client(tokens, store, monkeypatch):
    """Create a test client bound to a fresh in-memory store."""
    monkeypatch.setattr(app.state, "store", store)
    return TestClient(app)


@pytest.fixture
def unbound_client(tokens, monkeypatch):
    """Test client with no store bound to the application."""
    monkeypatch.setattr(app.state, "store", None)
    return TestClient(app)


@pytest.fixture
def write_headers():
    return {"Authorization": f"Bearer {TEST_WRITE_TOKEN}"}


@pytest.fixture
def read_headers():
    return {"Authorization": f"Bearer {TEST_READ_TOKEN}"}


@pytest.fixture
def widgets(client, write_headers):
    """Create the 'widgets' table and return its name."""
    response = client.post(
        "/api/create-table", json={"tableName": "widgets"}, headers=write_headers
    )
    assert response.status_code == 201
    return "widgets"
