"""Pytest configuration and fixtures."""

from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main


@pytest.fixture
def mongo_db(monkeypatch):
    """In-memory MongoDB shared by the database helpers and the API."""
    test_db = mongomock.MongoClient(tz_aware=True)["skillswap_test"]
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(main, "db", test_db)
    return test_db


@pytest.fixture
def client(mongo_db):
    """Create a test client for the FastAPI app."""
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    def _make(name: str, email: str = None, **extra):
        payload = {"name": name, "email": email or f"{name.lower()}@example.com", **extra}
        resp = client.post("/api/users", json=payload)
        assert resp.status_code == 200
        return resp.json()
    return _make


@pytest.fixture
def make_skill(client):
    def _make(owner_id: str, name: str = "Guitar", category: str = "Music"):
        resp = client.post("/api/skills", json={"user_id": owner_id, "name": name, "category": category})
        assert resp.status_code == 200
        return resp.json()["id"]
    return _make


class FakeMessages:
    """Stands in for anthropic's `client.messages`."""

    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.text)],
            stop_reason="end_turn",
        )


@pytest.fixture
def fake_llm():
    def _make(text=None, error=None):
        return SimpleNamespace(messages=FakeMessages(text=text, error=error))
    return _make
