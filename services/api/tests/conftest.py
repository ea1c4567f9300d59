"""
Shared fixtures: a fresh in-memory SQLite adapter per test, a FastAPI
TestClient wired to it, and a handful of users covering the access rules.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_READ", "10000")
os.environ.setdefault("RATE_LIMIT_WRITE", "10000")

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from adapters.sqlite import SqliteAdapter
from core.access import Caller


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture
def storage():
    adapter = SqliteAdapter.from_url("sqlite://")
    yield adapter
    adapter.engine.dispose()


@pytest.fixture
def people(storage):
    """user_id by nickname."""
    rows = [
        dict(user_id="admin", name="Ada Admin", email="admin@example.com", role="ADMIN"),
        dict(user_id="userX", name="Xavier Blaster", email="x@example.com", role="FOREMAN", is_blaster=True),
        dict(user_id="userY", name="Yara Blaster", email="y@example.com", role="FIELD_WORKER", is_blaster=True),
        dict(user_id="userZ", name="Zed Worker", email="z@example.com", role="PROJECT_MANAGER"),
        dict(user_id="viewer", name="Vic Viewer", email="v@example.com", role="VIEWER"),
        dict(user_id="retired", name="Rita Retired", email="r@example.com", role="FOREMAN",
             is_blaster=True, status="INACTIVE"),
    ]
    for row in rows:
        storage.create_user(**row)
    return {r["user_id"]: r["user_id"] for r in rows}


@pytest.fixture
def project(storage):
    return storage.create_project("Quarry Expansion", project_id="p-1")


@pytest.fixture
def callers(people):
    return {
        "admin": Caller("admin", "ADMIN", False),
        "userX": Caller("userX", "FOREMAN", True),
        "userY": Caller("userY", "FIELD_WORKER", True),
        "userZ": Caller("userZ", "PROJECT_MANAGER", False),
        "viewer": Caller("viewer", "VIEWER", False),
    }


@pytest.fixture
def client(storage):
    main.app.dependency_overrides[main.get_storage_adapter] = lambda: storage
    main.rate_limit_storage.clear()
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


class SwitchableTransport(httpx.AsyncBaseTransport):
    """Routes to the ASGI app, or fails like a dead network when offline."""

    def __init__(self, app):
        self.inner = httpx.ASGITransport(app=app)
        self.online = True
        self.requests = []

    async def handle_async_request(self, request):
        if not self.online:
            raise httpx.ConnectError("network unreachable", request=request)
        self.requests.append((request.method, request.url.path))
        return await self.inner.handle_async_request(request)


@pytest.fixture
def transport(client):
    return SwitchableTransport(main.app)
