"""Fixtures for API route tests.

The app runs under TestClient with its session and provider-client
dependencies overridden: sessions come from an in-memory SQLite engine whose
tables are created inside the TestClient event loop.
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.clients.mux import DirectUpload
from app.database import create_test_engine, get_session
from app.main import app
from app.models import Base
from app.routes.dependencies import get_mux_client


class FakeMuxClient:
    """Hands out sequential direct uploads."""

    def __init__(self):
        self.created = 0

    async def create_upload(self, cors_origin: str | None = None) -> DirectUpload:
        self.created += 1
        return DirectUpload(
            upload_id=f"upl_{self.created}",
            url=f"https://storage.example/upload/{self.created}",
        )


@pytest.fixture
def fake_mux():
    return FakeMuxClient()


@pytest.fixture
def enqueue_mock():
    with patch("app.routes.workflows.enqueue_workflow_run", new_callable=AsyncMock) as mock:
        yield mock


@pytest.fixture
def client(fake_mux, enqueue_mock):
    engine, session_factory = create_test_engine()

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_mux_client] = lambda: fake_mux

    with TestClient(app) as test_client:
        test_client.portal.call(create_tables)
        yield test_client
        test_client.portal.call(engine.dispose)

    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return {"X-Owner-Id": str(uuid.uuid4())}


@pytest.fixture
def other_owner_headers() -> dict[str, str]:
    return {"X-Owner-Id": str(uuid.uuid4())}
