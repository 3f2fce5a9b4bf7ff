from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from premiumcollect.apps.api.deps import drain_background_tasks
from premiumcollect.apps.api.main import create_app
from premiumcollect.domain.models import Base
from premiumcollect.persistence.db import engine


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables and leaves no pooled connections behind.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_background_tasks()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
