from __future__ import annotations

import pytest
from sqlalchemy import select

from premiumcollect.core.config import get_settings
from premiumcollect.domain.models import CellCaptive, User
from premiumcollect.persistence.bootstrap import bootstrap_database
from premiumcollect.persistence.db import SessionLocal
from premiumcollect.tests.utils.data import create_test_captive


@pytest.mark.asyncio
async def test_bootstrap_seeds_missing_demo_rows_once() -> None:
    await create_test_captive(code="BETA002", name="Existing Beta")

    await bootstrap_database()
    await bootstrap_database()

    async with SessionLocal() as session:
        captives = (await session.execute(select(CellCaptive).order_by(CellCaptive.code))).scalars().all()
        users = (await session.execute(select(User))).scalars().all()
    assert [captive.code for captive in captives] == ["ALPHA001", "BETA002", "GAMMA003"]
    # Existing rows are left as they are.
    assert captives[1].name == "Existing Beta"
    assert [(user.email, user.role) for user in users] == [(get_settings().default_admin_email, "admin")]


@pytest.mark.asyncio
async def test_bootstrap_can_skip_seeding(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "seed_demo_data", False)
    await bootstrap_database()
    async with SessionLocal() as session:
        assert (await session.execute(select(CellCaptive))).first() is None
