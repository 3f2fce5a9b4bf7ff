from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import select

from premiumcollect.core.config import get_settings
from premiumcollect.core.timeutils import utc_now
from premiumcollect.domain.models import Base, CellCaptive, User
from premiumcollect.persistence.db import SessionLocal, engine


logger = logging.getLogger(__name__)

# Sample tenants provisioned for local and demo environments.
DEMO_CAPTIVES: tuple[tuple[str, str, str], ...] = (
    ("ALPHA001", "Alpha Insurance Cell", "admin@alpha-insurance.com"),
    ("BETA002", "Beta Life Cell", "admin@beta-life.com"),
    ("GAMMA003", "Gamma Health Cell", "admin@gamma-health.com"),
)


async def create_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_demo_data() -> dict[str, int]:
    """Insert the default admin and sample captives when they are missing."""
    settings = get_settings()
    created = {"users": 0, "cell_captives": 0}
    async with SessionLocal() as session:
        now = utc_now()
        admin = (
            await session.execute(select(User).where(User.email == settings.default_admin_email))
        ).scalar_one_or_none()
        if admin is None:
            session.add(
                User(
                    id=uuid4().hex,
                    email=settings.default_admin_email,
                    first_name="System",
                    last_name="Administrator",
                    role="admin",
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
            created["users"] += 1

        existing = set(
            (
                await session.execute(
                    select(CellCaptive.code).where(
                        CellCaptive.code.in_([code for code, _, _ in DEMO_CAPTIVES])
                    )
                )
            ).scalars()
        )
        for code, name, email in DEMO_CAPTIVES:
            if code in existing:
                continue
            session.add(
                CellCaptive(
                    id=uuid4().hex,
                    name=name,
                    code=code,
                    contact_email=email,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
            created["cell_captives"] += 1
        await session.commit()
    return created


async def bootstrap_database() -> None:
    settings = get_settings()
    await create_schema()
    if settings.seed_demo_data:
        created = await seed_demo_data()
        logger.info(
            "database_bootstrapped users_created=%s captives_created=%s",
            created["users"],
            created["cell_captives"],
        )
    else:
        logger.info("database_bootstrapped seed=skipped")
