from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.domain.models import ApiKey, CellCaptive


async def get_key_with_captive(
    session: AsyncSession, key_hash: str
) -> tuple[ApiKey, CellCaptive] | None:
    # Join the owning captive so activity checks need a single round trip.
    result = await session.execute(
        select(ApiKey, CellCaptive)
        .join(CellCaptive, CellCaptive.id == ApiKey.cell_captive_id)
        .where(ApiKey.key_hash == key_hash)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def get_api_key(session: AsyncSession, key_id: str) -> ApiKey | None:
    result = await session.execute(select(ApiKey).where(ApiKey.id == key_id))
    return result.scalar_one_or_none()


async def list_api_keys(
    session: AsyncSession,
    *,
    search: str | None = None,
    cell_captive_id: str | None = None,
    is_active: bool | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[tuple[ApiKey, CellCaptive]], int]:
    stmt = select(ApiKey, CellCaptive).join(CellCaptive, CellCaptive.id == ApiKey.cell_captive_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                ApiKey.key_name.ilike(pattern),
                CellCaptive.name.ilike(pattern),
                CellCaptive.code.ilike(pattern),
            )
        )
    if cell_captive_id:
        stmt = stmt.where(ApiKey.cell_captive_id == cell_captive_id)
    if is_active is not None:
        stmt = stmt.where(ApiKey.is_active == is_active)
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(ApiKey.created_at.desc(), ApiKey.id).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()], int(total or 0)


async def list_keys_for_captive(session: AsyncSession, cell_captive_id: str) -> list[ApiKey]:
    result = await session.execute(
        select(ApiKey)
        .where(ApiKey.cell_captive_id == cell_captive_id)
        .order_by(ApiKey.created_at.desc(), ApiKey.id)
    )
    return list(result.scalars().all())


async def touch_last_used(session: AsyncSession, key_id: str, used_at: datetime) -> None:
    await session.execute(update(ApiKey).where(ApiKey.id == key_id).values(last_used_at=used_at))
    await session.commit()
