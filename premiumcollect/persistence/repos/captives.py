from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.domain.models import ApiKey, CellCaptive, Collection, Policy


async def get_captive(session: AsyncSession, captive_id: str) -> CellCaptive | None:
    result = await session.execute(select(CellCaptive).where(CellCaptive.id == captive_id))
    return result.scalar_one_or_none()


async def get_captive_by_code(session: AsyncSession, code: str) -> CellCaptive | None:
    result = await session.execute(select(CellCaptive).where(CellCaptive.code == code))
    return result.scalar_one_or_none()


async def list_captives(
    session: AsyncSession,
    *,
    search: str | None = None,
    is_active: bool | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[CellCaptive], int]:
    stmt = select(CellCaptive)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(CellCaptive.name.ilike(pattern), CellCaptive.code.ilike(pattern)))
    if is_active is not None:
        stmt = stmt.where(CellCaptive.is_active == is_active)
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    # Stable ordering keeps pagination deterministic for operators.
    stmt = stmt.order_by(CellCaptive.name, CellCaptive.id).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def count_dependents(session: AsyncSession, captive_id: str) -> dict[str, int]:
    # Deletion is refused while any of these reference the captive.
    policies = await session.scalar(
        select(func.count()).select_from(Policy).where(Policy.cell_captive_id == captive_id)
    )
    collections = await session.scalar(
        select(func.count()).select_from(Collection).where(Collection.cell_captive_id == captive_id)
    )
    api_keys = await session.scalar(
        select(func.count()).select_from(ApiKey).where(ApiKey.cell_captive_id == captive_id)
    )
    return {
        "policies": int(policies or 0),
        "collections": int(collections or 0),
        "api_keys": int(api_keys or 0),
    }
