from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.domain.models import Policy


async def get_policy_by_number(session: AsyncSession, policy_number: str) -> Policy | None:
    # Unscoped lookup; only used to detect numbers owned by another captive.
    result = await session.execute(select(Policy).where(Policy.policy_number == policy_number))
    return result.scalar_one_or_none()


async def get_policy_for_captive(
    session: AsyncSession, captive_id: str, policy_number: str
) -> Policy | None:
    # Ensure captive scoping so a tenant never resolves another tenant's policy.
    result = await session.execute(
        select(Policy).where(
            Policy.policy_number == policy_number,
            Policy.cell_captive_id == captive_id,
        )
    )
    return result.scalar_one_or_none()


async def get_policy(session: AsyncSession, policy_id: str) -> Policy | None:
    result = await session.execute(select(Policy).where(Policy.id == policy_id))
    return result.scalar_one_or_none()


async def list_policies(
    session: AsyncSession,
    *,
    captive_id: str,
    status: str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Policy], int]:
    stmt = select(Policy).where(Policy.cell_captive_id == captive_id)
    if status:
        stmt = stmt.where(Policy.status == status)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                Policy.policy_number.ilike(pattern),
                Policy.client_name.ilike(pattern),
                Policy.client_email.ilike(pattern),
            )
        )
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(Policy.created_at.desc(), Policy.id).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)
