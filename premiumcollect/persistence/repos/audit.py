from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.domain.models import AuditTrailEntry


async def list_audit_trail(
    session: AsyncSession,
    *,
    table_name: str | None = None,
    record_id: str | None = None,
    action: str | None = None,
    changed_from: datetime | None = None,
    changed_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AuditTrailEntry], int]:
    stmt = select(AuditTrailEntry)
    if table_name:
        stmt = stmt.where(AuditTrailEntry.table_name == table_name)
    if record_id:
        stmt = stmt.where(AuditTrailEntry.record_id == record_id)
    if action:
        stmt = stmt.where(AuditTrailEntry.action == action.upper())
    if changed_from:
        stmt = stmt.where(AuditTrailEntry.created_at >= changed_from)
    if changed_to:
        stmt = stmt.where(AuditTrailEntry.created_at <= changed_to)

    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(AuditTrailEntry.created_at.desc(), AuditTrailEntry.id.desc())
    result = await session.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all()), int(total or 0)
