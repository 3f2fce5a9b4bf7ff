from __future__ import annotations

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.domain.models import WebhookLog


async def list_webhook_logs(
    session: AsyncSession,
    *,
    captive_id: str,
    status: str | None = None,
    endpoint: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[WebhookLog], int]:
    # Always scope to the calling captive; logs carry request payloads.
    stmt = select(WebhookLog).where(WebhookLog.cell_captive_id == captive_id)
    if status == "success":
        stmt = stmt.where(and_(WebhookLog.response_status >= 200, WebhookLog.response_status < 300))
    elif status == "error":
        stmt = stmt.where(
            or_(
                WebhookLog.response_status.is_(None),
                WebhookLog.response_status < 200,
                WebhookLog.response_status >= 300,
            )
        )
    if endpoint:
        stmt = stmt.where(WebhookLog.endpoint.ilike(f"%{endpoint}%"))
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc())
    result = await session.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all()), int(total or 0)
