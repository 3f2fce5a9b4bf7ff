from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.apps.api.deps import StaffPrincipal, get_db, require_staff_role
from premiumcollect.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import paginated, success_response
from premiumcollect.core.timeutils import isoformat
from premiumcollect.domain.models import AuditTrailEntry
from premiumcollect.persistence.repos import audit as audit_repo


router = APIRouter(prefix="/admin/audit-trail", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditTrailResponse(BaseModel):
    id: str
    table_name: str
    record_id: str
    action: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    changed_by: str | None
    ip_address: str | None
    user_agent: str | None
    created_at: str | None


def _to_response(entry: AuditTrailEntry) -> dict[str, Any]:
    return AuditTrailResponse(
        id=entry.id,
        table_name=entry.table_name,
        record_id=entry.record_id,
        action=entry.action,
        old_values=entry.old_values,
        new_values=entry.new_values,
        changed_by=entry.changed_by,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        created_at=isoformat(entry.created_at),
    ).model_dump()


@router.get("")
async def list_audit_trail(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    table_name: str | None = Query(default=None, max_length=100),
    record_id: str | None = Query(default=None),
    action: str | None = Query(default=None, max_length=20),
    changed_from: datetime | None = Query(default=None),
    changed_to: datetime | None = Query(default=None),
    staff: StaffPrincipal = Depends(require_staff_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Append-only trail; investigations filter by table and record.
    rows, total = await audit_repo.list_audit_trail(
        db,
        table_name=table_name,
        record_id=record_id,
        action=action,
        changed_from=changed_from,
        changed_to=changed_to,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [_to_response(entry) for entry in rows]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))
