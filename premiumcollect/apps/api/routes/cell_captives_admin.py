from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.apps.api.deps import StaffPrincipal, get_current_staff, get_db, require_staff_role
from premiumcollect.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import paginated, success_response
from premiumcollect.persistence.repos import captives as captives_repo
from premiumcollect.services.captives import (
    create_captive,
    delete_captive,
    get_captive_or_404,
    serialize_captive,
    update_captive,
)
from premiumcollect.services.statistics import captive_statistics


router = APIRouter(
    prefix="/admin/cell-captives", tags=["cell-captives"], responses=DEFAULT_ERROR_RESPONSES
)


class CellCaptiveCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=50)
    contact_email: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=50)


class CellCaptivePatchRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    code: str | None = Field(default=None, min_length=1, max_length=50)
    contact_email: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None


@router.get("")
async def list_cell_captives(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    search: str | None = Query(default=None, max_length=200),
    is_active: bool | None = Query(default=None),
    staff: StaffPrincipal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await captives_repo.list_captives(
        db,
        search=search,
        is_active=is_active,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [serialize_captive(row) for row in rows]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_cell_captive(
    body: CellCaptiveCreateRequest,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    captive = await create_captive(
        db,
        fields=body.model_dump(exclude_none=True),
        changed_by=staff.user_id,
        request=request,
    )
    return success_response(request=request, data=serialize_captive(captive))


@router.get("/{captive_id}")
async def get_cell_captive(
    captive_id: str,
    request: Request,
    staff: StaffPrincipal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    captive = await get_captive_or_404(db, captive_id)
    data = serialize_captive(captive)
    data["counts"] = await captives_repo.count_dependents(db, captive.id)
    return success_response(request=request, data=data)


@router.get("/{captive_id}/stats")
async def get_cell_captive_stats(
    captive_id: str,
    request: Request,
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    staff: StaffPrincipal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    captive = await get_captive_or_404(db, captive_id)
    data = await captive_statistics(db, captive.id, date_from=date_from, date_to=date_to)
    data["cell_captive"] = {"id": captive.id, "name": captive.name, "code": captive.code}
    return success_response(request=request, data=data)


@router.patch("/{captive_id}")
async def patch_cell_captive(
    captive_id: str,
    body: CellCaptivePatchRequest,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    captive = await update_captive(
        db,
        captive_id,
        fields=body.model_dump(exclude_none=True),
        changed_by=staff.user_id,
        request=request,
    )
    return success_response(request=request, data=serialize_captive(captive))


@router.delete("/{captive_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cell_captive(
    captive_id: str,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await delete_captive(db, captive_id, changed_by=staff.user_id, request=request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
