from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.apps.api.deps import StaffPrincipal, get_db, require_staff_role
from premiumcollect.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import paginated, success_response
from premiumcollect.persistence.repos import api_keys as api_keys_repo
from premiumcollect.services.captives import (
    delete_api_key,
    get_captive_or_404,
    issue_api_key,
    revoke_api_key,
    serialize_api_key,
)


router = APIRouter(prefix="/admin/api-keys", tags=["security"], responses=DEFAULT_ERROR_RESPONSES)


class ApiKeyCreateRequest(BaseModel):
    cell_captive_id: str = Field(min_length=1)
    key_name: str = Field(min_length=1, max_length=100)
    # Omitted permissions fall back to the configured defaults.
    permissions: list[str] | None = None
    expires_in_days: int | None = Field(default=None, ge=1, le=3650)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: ApiKeyCreateRequest,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    api_key, captive, raw_key = await issue_api_key(
        db,
        cell_captive_id=body.cell_captive_id,
        key_name=body.key_name,
        permissions=body.permissions,
        expires_in_days=body.expires_in_days,
        created_by=staff.user_id,
        request=request,
    )
    data = serialize_api_key(api_key, captive)
    # Raw key material is returned once and never retrievable again.
    data["api_key"] = raw_key
    return success_response(request=request, data=data)


@router.get("")
async def list_api_keys(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    search: str | None = Query(default=None, max_length=200),
    cell_captive_id: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    staff: StaffPrincipal = Depends(require_staff_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await api_keys_repo.list_api_keys(
        db,
        search=search,
        cell_captive_id=cell_captive_id,
        is_active=is_active,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [serialize_api_key(api_key, captive) for api_key, captive in rows]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))


@router.get("/cell-captive/{captive_id}")
async def list_api_keys_for_captive(
    captive_id: str,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    captive = await get_captive_or_404(db, captive_id)
    keys = await api_keys_repo.list_keys_for_captive(db, captive.id)
    return success_response(
        request=request,
        data={"items": [serialize_api_key(api_key, captive) for api_key in keys]},
    )


@router.patch("/{key_id}/revoke")
async def revoke_key(
    key_id: str,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    api_key = await revoke_api_key(db, key_id, changed_by=staff.user_id, request=request)
    return success_response(request=request, data=serialize_api_key(api_key))


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_key(
    key_id: str,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await delete_api_key(db, key_id, changed_by=staff.user_id, request=request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
