from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.apps.api.deps import (
    CaptivePrincipal,
    get_current_captive,
    get_db,
    require_permission,
)
from premiumcollect.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import paginated, success_response
from premiumcollect.core.errors import NotFoundError
from premiumcollect.core.timeutils import isoformat
from premiumcollect.persistence.repos import captives as captives_repo
from premiumcollect.persistence.repos import collections as collections_repo
from premiumcollect.persistence.repos import policies as policies_repo
from premiumcollect.services.auth.api_keys import Scope
from premiumcollect.services.broadcaster import broadcaster
from premiumcollect.services.collections import (
    collection_event,
    create_collection,
    resolve_existing,
    serialize_collection,
    update_resolved_collection,
)
from premiumcollect.services.policies import serialize_policy
from premiumcollect.services.statistics import captive_info_counts, captive_statistics


router = APIRouter(prefix="/captive", tags=["captive"], responses=DEFAULT_ERROR_RESPONSES)


class CollectionCreateRequest(BaseModel):
    policy_number: str | None = None
    amount: Decimal | None = None
    collection_date: str | None = None
    collection_type: str | None = None


class CollectionPatchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    amount: Decimal | None = None
    failure_reason: str | None = None
    investec_reference: str | None = None
    bank_reference: str | None = None
    transaction_date: str | None = None


@router.get("/info")
async def get_captive_info(
    request: Request,
    captive: CaptivePrincipal = Depends(get_current_captive),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    record = await captives_repo.get_captive(db, captive.cell_captive_id)
    if record is None:
        raise NotFoundError("CAPTIVE_NOT_FOUND", "Cell captive not found")
    data = {
        "id": record.id,
        "name": record.name,
        "code": record.code,
        "contact_email": record.contact_email,
        "contact_phone": record.contact_phone,
        "is_active": record.is_active,
        "created_at": isoformat(record.created_at),
        "api_key": {
            "id": captive.api_key_id,
            "key_name": captive.key_name,
            "permissions": sorted(scope.value for scope in captive.scopes),
        },
        **await captive_info_counts(db, record.id),
    }
    return success_response(request=request, data=data)


@router.get("/policies")
async def list_captive_policies(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=200),
    captive: CaptivePrincipal = Depends(require_permission(Scope.POLICIES_READ)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await policies_repo.list_policies(
        db,
        captive_id=captive.cell_captive_id,
        status=status_filter,
        search=search,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [serialize_policy(policy) for policy in rows]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))


@router.get("/collections")
async def list_captive_collections(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    status_filter: str | None = Query(default=None, alias="status"),
    collection_type: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    policy_number: str | None = Query(default=None, max_length=100),
    captive: CaptivePrincipal = Depends(require_permission(Scope.COLLECTIONS_READ)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await collections_repo.list_collections(
        db,
        captive_id=captive.cell_captive_id,
        status=status_filter,
        collection_type=collection_type,
        date_from=date_from,
        date_to=date_to,
        policy_number=policy_number,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [
        serialize_collection(collection, policy, reconciliation_status)
        for collection, policy, _captive, reconciliation_status in rows
    ]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))


@router.post("/collections", status_code=status.HTTP_201_CREATED)
async def create_captive_collection(
    body: CollectionCreateRequest,
    request: Request,
    captive: CaptivePrincipal = Depends(require_permission(Scope.COLLECTIONS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    collection, policy = await create_collection(
        db,
        captive_id=captive.cell_captive_id,
        payload=body.model_dump(exclude_none=True),
        request=request,
    )
    data = serialize_collection(collection, policy)
    await broadcaster.publish(
        "collection_created",
        {
            "collection_id": collection.id,
            "collection_reference": collection.collection_reference,
            "policy_number": policy.policy_number,
            "client_name": policy.client_name,
            "amount": data["amount"],
            "collection_type": collection.collection_type,
            "cell_captive": captive.cell_captive_name,
            "created_by": "api",
        },
    )
    return success_response(request=request, data=data)


@router.patch("/collections/{collection_reference}")
async def patch_captive_collection(
    collection_reference: str,
    body: CollectionPatchRequest,
    request: Request,
    captive: CaptivePrincipal = Depends(require_permission(Scope.COLLECTIONS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    collection = await resolve_existing(db, captive.cell_captive_id, collection_reference)
    update = await update_resolved_collection(
        db,
        collection,
        body.model_dump(exclude_none=True),
        request=request,
    )
    await broadcaster.publish(
        "collection_updated",
        collection_event(update, cell_captive_name=captive.cell_captive_name),
    )
    return success_response(request=request, data=update.summary())


@router.get("/statistics")
async def get_captive_statistics(
    request: Request,
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    captive: CaptivePrincipal = Depends(get_current_captive),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    data = await captive_statistics(
        db, captive.cell_captive_id, date_from=date_from, date_to=date_to
    )
    return success_response(request=request, data=data)
