from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.apps.api.deps import StaffPrincipal, get_current_staff, get_db, require_staff_role
from premiumcollect.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import paginated, success_response
from premiumcollect.core.errors import NotFoundError
from premiumcollect.core.timeutils import isoformat
from premiumcollect.persistence.repos import captives as captives_repo
from premiumcollect.persistence.repos import collections as collections_repo
from premiumcollect.services.broadcaster import broadcaster
from premiumcollect.services.collections import (
    collection_event,
    create_collection_for_policy,
    serialize_collection,
    update_resolved_collection,
)
from premiumcollect.services.statistics import collection_statistics


router = APIRouter(prefix="/admin", tags=["collections"], responses=DEFAULT_ERROR_RESPONSES)


class CollectionStatusRequest(BaseModel):
    status: str | None = None
    amount: Decimal | None = None
    failure_reason: str | None = None
    investec_reference: str | None = None
    bank_reference: str | None = None
    transaction_date: str | None = None


class CollectionCreateRequest(BaseModel):
    policy_id: str | None = None
    amount: Decimal | None = None
    collection_date: str | None = None
    collection_type: str | None = None


@router.get("/collections")
async def list_all_collections(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    status_filter: str | None = Query(default=None, alias="status"),
    collection_type: str | None = Query(default=None),
    policy_number: str | None = Query(default=None, max_length=100),
    client_name: str | None = Query(default=None, max_length=200),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    cell_captive_id: str | None = Query(default=None),
    staff: StaffPrincipal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await collections_repo.list_collections(
        db,
        captive_id=cell_captive_id,
        status=status_filter,
        collection_type=collection_type,
        date_from=date_from,
        date_to=date_to,
        policy_number=policy_number,
        client_name=client_name,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = []
    for collection, policy, captive, reconciliation_status in rows:
        item = serialize_collection(collection, policy, reconciliation_status)
        item["cell_captive_name"] = captive.name
        item["cell_captive_code"] = captive.code
        items.append(item)
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))


@router.post("/collections", status_code=status.HTTP_201_CREATED)
async def create_staff_collection(
    body: CollectionCreateRequest,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    collection, policy = await create_collection_for_policy(
        db,
        payload=body.model_dump(exclude_none=True),
        changed_by=staff.user_id,
        request=request,
    )
    captive = await captives_repo.get_captive(db, collection.cell_captive_id)
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
            "cell_captive": captive.name if captive else None,
            "created_by": staff.user_id,
        },
    )
    return success_response(request=request, data=data)


@router.get("/collections/stats")
async def get_collection_stats(
    request: Request,
    cell_captive_id: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    staff: StaffPrincipal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    data = await collection_statistics(
        db, captive_id=cell_captive_id, date_from=date_from, date_to=date_to
    )
    return success_response(request=request, data=data)


@router.patch("/collections/{collection_id}/status")
async def update_collection_status(
    collection_id: str,
    body: CollectionStatusRequest,
    request: Request,
    staff: StaffPrincipal = Depends(require_staff_role("admin", "manager")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    collection = await collections_repo.get_collection(db, collection_id)
    if collection is None:
        raise NotFoundError("COLLECTION_NOT_FOUND", "Collection not found")
    captive = await captives_repo.get_captive(db, collection.cell_captive_id)
    update = await update_resolved_collection(
        db,
        collection,
        body.model_dump(exclude_none=True),
        changed_by=staff.user_id,
        request=request,
    )
    await broadcaster.publish(
        "collection_status_updated",
        collection_event(update, cell_captive_name=captive.name if captive else ""),
    )
    return success_response(request=request, data=update.summary())


@router.get("/reconciliation")
async def list_reconciliation_records(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    status: Literal["matched", "unmatched", "disputed"] | None = Query(default=None),
    staff: StaffPrincipal = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await collections_repo.list_reconciliation(
        db,
        status=status,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [
        {
            "id": record.id,
            "collection_id": record.collection_id,
            "collection_reference": collection.collection_reference,
            "collection_status": collection.status,
            "investec_reference": record.investec_reference,
            "bank_reference": record.bank_reference,
            "amount": float(record.amount) if record.amount is not None else None,
            "transaction_date": isoformat(record.transaction_date),
            "status": record.status,
            "reconciled_at": isoformat(record.reconciled_at),
            "notes": record.notes,
            "created_at": isoformat(record.created_at),
        }
        for record, collection in rows
    ]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))
