from __future__ import annotations

from decimal import Decimal
import json
import logging
import time
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.apps.api.deps import CaptivePrincipal, get_db, require_permission
from premiumcollect.apps.api.openapi import BULK_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from premiumcollect.apps.api.response import paginated, success_response
from premiumcollect.core.errors import DomainError, InvalidRequestError
from premiumcollect.core.timeutils import isoformat
from premiumcollect.persistence.repos import webhook_logs as webhook_logs_repo
from premiumcollect.services.audit import log_webhook_call
from premiumcollect.services.auth.api_keys import Scope
from premiumcollect.services.broadcaster import broadcaster
from premiumcollect.services.collections import (
    bulk_update_collections,
    collection_event,
    update_collection,
)
from premiumcollect.services.policies import serialize_policy, upsert_policy


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"], responses=DEFAULT_ERROR_RESPONSES)


# Request models document the bodies in OpenAPI only. Bodies are parsed by the
# handlers so that malformed calls are still written to the webhook log.
class CollectionUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    collection_reference: str | None = None
    policy_number: str | None = None
    collection_date: str | None = None
    status: str | None = None
    amount: Decimal | None = None
    failure_reason: str | None = None
    investec_reference: str | None = None
    bank_reference: str | None = None
    transaction_date: str | None = None


class PolicyUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    policy_number: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    premium_amount: Decimal | None = None
    frequency: str | None = None
    status: str | None = None
    mandate_reference: str | None = None
    bank_account_number: str | None = None
    bank_branch_code: str | None = None
    bank_account_type: str | None = None
    next_collection_date: str | None = None
    grace_period_days: int | None = None


_COLLECTION_UPDATE_SCHEMA = CollectionUpdateRequest.model_json_schema()
_BULK_UPDATE_SCHEMA = {
    "type": "object",
    "required": ["collections"],
    "properties": {"collections": {"type": "array", "items": _COLLECTION_UPDATE_SCHEMA}},
}
_POLICY_UPDATE_SCHEMA = PolicyUpdateRequest.model_json_schema()


def _documented_body(schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": schema}},
        }
    }


async def _read_object(request: Request) -> dict[str, Any]:
    raw = await request.body()
    try:
        payload = json.loads(raw, parse_float=Decimal) if raw else None
    except ValueError as exc:
        raise InvalidRequestError("INVALID_JSON", "Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidRequestError("INVALID_REQUEST", "Request body must be a JSON object")
    return payload


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)



async def _log_call(
    request: Request,
    captive: CaptivePrincipal,
    payload: Any,
    *,
    status_code: int,
    body: Any,
    started: float,
) -> None:
    await log_webhook_call(
        cell_captive_id=captive.cell_captive_id,
        endpoint=request.url.path,
        method=request.method,
        headers=dict(request.headers),
        payload=payload,
        response_status=status_code,
        response_body=body if isinstance(body, str) else json.dumps(body, default=str),
        processing_time_ms=_elapsed_ms(started),
    )


async def _log_failure(
    request: Request,
    captive: CaptivePrincipal,
    payload: Any,
    exc: Exception,
    started: float,
) -> None:
    if isinstance(exc, DomainError):
        body: Any = {"code": exc.code, "message": exc.message}
        status_code = exc.status_code
    else:
        logger.error(
            "webhook_failed path=%s captive_id=%s",
            request.url.path,
            captive.cell_captive_id,
            exc_info=exc,
        )
        body = {"code": "INTERNAL_ERROR", "message": str(exc)}
        status_code = 500
    await _log_call(request, captive, payload, status_code=status_code, body=body, started=started)


@router.post("/collections/update", openapi_extra=_documented_body(_COLLECTION_UPDATE_SCHEMA))
async def webhook_update_collection(
    request: Request,
    captive: CaptivePrincipal = Depends(require_permission(Scope.COLLECTIONS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    started = time.monotonic()
    payload: Any = None
    try:
        payload = await _read_object(request)
        update = await update_collection(
            db,
            captive_id=captive.cell_captive_id,
            payload=payload,
            request=request,
        )
    except Exception as exc:
        await _log_failure(request, captive, payload, exc, started)
        raise

    data = update.summary()
    await _log_call(request, captive, payload, status_code=200, body=data, started=started)
    await broadcaster.publish(
        "collection_updated",
        collection_event(update, cell_captive_name=captive.cell_captive_name),
    )
    return success_response(request=request, data=data)


@router.post(
    "/collections/bulk-update",
    responses=BULK_ERROR_RESPONSES,
    openapi_extra=_documented_body(_BULK_UPDATE_SCHEMA),
)
async def webhook_bulk_update_collections(
    request: Request,
    captive: CaptivePrincipal = Depends(require_permission(Scope.COLLECTIONS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    started = time.monotonic()
    payload: Any = None
    try:
        payload = await _read_object(request)
        result = await bulk_update_collections(
            db,
            captive_id=captive.cell_captive_id,
            items=payload.get("collections"),
            request=request,
        )
    except Exception as exc:
        await _log_failure(request, captive, payload, exc, started)
        raise

    await _log_call(
        request,
        captive,
        payload,
        status_code=200,
        body={"committed": True, "processed": result["processed"], "error_count": 0},
        started=started,
    )
    await broadcaster.publish(
        "collections_bulk_updated",
        {
            "cell_captive": captive.cell_captive_name,
            "updated_count": result["processed"],
            "total_count": len(payload["collections"]),
        },
    )
    return success_response(request=request, data=result)


@router.post("/policies/update", openapi_extra=_documented_body(_POLICY_UPDATE_SCHEMA))
async def webhook_update_policy(
    request: Request,
    response: Response,
    captive: CaptivePrincipal = Depends(require_permission(Scope.POLICIES_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    started = time.monotonic()
    payload: Any = None
    try:
        payload = await _read_object(request)
        policy, created = await upsert_policy(
            db,
            captive_id=captive.cell_captive_id,
            payload=payload,
            request=request,
        )
    except Exception as exc:
        await _log_failure(request, captive, payload, exc, started)
        raise

    status_code = 201 if created else 200
    response.status_code = status_code
    data = {"policy": serialize_policy(policy), "created": created}
    await _log_call(request, captive, payload, status_code=status_code, body=data, started=started)
    await broadcaster.publish(
        "policy_created" if created else "policy_updated",
        {
            "policy_id": policy.id,
            "policy_number": policy.policy_number,
            "client_name": policy.client_name,
            "status": policy.status,
            "cell_captive": captive.cell_captive_name,
        },
    )
    return success_response(request=request, data=data)


@router.get("/logs")
async def list_webhook_logs(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    status: Literal["success", "error"] | None = Query(default=None),
    endpoint: str | None = Query(default=None, max_length=500),
    captive: CaptivePrincipal = Depends(require_permission(Scope.WEBHOOKS_READ)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows, total = await webhook_logs_repo.list_webhook_logs(
        db,
        captive_id=captive.cell_captive_id,
        status=status,
        endpoint=endpoint,
        offset=(page - 1) * limit,
        limit=limit,
    )
    items = [
        {
            "id": row.id,
            "endpoint": row.endpoint,
            "method": row.method,
            "response_status": row.response_status,
            "processing_time_ms": row.processing_time_ms,
            "status": (
                "success"
                if row.response_status is not None and 200 <= row.response_status < 300
                else "error"
            ),
            "created_at": isoformat(row.created_at),
        }
        for row in rows
    ]
    return success_response(request=request, data=paginated(items, page=page, limit=limit, total=total))
