from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Iterable, Mapping
from uuid import uuid4

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from premiumcollect.domain.models import AuditTrailEntry, WebhookLog
from premiumcollect.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "cookie"]
_REDACTED_VALUE = "[REDACTED]"
_MAX_RESPONSE_BODY_CHARS = 4000


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def to_jsonable(value: Any) -> Any:
    # Coerce DB-native values into JSON-safe primitives for snapshot columns.
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def snapshot(instance: Any, *, exclude: Iterable[str] = ()) -> dict[str, Any]:
    # Capture column values of an ORM row for before/after audit snapshots.
    excluded = set(exclude)
    mapper = inspect(instance).mapper
    return {
        column.key: to_jsonable(getattr(instance, column.key))
        for column in mapper.column_attrs
        if column.key not in excluded
    }


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def build_audit_entry(
    *,
    table_name: str,
    record_id: str,
    action: str,
    old_values: Mapping[str, Any] | None = None,
    new_values: Mapping[str, Any] | None = None,
    changed_by: str | None = None,
    request: Request | None = None,
) -> AuditTrailEntry:
    request_ctx = get_request_context(request)
    return AuditTrailEntry(
        id=uuid4().hex,
        table_name=table_name,
        record_id=record_id,
        action=action,
        old_values=sanitize_metadata(to_jsonable(dict(old_values or {}))),
        new_values=sanitize_metadata(to_jsonable(dict(new_values or {}))),
        changed_by=changed_by,
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
    )


async def write_audit_entries(entries: list[AuditTrailEntry]) -> None:
    # Audit rows are written in their own session so a failure never aborts the mutation.
    if not entries:
        return
    async with SessionLocal() as audit_session:
        try:
            audit_session.add_all(entries)
            await audit_session.commit()
        except SQLAlchemyError as exc:
            await audit_session.rollback()
            logger.warning(
                "audit_trail_write_failed table=%s records=%d",
                entries[0].table_name,
                len(entries),
                exc_info=exc,
            )


async def record_audit_trail(
    *,
    table_name: str,
    record_id: str,
    action: str,
    old_values: Mapping[str, Any] | None = None,
    new_values: Mapping[str, Any] | None = None,
    changed_by: str | None = None,
    request: Request | None = None,
) -> None:
    await write_audit_entries(
        [
            build_audit_entry(
                table_name=table_name,
                record_id=record_id,
                action=action,
                old_values=old_values,
                new_values=new_values,
                changed_by=changed_by,
                request=request,
            )
        ]
    )


async def log_webhook_call(
    *,
    cell_captive_id: str | None,
    endpoint: str,
    method: str,
    headers: Mapping[str, Any] | None,
    payload: Any,
    response_status: int,
    response_body: str | None,
    processing_time_ms: int,
) -> None:
    # Persist every inbound webhook call; failures are logged and swallowed.
    body = response_body
    if body is not None and len(body) > _MAX_RESPONSE_BODY_CHARS:
        body = body[:_MAX_RESPONSE_BODY_CHARS]
    entry = WebhookLog(
        id=uuid4().hex,
        cell_captive_id=cell_captive_id,
        endpoint=endpoint[:500],
        method=method,
        headers=sanitize_metadata(dict(headers or {})),
        payload=sanitize_metadata(to_jsonable(payload)),
        response_status=response_status,
        response_body=body,
        processing_time_ms=processing_time_ms,
    )
    async with SessionLocal() as log_session:
        try:
            log_session.add(entry)
            await log_session.commit()
        except SQLAlchemyError as exc:
            await log_session.rollback()
            logger.warning(
                "webhook_log_write_failed endpoint=%s status=%s",
                endpoint,
                response_status,
                exc_info=exc,
            )
