from __future__ import annotations

from datetime import timedelta
import logging
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from premiumcollect.core.errors import ConflictError, InvalidRequestError, NotFoundError
from premiumcollect.core.timeutils import ensure_utc, isoformat, utc_now
from premiumcollect.domain.models import ApiKey, CellCaptive
from premiumcollect.persistence.repos import api_keys as api_keys_repo
from premiumcollect.persistence.repos import captives as captives_repo
from premiumcollect.services.audit import record_audit_trail, snapshot
from premiumcollect.services.auth.api_keys import generate_api_key, key_preview, normalize_permissions


logger = logging.getLogger(__name__)

_CAPTIVE_FIELDS = ("name", "code", "contact_email", "contact_phone", "is_active")
# Digests stay out of the audit trail.
_KEY_AUDIT_EXCLUDE = ("key_hash",)


def serialize_captive(captive: CellCaptive) -> dict[str, Any]:
    return {
        "id": captive.id,
        "name": captive.name,
        "code": captive.code,
        "contact_email": captive.contact_email,
        "contact_phone": captive.contact_phone,
        "is_active": captive.is_active,
        "created_at": isoformat(captive.created_at),
        "updated_at": isoformat(captive.updated_at),
    }


def serialize_api_key(api_key: ApiKey, captive: CellCaptive | None = None) -> dict[str, Any]:
    expires_at = ensure_utc(api_key.expires_at)
    data = {
        "id": api_key.id,
        "cell_captive_id": api_key.cell_captive_id,
        "key_name": api_key.key_name,
        "api_key_preview": key_preview(api_key.key_prefix),
        "permissions": list(api_key.permissions or []),
        "is_active": api_key.is_active,
        "is_expired": expires_at is not None and expires_at <= utc_now(),
        "last_used_at": isoformat(api_key.last_used_at),
        "expires_at": isoformat(api_key.expires_at),
        "created_at": isoformat(api_key.created_at),
    }
    if captive is not None:
        data["cell_captive_name"] = captive.name
        data["cell_captive_code"] = captive.code
    return data


async def get_captive_or_404(session: AsyncSession, captive_id: str) -> CellCaptive:
    captive = await captives_repo.get_captive(session, captive_id)
    if captive is None:
        raise NotFoundError("CAPTIVE_NOT_FOUND", "Cell captive not found")
    return captive


async def _commit_unique(session: AsyncSession, code: str) -> None:
    # A concurrent insert can still win the unique index after the pre-check.
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("CAPTIVE_CODE_EXISTS", f"Cell captive code {code} already exists") from exc


async def create_captive(
    session: AsyncSession,
    *,
    fields: dict[str, Any],
    changed_by: str | None,
    request: Request | None = None,
) -> CellCaptive:
    code = str(fields["code"]).strip().upper()
    if await captives_repo.get_captive_by_code(session, code) is not None:
        raise ConflictError("CAPTIVE_CODE_EXISTS", f"Cell captive code {code} already exists")
    now = utc_now()
    captive = CellCaptive(
        id=uuid4().hex,
        name=str(fields["name"]).strip(),
        code=code,
        contact_email=fields.get("contact_email"),
        contact_phone=fields.get("contact_phone"),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(captive)
    await _commit_unique(session, code)
    logger.info("cell_captive_created captive_id=%s code=%s", captive.id, code)
    await record_audit_trail(
        table_name="cell_captives",
        record_id=captive.id,
        action="INSERT",
        new_values=snapshot(captive),
        changed_by=changed_by,
        request=request,
    )
    return captive


async def update_captive(
    session: AsyncSession,
    captive_id: str,
    *,
    fields: dict[str, Any],
    changed_by: str | None,
    request: Request | None = None,
) -> CellCaptive:
    captive = await get_captive_or_404(session, captive_id)
    changes = {key: value for key, value in fields.items() if key in _CAPTIVE_FIELDS}
    if not changes:
        raise InvalidRequestError("NO_UPDATE_FIELDS", "No valid update fields provided")
    if "code" in changes:
        changes["code"] = str(changes["code"]).strip().upper()
        other = await captives_repo.get_captive_by_code(session, changes["code"])
        if other is not None and other.id != captive.id:
            raise ConflictError(
                "CAPTIVE_CODE_EXISTS", f"Cell captive code {changes['code']} already exists"
            )
    before = snapshot(captive)
    for key, value in changes.items():
        setattr(captive, key, value)
    captive.updated_at = utc_now()
    await _commit_unique(session, captive.code)
    await record_audit_trail(
        table_name="cell_captives",
        record_id=captive.id,
        action="UPDATE",
        old_values=before,
        new_values=snapshot(captive),
        changed_by=changed_by,
        request=request,
    )
    return captive


async def delete_captive(
    session: AsyncSession,
    captive_id: str,
    *,
    changed_by: str | None,
    request: Request | None = None,
) -> None:
    captive = await get_captive_or_404(session, captive_id)
    dependents = await captives_repo.count_dependents(session, captive.id)
    if any(dependents.values()):
        raise ConflictError(
            "CAPTIVE_HAS_DEPENDENTS",
            "Cell captive still has policies, collections or API keys",
            details=dependents,
        )
    before = snapshot(captive)
    await session.delete(captive)
    await session.commit()
    logger.info("cell_captive_deleted captive_id=%s", captive_id)
    await record_audit_trail(
        table_name="cell_captives",
        record_id=captive_id,
        action="DELETE",
        old_values=before,
        changed_by=changed_by,
        request=request,
    )


async def issue_api_key(
    session: AsyncSession,
    *,
    cell_captive_id: str,
    key_name: str,
    permissions: Iterable[str] | None = None,
    expires_in_days: int | None = None,
    created_by: str | None = None,
    request: Request | None = None,
) -> tuple[ApiKey, CellCaptive, str]:
    """Mint a captive API key; the raw token is only ever returned here."""
    captive = await get_captive_or_404(session, cell_captive_id)
    try:
        scopes = normalize_permissions(permissions)
    except ValueError as exc:
        raise InvalidRequestError("INVALID_PERMISSIONS", str(exc)) from exc
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    now = utc_now()
    api_key = ApiKey(
        id=key_id,
        cell_captive_id=captive.id,
        key_name=key_name.strip(),
        key_prefix=key_prefix,
        key_hash=key_hash,
        permissions=scopes,
        is_active=True,
        expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    session.add(api_key)
    await session.commit()
    logger.info("api_key_issued captive_id=%s key_id=%s", captive.id, key_id)
    await record_audit_trail(
        table_name="api_keys",
        record_id=key_id,
        action="INSERT",
        new_values=snapshot(api_key, exclude=_KEY_AUDIT_EXCLUDE),
        changed_by=created_by,
        request=request,
    )
    return api_key, captive, raw_key


async def _get_key_or_404(session: AsyncSession, key_id: str) -> ApiKey:
    api_key = await api_keys_repo.get_api_key(session, key_id)
    if api_key is None:
        raise NotFoundError("API_KEY_NOT_FOUND", "API key not found")
    return api_key


async def revoke_api_key(
    session: AsyncSession,
    key_id: str,
    *,
    changed_by: str | None,
    request: Request | None = None,
) -> ApiKey:
    api_key = await _get_key_or_404(session, key_id)
    before = snapshot(api_key, exclude=_KEY_AUDIT_EXCLUDE)
    api_key.is_active = False
    api_key.updated_at = utc_now()
    await session.commit()
    logger.info("api_key_revoked key_id=%s", key_id)
    await record_audit_trail(
        table_name="api_keys",
        record_id=key_id,
        action="UPDATE",
        old_values=before,
        new_values=snapshot(api_key, exclude=_KEY_AUDIT_EXCLUDE),
        changed_by=changed_by,
        request=request,
    )
    return api_key


async def delete_api_key(
    session: AsyncSession,
    key_id: str,
    *,
    changed_by: str | None,
    request: Request | None = None,
) -> None:
    api_key = await _get_key_or_404(session, key_id)
    before = snapshot(api_key, exclude=_KEY_AUDIT_EXCLUDE)
    await session.delete(api_key)
    await session.commit()
    await record_audit_trail(
        table_name="api_keys",
        record_id=key_id,
        action="DELETE",
        old_values=before,
        changed_by=changed_by,
        request=request,
    )