from __future__ import annotations

from datetime import date
import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from premiumcollect.core.errors import ConflictError, InvalidRequestError
from premiumcollect.core.timeutils import isoformat, utc_now
from premiumcollect.domain.models import POLICY_FREQUENCIES, POLICY_STATUSES, Policy
from premiumcollect.persistence.repos import policies as policies_repo
from premiumcollect.services.audit import record_audit_trail, snapshot
from premiumcollect.services.collections import parse_amount


logger = logging.getLogger(__name__)

_TEXT_FIELDS = (
    "client_name",
    "client_email",
    "client_phone",
    "mandate_reference",
    "bank_account_number",
    "bank_branch_code",
    "bank_account_type",
)
# Bank account numbers stay out of the audit trail.
_AUDIT_EXCLUDE = ("bank_account_number",)


def _parse_policy_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key in _TEXT_FIELDS:
        value = payload.get(key)
        if value is not None and str(value).strip():
            fields[key] = str(value).strip()
    if payload.get("premium_amount") is not None:
        amount = parse_amount(payload["premium_amount"])
        if amount <= 0:
            raise InvalidRequestError("INVALID_AMOUNT", "premium_amount must be greater than zero")
        fields["premium_amount"] = amount
    frequency = payload.get("frequency")
    if frequency is not None:
        if frequency not in POLICY_FREQUENCIES:
            raise InvalidRequestError(
                "INVALID_FREQUENCY",
                f"frequency must be one of: {', '.join(POLICY_FREQUENCIES)}",
            )
        fields["frequency"] = frequency
    status = payload.get("status")
    if status is not None:
        if status not in POLICY_STATUSES:
            raise InvalidRequestError(
                "INVALID_POLICY_STATUS",
                f"status must be one of: {', '.join(POLICY_STATUSES)}",
            )
        fields["status"] = status
    next_date = payload.get("next_collection_date")
    if next_date is not None:
        try:
            fields["next_collection_date"] = date.fromisoformat(str(next_date)[:10])
        except ValueError as exc:
            raise InvalidRequestError(
                "INVALID_DATE", "next_collection_date must be an ISO date (YYYY-MM-DD)"
            ) from exc
    grace = payload.get("grace_period_days")
    if grace is not None:
        if isinstance(grace, bool) or not isinstance(grace, int) or grace < 0:
            raise InvalidRequestError(
                "INVALID_GRACE_PERIOD", "grace_period_days must be a non-negative integer"
            )
        fields["grace_period_days"] = grace
    return fields


async def upsert_policy(
    session: AsyncSession,
    *,
    captive_id: str,
    payload: Any,
    changed_by: str | None = None,
    request: Request | None = None,
) -> tuple[Policy, bool]:
    """Create or update a policy by number within the calling captive."""
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("INVALID_REQUEST", "Body must be a JSON object")
    policy_number = str(payload.get("policy_number") or "").strip()
    if not policy_number:
        raise InvalidRequestError("MISSING_POLICY_NUMBER", "policy_number is required")
    fields = _parse_policy_fields(payload)

    existing = await policies_repo.get_policy_by_number(session, policy_number)
    if existing is not None and existing.cell_captive_id != captive_id:
        raise ConflictError(
            "POLICY_OWNED_BY_OTHER_CAPTIVE",
            "Policy number is already registered to another cell captive",
        )

    now = utc_now()
    if existing is None:
        missing = [key for key in ("client_name", "premium_amount") if key not in fields]
        if missing:
            raise InvalidRequestError(
                "MISSING_REQUIRED_FIELDS",
                f"Creating a policy requires: {', '.join(missing)}",
                details={"missing": missing},
            )
        policy = Policy(
            id=uuid4().hex,
            policy_number=policy_number,
            cell_captive_id=captive_id,
            frequency="monthly",
            status="active",
            bank_account_type="current",
            grace_period_days=7,
            created_at=now,
            updated_at=now,
        )
        for key, value in fields.items():
            setattr(policy, key, value)
        session.add(policy)
        await session.commit()
        logger.info("policy_created captive_id=%s policy=%s", captive_id, policy_number)
        await record_audit_trail(
            table_name="policies",
            record_id=policy.id,
            action="INSERT",
            new_values=snapshot(policy, exclude=_AUDIT_EXCLUDE),
            changed_by=changed_by,
            request=request,
        )
        return policy, True

    if not fields:
        raise InvalidRequestError("NO_UPDATE_FIELDS", "No valid update fields provided")
    before = snapshot(existing, exclude=_AUDIT_EXCLUDE)
    for key, value in fields.items():
        setattr(existing, key, value)
    existing.updated_at = now
    await session.commit()
    await record_audit_trail(
        table_name="policies",
        record_id=existing.id,
        action="UPDATE",
        old_values=before,
        new_values=snapshot(existing, exclude=_AUDIT_EXCLUDE),
        changed_by=changed_by,
        request=request,
    )
    return existing, False


def serialize_policy(policy: Policy) -> dict[str, Any]:
    return {
        "id": policy.id,
        "policy_number": policy.policy_number,
        "client_name": policy.client_name,
        "client_email": policy.client_email,
        "client_phone": policy.client_phone,
        "premium_amount": float(policy.premium_amount),
        "frequency": policy.frequency,
        "status": policy.status,
        "next_collection_date": isoformat(policy.next_collection_date),
        "grace_period_days": policy.grace_period_days,
        "created_at": isoformat(policy.created_at),
        "updated_at": isoformat(policy.updated_at),
    }
