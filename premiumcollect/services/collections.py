from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import logging
import secrets
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from premiumcollect.core.config import get_settings
from premiumcollect.core.errors import DomainError, InvalidRequestError, NotFoundError
from premiumcollect.core.timeutils import isoformat, utc_now, utc_today
from premiumcollect.domain.models import (
    COLLECTION_STATUSES,
    COLLECTION_TERMINAL_STATUSES,
    COLLECTION_TYPES,
    AuditTrailEntry,
    Collection,
    Policy,
    ReconciliationRecord,
)
from premiumcollect.persistence.repos import collections as collections_repo
from premiumcollect.persistence.repos import policies as policies_repo
from premiumcollect.services.audit import build_audit_entry, snapshot, write_audit_entries


logger = logging.getLogger(__name__)


class BulkUpdateRolledBack(DomainError):
    status_code = 422

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        super().__init__(
            "BULK_UPDATE_ROLLED_BACK",
            f"Bulk update rolled back: {len(errors)} item(s) failed",
            details={
                "committed": False,
                "processed": 0,
                "error_count": len(errors),
                "results": [],
                "errors": errors,
            },
        )


@dataclass(frozen=True)
class CollectionPatch:
    collection_reference: str | None = None
    policy_number: str | None = None
    collection_date: date | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    bank_reference: str | None = None
    transaction_date: date | None = None


@dataclass
class CollectionUpdate:
    collection: Collection
    policy: Policy
    created: bool
    previous_status: str | None
    before: dict[str, Any] | None
    after: dict[str, Any]
    reconciliation: ReconciliationRecord | None = None
    reconciliation_before: dict[str, Any] | None = None

    def summary(self) -> dict[str, Any]:
        collection = self.collection
        return {
            "collection_id": collection.id,
            "collection_reference": collection.collection_reference,
            "policy_number": self.policy.policy_number,
            "client_name": self.policy.client_name,
            "created": self.created,
            "previous_status": self.previous_status,
            "new_status": collection.status,
            "amount": float(collection.amount) if collection.amount is not None else None,
            "failure_reason": collection.failure_reason,
            "investec_reference": collection.investec_reference,
            "processed_at": isoformat(collection.processed_at),
            "updated_at": isoformat(collection.updated_at),
            "reconciliation_status": self.reconciliation.status if self.reconciliation else None,
        }


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_date(value: Any, *, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise InvalidRequestError(
            "INVALID_DATE", f"{field_name} must be an ISO date (YYYY-MM-DD)"
        ) from exc


def parse_amount(value: Any) -> Decimal:
    # Money is carried as Decimal with cent precision; bools are not amounts.
    if isinstance(value, bool):
        raise InvalidRequestError("INVALID_AMOUNT", "amount must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidRequestError("INVALID_AMOUNT", "amount must be a number") from exc
    if not amount.is_finite() or amount < 0:
        raise InvalidRequestError("INVALID_AMOUNT", "amount must be a non-negative number")
    return amount.quantize(Decimal("0.01"))


def validate_patch(payload: Any, *, require_identifier: bool = True) -> CollectionPatch:
    """Validate a collection update body before anything is resolved or written.

    Null values are treated as absent. Raises ``InvalidRequestError`` with
    MISSING_IDENTIFIER, INVALID_STATUS or NO_UPDATE_FIELDS, in that order.
    """
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("INVALID_ITEM", "Update must be a JSON object")

    collection_reference = _clean_str(payload.get("collection_reference"))
    policy_number = _clean_str(payload.get("policy_number"))
    if require_identifier and not collection_reference and not policy_number:
        raise InvalidRequestError(
            "MISSING_IDENTIFIER", "Either collection_reference or policy_number is required"
        )

    fields: dict[str, Any] = {}
    status = payload.get("status")
    if status is not None:
        if not isinstance(status, str) or status not in COLLECTION_STATUSES:
            raise InvalidRequestError(
                "INVALID_STATUS",
                f"status must be one of: {', '.join(COLLECTION_STATUSES)}",
            )
        fields["status"] = status
    if payload.get("amount") is not None:
        fields["amount"] = parse_amount(payload["amount"])
    failure_reason = _clean_str(payload.get("failure_reason"))
    if failure_reason is not None:
        fields["failure_reason"] = failure_reason
    investec_reference = _clean_str(payload.get("investec_reference"))
    if investec_reference is not None:
        fields["investec_reference"] = investec_reference

    if not fields:
        raise InvalidRequestError("NO_UPDATE_FIELDS", "No valid update fields provided")

    return CollectionPatch(
        collection_reference=collection_reference,
        policy_number=policy_number,
        collection_date=_parse_date(payload.get("collection_date"), field_name="collection_date"),
        fields=fields,
        bank_reference=_clean_str(payload.get("bank_reference")),
        transaction_date=_parse_date(payload.get("transaction_date"), field_name="transaction_date"),
    )


def generate_collection_reference(now: datetime | None = None) -> str:
    moment = now or utc_now()
    return f"COL-{int(moment.timestamp() * 1000)}-{secrets.token_hex(3).upper()}"


async def resolve_existing(
    session: AsyncSession, captive_id: str, collection_reference: str
) -> Collection:
    collection = await collections_repo.get_collection_for_captive(
        session, captive_id, collection_reference
    )
    if collection is None:
        raise NotFoundError("COLLECTION_NOT_FOUND", "Collection not found")
    return collection


async def resolve_or_create(
    session: AsyncSession,
    captive_id: str,
    policy_number: str,
    collection_date: date | None = None,
    initial_status: str | None = None,
    amount: Decimal | None = None,
) -> tuple[Collection, bool]:
    """Find the policy's newest collection on a date, creating an ad-hoc one if none exists."""
    policy = await policies_repo.get_policy_for_captive(session, captive_id, policy_number)
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found")
    target_date = collection_date or utc_today()
    existing = await collections_repo.latest_collection_for_policy_on(session, policy.id, target_date)
    if existing is not None:
        return existing, False

    now = utc_now()
    collection = Collection(
        id=uuid4().hex,
        collection_reference=generate_collection_reference(now),
        policy_id=policy.id,
        # Owner is copied from the policy so the two can never disagree.
        cell_captive_id=policy.cell_captive_id,
        collection_type="adhoc",
        amount=amount if amount is not None else policy.premium_amount,
        collection_date=target_date,
        status=initial_status or "pending",
        retry_count=0,
        max_retries=2,
        created_at=now,
        updated_at=now,
    )
    session.add(collection)
    await session.flush()
    logger.info(
        "collection_created_from_webhook captive_id=%s policy=%s reference=%s",
        captive_id,
        policy_number,
        collection.collection_reference,
    )
    return collection, True


def apply_patch(collection: Collection, patch: CollectionPatch, now: datetime) -> None:
    # Sparse update: only present fields change.
    for key, value in patch.fields.items():
        setattr(collection, key, value)
    status = patch.fields.get("status")
    if status in COLLECTION_TERMINAL_STATUSES and collection.processed_at is None:
        collection.processed_at = now
    collection.updated_at = now


def _reconciliation_due(collection: Collection, patch: CollectionPatch) -> bool:
    if patch.fields.get("status") != "successful":
        return False
    return bool(patch.bank_reference or collection.investec_reference)


async def upsert_reconciliation(
    session: AsyncSession, collection: Collection, patch: CollectionPatch, now: datetime
) -> ReconciliationRecord:
    values: dict[str, Any] = {
        "investec_reference": collection.investec_reference,
        "bank_reference": patch.bank_reference,
        "amount": patch.fields.get("amount", collection.amount),
        "transaction_date": patch.transaction_date,
        "status": "matched",
        "reconciled_at": now,
    }
    # Absent references must not erase evidence stored by an earlier call.
    values = {key: value for key, value in values.items() if value is not None}
    return await collections_repo.upsert_reconciliation(
        session,
        collection_id=collection.id,
        values=values,
        now=now,
        insert_defaults={"transaction_date": collection.collection_date or utc_today()},
    )


async def _stage_update(
    session: AsyncSession,
    collection: Collection,
    patch: CollectionPatch,
    *,
    created: bool,
    now: datetime,
) -> CollectionUpdate:
    policy = await policies_repo.get_policy(session, collection.policy_id)
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found")
    previous_status = None if created else collection.status
    before = None if created else snapshot(collection)

    apply_patch(collection, patch, now)
    await session.flush()

    update = CollectionUpdate(
        collection=collection,
        policy=policy,
        created=created,
        previous_status=previous_status,
        before=before,
        after=snapshot(collection),
    )
    existing_reconciliation = await collections_repo.get_reconciliation(session, collection.id)
    if existing_reconciliation is not None:
        update.reconciliation_before = snapshot(existing_reconciliation)

    if _reconciliation_due(collection, patch):
        update.reconciliation = await upsert_reconciliation(session, collection, patch, now)
    elif existing_reconciliation is not None:
        update.reconciliation = existing_reconciliation
        # A failure reported after settlement is accepted; flag the bank match.
        if collection.status == "failed" and existing_reconciliation.status == "matched":
            existing_reconciliation.status = "disputed"
            existing_reconciliation.notes = "Collection reported failed after a matched settlement"
            existing_reconciliation.updated_at = now
            await session.flush()
            logger.warning(
                "reconciliation_disputed collection_id=%s reference=%s",
                collection.id,
                collection.collection_reference,
            )
    return update


async def _resolve_target(
    session: AsyncSession, captive_id: str, patch: CollectionPatch
) -> tuple[Collection, bool]:
    if patch.collection_reference:
        return await resolve_existing(session, captive_id, patch.collection_reference), False
    return await resolve_or_create(
        session,
        captive_id,
        patch.policy_number or "",
        patch.collection_date,
        patch.fields.get("status"),
        patch.fields.get("amount"),
    )


def _audit_entries(
    update: CollectionUpdate, *, changed_by: str | None, request: Request | None
) -> list[AuditTrailEntry]:
    entries = [
        build_audit_entry(
            table_name="collections",
            record_id=update.collection.id,
            action="INSERT" if update.created else "UPDATE",
            old_values=update.before,
            new_values=update.after,
            changed_by=changed_by,
            request=request,
        )
    ]
    if update.reconciliation is not None:
        after = snapshot(update.reconciliation)
        if after != update.reconciliation_before:
            entries.append(
                build_audit_entry(
                    table_name="reconciliation_records",
                    record_id=update.reconciliation.id,
                    action="UPDATE" if update.reconciliation_before else "INSERT",
                    old_values=update.reconciliation_before,
                    new_values=after,
                    changed_by=changed_by,
                    request=request,
                )
            )
    return entries


async def update_collection(
    session: AsyncSession,
    *,
    captive_id: str,
    payload: Any,
    changed_by: str | None = None,
    request: Request | None = None,
) -> CollectionUpdate:
    """Resolve, patch and reconcile one collection, then commit and audit it."""
    patch = validate_patch(payload)
    try:
        collection, created = await _resolve_target(session, captive_id, patch)
        update = await _stage_update(session, collection, patch, created=created, now=utc_now())
    except Exception:
        # Release any flushed ad-hoc insert before the failure is logged elsewhere.
        await session.rollback()
        raise
    await session.commit()
    await write_audit_entries(_audit_entries(update, changed_by=changed_by, request=request))
    return update


async def update_resolved_collection(
    session: AsyncSession,
    collection: Collection,
    payload: Any,
    *,
    changed_by: str | None = None,
    request: Request | None = None,
) -> CollectionUpdate:
    # Staff and path-addressed updates arrive with the collection already resolved.
    patch = validate_patch(payload, require_identifier=False)
    update = await _stage_update(session, collection, patch, created=False, now=utc_now())
    await session.commit()
    await write_audit_entries(_audit_entries(update, changed_by=changed_by, request=request))
    return update


def _item_identifier(item: Any) -> str | None:
    if not isinstance(item, Mapping):
        return None
    return _clean_str(item.get("collection_reference")) or _clean_str(item.get("policy_number"))


async def bulk_update_collections(
    session: AsyncSession,
    *,
    captive_id: str,
    items: Any,
    changed_by: str | None = None,
    request: Request | None = None,
) -> dict[str, Any]:
    """Apply a batch of updates atomically: one failed item rolls back every item."""
    if not isinstance(items, list) or not items:
        raise InvalidRequestError(
            "INVALID_COLLECTIONS_ARRAY", "collections must be a non-empty array"
        )
    max_items = get_settings().bulk_max_items
    if len(items) > max_items:
        raise InvalidRequestError(
            "BATCH_SIZE_EXCEEDED", f"Maximum {max_items} collections can be updated at once"
        )

    now = utc_now()
    updates: list[CollectionUpdate] = []
    errors: list[dict[str, Any]] = []
    try:
        for index, item in enumerate(items):
            try:
                patch = validate_patch(item)
                collection, created = await _resolve_target(session, captive_id, patch)
                updates.append(
                    await _stage_update(session, collection, patch, created=created, now=now)
                )
            except DomainError as exc:
                errors.append(
                    {
                        "index": index,
                        "identifier": _item_identifier(item),
                        "code": exc.code,
                        "message": exc.message,
                    }
                )
    except Exception:
        await session.rollback()
        raise
    if errors:
        await session.rollback()
        logger.info(
            "bulk_update_rolled_back captive_id=%s items=%d errors=%d",
            captive_id,
            len(items),
            len(errors),
        )
        raise BulkUpdateRolledBack(errors)
    await session.commit()

    audit_entries: list[AuditTrailEntry] = []
    for update in updates:
        audit_entries.extend(_audit_entries(update, changed_by=changed_by, request=request))
    await write_audit_entries(audit_entries)

    results = []
    for index, update in enumerate(updates):
        result = update.summary()
        result["index"] = index
        results.append(result)
    return {
        "committed": True,
        "processed": len(results),
        "error_count": 0,
        "results": results,
        "errors": [],
    }


def _collection_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    collection_type = payload.get("collection_type") or "adhoc"
    if collection_type not in COLLECTION_TYPES:
        raise InvalidRequestError(
            "INVALID_COLLECTION_TYPE",
            f"collection_type must be one of: {', '.join(COLLECTION_TYPES)}",
        )
    return {
        "collection_type": collection_type,
        "amount": parse_amount(payload["amount"]) if payload.get("amount") is not None else None,
        "collection_date": _parse_date(payload.get("collection_date"), field_name="collection_date"),
    }


async def _insert_collection(
    session: AsyncSession,
    policy: Policy,
    fields: dict[str, Any],
    *,
    changed_by: str | None,
    request: Request | None,
) -> Collection:
    if policy.status != "active":
        raise InvalidRequestError(
            "POLICY_INACTIVE", "Cannot create collection for inactive policy"
        )
    now = utc_now()
    collection = Collection(
        id=uuid4().hex,
        collection_reference=generate_collection_reference(now),
        policy_id=policy.id,
        cell_captive_id=policy.cell_captive_id,
        collection_type=fields["collection_type"],
        amount=fields["amount"] if fields["amount"] is not None else policy.premium_amount,
        collection_date=fields["collection_date"] or utc_today(),
        status="pending",
        retry_count=0,
        max_retries=2,
        created_by=changed_by,
        created_at=now,
        updated_at=now,
    )
    session.add(collection)
    await session.commit()
    await write_audit_entries(
        [
            build_audit_entry(
                table_name="collections",
                record_id=collection.id,
                action="INSERT",
                new_values=snapshot(collection),
                changed_by=changed_by,
                request=request,
            )
        ]
    )
    return collection


async def create_collection(
    session: AsyncSession,
    *,
    captive_id: str,
    payload: Any,
    changed_by: str | None = None,
    request: Request | None = None,
) -> tuple[Collection, Policy]:
    """Schedule a pending collection against one of the captive's active policies."""
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("INVALID_REQUEST", "Body must be a JSON object")
    policy_number = _clean_str(payload.get("policy_number"))
    if not policy_number:
        raise InvalidRequestError("MISSING_POLICY_NUMBER", "policy_number is required")
    fields = _collection_fields(payload)
    policy = await policies_repo.get_policy_for_captive(session, captive_id, policy_number)
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found")
    collection = await _insert_collection(
        session, policy, fields, changed_by=changed_by, request=request
    )
    return collection, policy


async def create_collection_for_policy(
    session: AsyncSession,
    *,
    payload: Any,
    changed_by: str | None = None,
    request: Request | None = None,
) -> tuple[Collection, Policy]:
    # Staff create by policy id; the owning captive always comes from the policy.
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("INVALID_REQUEST", "Body must be a JSON object")
    policy_id = _clean_str(payload.get("policy_id"))
    if not policy_id:
        raise InvalidRequestError("MISSING_POLICY_ID", "policy_id is required")
    fields = _collection_fields(payload)
    policy = await policies_repo.get_policy(session, policy_id)
    if policy is None:
        raise NotFoundError("POLICY_NOT_FOUND", "Policy not found")
    collection = await _insert_collection(
        session, policy, fields, changed_by=changed_by, request=request
    )
    return collection, policy


def serialize_collection(
    collection: Collection,
    policy: Policy | None = None,
    reconciliation_status: str | None = None,
) -> dict[str, Any]:
    data = {
        "id": collection.id,
        "collection_reference": collection.collection_reference,
        "policy_id": collection.policy_id,
        "cell_captive_id": collection.cell_captive_id,
        "collection_type": collection.collection_type,
        "amount": float(collection.amount),
        "collection_date": isoformat(collection.collection_date),
        "status": collection.status,
        "failure_reason": collection.failure_reason,
        "retry_count": collection.retry_count,
        "max_retries": collection.max_retries,
        "investec_reference": collection.investec_reference,
        "processed_at": isoformat(collection.processed_at),
        "created_at": isoformat(collection.created_at),
        "updated_at": isoformat(collection.updated_at),
        "reconciliation_status": reconciliation_status,
    }
    if policy is not None:
        data["policy_number"] = policy.policy_number
        data["client_name"] = policy.client_name
    return data


def collection_event(update: CollectionUpdate, *, cell_captive_name: str) -> dict[str, Any]:
    # Dashboard payload for collection_updated broadcasts.
    collection = update.collection
    return {
        "collection_id": collection.id,
        "collection_reference": collection.collection_reference,
        "policy_number": update.policy.policy_number,
        "client_name": update.policy.client_name,
        "previous_status": update.previous_status,
        "status": collection.status,
        "amount": float(collection.amount),
        "cell_captive": cell_captive_name,
        "updated_at": isoformat(collection.updated_at),
    }
