from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.domain.models import CellCaptive, Collection, Policy, ReconciliationRecord
from premiumcollect.persistence.db import dialect_name


async def get_collection(session: AsyncSession, collection_id: str) -> Collection | None:
    result = await session.execute(select(Collection).where(Collection.id == collection_id))
    return result.scalar_one_or_none()


async def get_collection_for_captive(
    session: AsyncSession, captive_id: str, collection_reference: str
) -> Collection | None:
    # Ensure captive scoping to prevent cross-tenant collection updates.
    result = await session.execute(
        select(Collection).where(
            Collection.collection_reference == collection_reference,
            Collection.cell_captive_id == captive_id,
        )
    )
    return result.scalar_one_or_none()


async def latest_collection_for_policy_on(
    session: AsyncSession, policy_id: str, collection_date: date
) -> Collection | None:
    # Several collections may share a date; the newest one is the update target.
    result = await session.execute(
        select(Collection)
        .where(Collection.policy_id == policy_id, Collection.collection_date == collection_date)
        .order_by(Collection.created_at.desc(), Collection.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_collections(
    session: AsyncSession,
    *,
    captive_id: str | None,
    status: str | None = None,
    collection_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    policy_number: str | None = None,
    client_name: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[tuple[Collection, Policy, CellCaptive, str | None]], int]:
    # captive_id=None is the staff view across every captive.
    stmt = (
        select(Collection, Policy, CellCaptive, ReconciliationRecord.status)
        .join(Policy, Policy.id == Collection.policy_id)
        .join(CellCaptive, CellCaptive.id == Collection.cell_captive_id)
        .outerjoin(ReconciliationRecord, ReconciliationRecord.collection_id == Collection.id)
    )
    if captive_id is not None:
        stmt = stmt.where(Collection.cell_captive_id == captive_id)
    if status:
        stmt = stmt.where(Collection.status == status)
    if collection_type:
        stmt = stmt.where(Collection.collection_type == collection_type)
    if date_from:
        stmt = stmt.where(Collection.collection_date >= date_from)
    if date_to:
        stmt = stmt.where(Collection.collection_date <= date_to)
    if policy_number:
        stmt = stmt.where(Policy.policy_number.ilike(f"%{policy_number}%"))
    if client_name:
        stmt = stmt.where(Policy.client_name.ilike(f"%{client_name}%"))
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(
        Collection.collection_date.desc(), Collection.created_at.desc(), Collection.id
    ).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return [(row[0], row[1], row[2], row[3]) for row in result.all()], int(total or 0)


async def get_reconciliation(
    session: AsyncSession, collection_id: str
) -> ReconciliationRecord | None:
    result = await session.execute(
        select(ReconciliationRecord)
        .where(ReconciliationRecord.collection_id == collection_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_reconciliation(
    session: AsyncSession,
    *,
    collection_id: str,
    values: dict[str, Any],
    now: datetime,
    insert_defaults: dict[str, Any] | None = None,
) -> ReconciliationRecord:
    # Upsert on collection_id so retried webhooks never duplicate bank evidence.
    # insert_defaults only apply when the row is new.
    insert_fn = pg_insert if dialect_name(session) == "postgresql" else sqlite_insert
    stmt = insert_fn(ReconciliationRecord).values(
        id=uuid4().hex,
        collection_id=collection_id,
        created_at=now,
        updated_at=now,
        **{**(insert_defaults or {}), **values},
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ReconciliationRecord.collection_id],
        set_={**values, "updated_at": now},
    )
    await session.execute(stmt)
    record = await get_reconciliation(session, collection_id)
    if record is None:
        raise RuntimeError(f"reconciliation upsert returned no row for {collection_id}")
    return record


async def list_reconciliation(
    session: AsyncSession,
    *,
    status: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[tuple[ReconciliationRecord, Collection]], int]:
    stmt = select(ReconciliationRecord, Collection).join(
        Collection, Collection.id == ReconciliationRecord.collection_id
    )
    if status:
        stmt = stmt.where(ReconciliationRecord.status == status)
    total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
    stmt = stmt.order_by(ReconciliationRecord.created_at.desc(), ReconciliationRecord.id)
    result = await session.execute(stmt.offset(offset).limit(limit))
    return [(row[0], row[1]) for row in result.all()], int(total or 0)


async def collection_rows(
    session: AsyncSession,
    captive_id: str | None,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[tuple[date, str, str, Any]]:
    # Aggregation happens in Python so month bucketing stays dialect-neutral.
    stmt = select(
        Collection.collection_date,
        Collection.status,
        Collection.collection_type,
        Collection.amount,
    )
    if captive_id is not None:
        stmt = stmt.where(Collection.cell_captive_id == captive_id)
    if date_from is not None:
        stmt = stmt.where(Collection.collection_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(Collection.collection_date <= date_to)
    result = await session.execute(stmt)
    return [(row[0], row[1], row[2], row[3]) for row in result.all()]


async def policy_rows(session: AsyncSession, captive_id: str) -> list[tuple[str, Any]]:
    result = await session.execute(
        select(Policy.status, Policy.premium_amount).where(Policy.cell_captive_id == captive_id)
    )
    return [(row[0], row[1]) for row in result.all()]
