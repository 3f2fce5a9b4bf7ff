from __future__ import annotations

from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from premiumcollect.core.timeutils import utc_today
from premiumcollect.persistence.repos import collections as collections_repo


TREND_MONTHS = 12


def _months_back(today: date, months: int) -> date:
    # First day of the month `months - 1` months before today's month.
    index = today.year * 12 + (today.month - 1) - (months - 1)
    return date(index // 12, index % 12 + 1, 1)


def _money(value: Decimal | None) -> float:
    return float(value or 0)


def _collection_summary(rows: list[tuple[date, str, str, Any]]) -> dict[str, Any]:
    statuses = Counter(row[1] for row in rows)
    types = Counter(row[2] for row in rows)
    total_amount = sum((Decimal(row[3]) for row in rows), Decimal("0"))
    successful = [Decimal(row[3]) for row in rows if row[1] == "successful"]
    total = len(rows)
    return {
        "total_collections": total,
        "successful_collections": statuses.get("successful", 0),
        "failed_collections": statuses.get("failed", 0),
        "pending_collections": statuses.get("pending", 0),
        "recurring_collections": types.get("recurring", 0),
        "adhoc_collections": types.get("adhoc", 0),
        "total_amount": _money(total_amount),
        "successful_amount": _money(sum(successful, Decimal("0"))),
        "avg_successful_amount": _money(sum(successful, Decimal("0")) / len(successful)) if successful else 0.0,
        "success_rate": round(statuses.get("successful", 0) / total * 100, 2) if total else 0.0,
    }


def _policy_summary(rows: list[tuple[str, Any]]) -> dict[str, Any]:
    statuses = Counter(row[0] for row in rows)
    premiums = [Decimal(row[1]) for row in rows if row[1] is not None]
    return {
        "total_policies": len(rows),
        "active_policies": statuses.get("active", 0),
        "lapsed_policies": statuses.get("lapsed", 0),
        "cancelled_policies": statuses.get("cancelled", 0),
        "avg_premium_amount": _money(sum(premiums, Decimal("0")) / len(premiums)) if premiums else 0.0,
    }


def monthly_trends(rows: list[tuple[date, str, str, Any]], *, today: date) -> list[dict[str, Any]]:
    start = _months_back(today, TREND_MONTHS)
    buckets: dict[str, dict[str, Any]] = {}
    for collection_date, status, _type, amount in rows:
        if collection_date < start or collection_date > today:
            continue
        month = collection_date.strftime("%Y-%m")
        bucket = buckets.setdefault(
            month, {"month": month, "collections": 0, "amount": Decimal("0"), "successful": 0, "failed": 0}
        )
        bucket["collections"] += 1
        bucket["amount"] += Decimal(amount)
        if status == "successful":
            bucket["successful"] += 1
        elif status == "failed":
            bucket["failed"] += 1
    trends = sorted(buckets.values(), key=lambda bucket: bucket["month"], reverse=True)
    for bucket in trends:
        bucket["amount"] = _money(bucket["amount"])
    return trends


async def captive_info_counts(session: AsyncSession, captive_id: str) -> dict[str, Any]:
    collections = _collection_summary(await collections_repo.collection_rows(session, captive_id))
    policies = _policy_summary(await collections_repo.policy_rows(session, captive_id))
    return {
        "policy_count": policies["total_policies"],
        "active_policies": policies["active_policies"],
        "total_collections": collections["total_collections"],
        "successful_collections": collections["successful_collections"],
        "failed_collections": collections["failed_collections"],
        "pending_collections": collections["pending_collections"],
        "total_collected": collections["successful_amount"],
        "avg_collection_amount": collections["avg_successful_amount"],
    }


async def captive_statistics(
    session: AsyncSession,
    captive_id: str,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict[str, Any]:
    filtered = await collections_repo.collection_rows(
        session, captive_id, date_from=date_from, date_to=date_to
    )
    today = utc_today()
    recent = await collections_repo.collection_rows(
        session, captive_id, date_from=_months_back(today, TREND_MONTHS)
    )
    return {
        "collections": _collection_summary(filtered),
        "policies": _policy_summary(await collections_repo.policy_rows(session, captive_id)),
        "monthly_trends": monthly_trends(recent, today=today),
    }


async def collection_statistics(
    session: AsyncSession,
    *,
    captive_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict[str, Any]:
    rows = await collections_repo.collection_rows(
        session, captive_id, date_from=date_from, date_to=date_to
    )
    return _collection_summary(rows)
