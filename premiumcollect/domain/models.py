from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Lifecycle vocabularies shared by services, routes and the bootstrap seed.
COLLECTION_STATUSES = ("pending", "submitted", "successful", "failed", "cancelled")
COLLECTION_TERMINAL_STATUSES = ("successful", "failed")
COLLECTION_TYPES = ("recurring", "adhoc")
POLICY_STATUSES = ("active", "lapsed", "cancelled")
POLICY_FREQUENCIES = ("monthly", "quarterly", "annually")

# Use JSONB on Postgres while keeping SQLite-backed tests schema-compatible.
JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CellCaptive(Base):
    __tablename__ = "cell_captives"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class User(Base):
    __tablename__ = "users"

    # Staff accounts for the back-office dashboard; tenants never get user rows.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    cell_captive_id: Mapped[str] = mapped_column(
        String, ForeignKey("cell_captives.id", ondelete="CASCADE"), index=True
    )
    key_name: Mapped[str] = mapped_column(String(100))
    # Only a SHA-256 digest of the token is stored; the prefix identifies it in listings.
    key_prefix: Mapped[str] = mapped_column(String(16))
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    # Raw scope strings; parsed into Scope values once per authentication.
    permissions: Mapped[list[str]] = mapped_column(JSONType, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class Policy(Base):
    __tablename__ = "policies"
    __table_args__ = (
        Index("ix_policies_captive_status", "cell_captive_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    policy_number: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    cell_captive_id: Mapped[str] = mapped_column(String, ForeignKey("cell_captives.id"), index=True)
    client_name: Mapped[str] = mapped_column(String(255))
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    premium_amount: Mapped[Decimal] = mapped_column(Money)
    frequency: Mapped[str] = mapped_column(String(20), default="monthly")
    status: Mapped[str] = mapped_column(String(50), default="active")
    # Debit order mandate fields used when bank files are generated.
    mandate_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bank_branch_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bank_account_type: Mapped[str] = mapped_column(String(20), default="current")
    next_collection_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    grace_period_days: Mapped[int] = mapped_column(Integer, default=7)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class Collection(Base):
    __tablename__ = "collections"
    __table_args__ = (
        Index("ix_collections_policy_date", "policy_id", "collection_date"),
        Index("ix_collections_captive_status", "cell_captive_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    collection_reference: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    policy_id: Mapped[str] = mapped_column(String, ForeignKey("policies.id"), index=True)
    # Denormalized owner; must always match the policy's captive.
    cell_captive_id: Mapped[str] = mapped_column(String, ForeignKey("cell_captives.id"), index=True)
    collection_type: Mapped[str] = mapped_column(String(20))
    amount: Mapped[Decimal] = mapped_column(Money)
    collection_date: Mapped[date] = mapped_column(Date, index=True)
    status: Mapped[str] = mapped_column(String(50), default="pending")
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Retry bookkeeping only; nothing schedules retries from these counters.
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=2)
    investec_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set once on the first transition into a terminal status.
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class ReconciliationRecord(Base):
    __tablename__ = "reconciliation_records"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Unique so webhook retries upsert instead of duplicating bank evidence.
    collection_id: Mapped[str] = mapped_column(
        String, ForeignKey("collections.id"), unique=True, index=True
    )
    investec_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="matched")
    reconciled_by: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    reconciled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class AuditTrailEntry(Base):
    __tablename__ = "audit_trail"
    __table_args__ = (
        Index("ix_audit_trail_table_record", "table_name", "record_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    table_name: Mapped[str] = mapped_column(String(100))
    record_id: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String(20))
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # Null means the change came from a captive API key rather than staff.
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )


class WebhookLog(Base):
    __tablename__ = "webhook_logs"
    __table_args__ = (
        Index("ix_webhook_logs_captive_created", "cell_captive_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    cell_captive_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("cell_captives.id"), nullable=True, index=True
    )
    endpoint: Mapped[str] = mapped_column(String(500))
    method: Mapped[str] = mapped_column(String(10))
    headers: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    payload: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
