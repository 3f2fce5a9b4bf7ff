"""create premium collection schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "cell_captives",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("contact_phone", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_cell_captives_code", "cell_captives", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column(
            "cell_captive_id",
            sa.String(),
            sa.ForeignKey("cell_captives.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key_name", sa.String(length=100), nullable=False),
        sa.Column("key_prefix", sa.String(length=16), nullable=False),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("permissions", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_api_keys_cell_captive_id", "api_keys", ["cell_captive_id"], unique=False)
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    op.create_table(
        "policies",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("policy_number", sa.String(length=100), nullable=False),
        sa.Column("cell_captive_id", sa.String(), sa.ForeignKey("cell_captives.id"), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("client_email", sa.String(length=255), nullable=True),
        sa.Column("client_phone", sa.String(length=50), nullable=True),
        sa.Column("premium_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("frequency", sa.String(length=20), nullable=False, server_default="monthly"),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="active"),
        sa.Column("mandate_reference", sa.String(length=100), nullable=True),
        sa.Column("bank_account_number", sa.String(length=50), nullable=True),
        sa.Column("bank_branch_code", sa.String(length=20), nullable=True),
        sa.Column("bank_account_type", sa.String(length=20), nullable=False, server_default="current"),
        sa.Column("next_collection_date", sa.Date(), nullable=True),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="7"),
        *_timestamps(),
    )
    op.create_index("ix_policies_policy_number", "policies", ["policy_number"], unique=True)
    op.create_index("ix_policies_cell_captive_id", "policies", ["cell_captive_id"], unique=False)
    op.create_index("ix_policies_captive_status", "policies", ["cell_captive_id", "status"], unique=False)

    op.create_table(
        "collections",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("collection_reference", sa.String(length=100), nullable=False),
        sa.Column("policy_id", sa.String(), sa.ForeignKey("policies.id"), nullable=False),
        sa.Column("cell_captive_id", sa.String(), sa.ForeignKey("cell_captives.id"), nullable=False),
        sa.Column("collection_type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("collection_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("investec_reference", sa.String(length=100), nullable=True),
        sa.Column("created_by", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_by", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_collections_collection_reference", "collections", ["collection_reference"], unique=True
    )
    op.create_index("ix_collections_policy_id", "collections", ["policy_id"], unique=False)
    op.create_index("ix_collections_cell_captive_id", "collections", ["cell_captive_id"], unique=False)
    op.create_index("ix_collections_collection_date", "collections", ["collection_date"], unique=False)
    op.create_index(
        "ix_collections_policy_date", "collections", ["policy_id", "collection_date"], unique=False
    )
    op.create_index(
        "ix_collections_captive_status", "collections", ["cell_captive_id", "status"], unique=False
    )

    op.create_table(
        "reconciliation_records",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("collection_id", sa.String(), sa.ForeignKey("collections.id"), nullable=False),
        sa.Column("investec_reference", sa.String(length=100), nullable=True),
        sa.Column("bank_reference", sa.String(length=100), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="matched"),
        sa.Column("reconciled_by", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    # One reconciliation row per collection; webhook retries upsert on this index.
    op.create_index(
        "ix_reconciliation_records_collection_id",
        "reconciliation_records",
        ["collection_id"],
        unique=True,
    )

    op.create_table(
        "audit_trail",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("table_name", sa.String(length=100), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("old_values", postgresql.JSONB(), nullable=True),
        sa.Column("new_values", postgresql.JSONB(), nullable=True),
        sa.Column("changed_by", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_trail_created_at", "audit_trail", ["created_at"], unique=False)
    op.create_index(
        "ix_audit_trail_table_record", "audit_trail", ["table_name", "record_id"], unique=False
    )

    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("cell_captive_id", sa.String(), sa.ForeignKey("cell_captives.id"), nullable=True),
        sa.Column("endpoint", sa.String(length=500), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("headers", postgresql.JSONB(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_logs_cell_captive_id", "webhook_logs", ["cell_captive_id"], unique=False)
    op.create_index(
        "ix_webhook_logs_captive_created",
        "webhook_logs",
        ["cell_captive_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_webhook_logs_captive_created", table_name="webhook_logs")
    op.drop_index("ix_webhook_logs_cell_captive_id", table_name="webhook_logs")
    op.drop_table("webhook_logs")
    op.drop_index("ix_audit_trail_table_record", table_name="audit_trail")
    op.drop_index("ix_audit_trail_created_at", table_name="audit_trail")
    op.drop_table("audit_trail")
    op.drop_index("ix_reconciliation_records_collection_id", table_name="reconciliation_records")
    op.drop_table("reconciliation_records")
    op.drop_index("ix_collections_captive_status", table_name="collections")
    op.drop_index("ix_collections_policy_date", table_name="collections")
    op.drop_index("ix_collections_collection_date", table_name="collections")
    op.drop_index("ix_collections_cell_captive_id", table_name="collections")
    op.drop_index("ix_collections_policy_id", table_name="collections")
    op.drop_index("ix_collections_collection_reference", table_name="collections")
    op.drop_table("collections")
    op.drop_index("ix_policies_captive_status", table_name="policies")
    op.drop_index("ix_policies_cell_captive_id", table_name="policies")
    op.drop_index("ix_policies_policy_number", table_name="policies")
    op.drop_table("policies")
    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_index("ix_api_keys_cell_captive_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_table("users")
    op.drop_index("ix_cell_captives_code", table_name="cell_captives")
    op.drop_table("cell_captives")
