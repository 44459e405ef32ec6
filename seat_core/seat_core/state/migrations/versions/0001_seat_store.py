"""Create the seat store tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JsonType = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("owner_user_id", sa.String(64), nullable=False),
        sa.Column("plan_tier", sa.String(32), nullable=False),
        sa.Column("max_invited_users", sa.Integer(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(128), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(128), nullable=True),
        sa.Column("billing_interval", sa.String(16), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("billing_interval IN ('month', 'year')", name="ck_accounts_billing_interval"),
    )
    op.create_index("ix_accounts_subscription", "accounts", ["stripe_subscription_id"])

    op.create_table(
        "memberships",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("is_owner", sa.Boolean(), nullable=False),
        sa.Column("invited_by", sa.String(64), nullable=True),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seat_billing_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invite_token", sa.String(128), nullable=True),
        sa.Column("invite_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reassigned_to_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("role IN ('owner', 'admin', 'member', 'viewer')", name="ck_memberships_role"),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'disabled', 'reassigned')",
            name="ck_memberships_status",
        ),
    )
    op.create_index("ix_memberships_account_email", "memberships", ["account_id", "email"])
    op.create_index("ix_memberships_account_status", "memberships", ["account_id", "status"])
    op.create_index("ix_memberships_user", "memberships", ["user_id"])
    op.create_index("ix_memberships_invite_token", "memberships", ["invite_token"], unique=True)
    op.create_index("ix_memberships_billing_ends", "memberships", ["status", "seat_billing_ends_at"])
    # One live row per (account, email); tombstones are exempt.
    op.create_index(
        "uq_memberships_live_email",
        "memberships",
        ["account_id", "email"],
        unique=True,
        postgresql_where=sa.text("status <> 'reassigned'"),
        sqlite_where=sa.text("status <> 'reassigned'"),
    )
    # At most one owner row per account.
    op.create_index(
        "uq_memberships_single_owner",
        "memberships",
        ["account_id"],
        unique=True,
        postgresql_where=sa.text("is_owner"),
        sqlite_where=sa.text("is_owner"),
    )

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("name", sa.String(256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("assigned_to", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('open', 'in_progress', 'done', 'cancelled')",
            name="ck_tasks_status",
        ),
    )
    op.create_index("ix_tasks_account_assignee", "tasks", ["account_id", "assigned_to", "status"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("actor", sa.String(256), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(512), nullable=True),
        sa.Column("metadata_json", _JsonType, nullable=True),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("entry_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_account_created", "audit_log", ["account_id", "created_at"])
    op.create_index("ix_audit_account_action", "audit_log", ["account_id", "action"])
    op.create_index("ix_audit_entity", "audit_log", ["account_id", "entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("tasks")
    op.drop_table("profiles")
    op.drop_table("memberships")
    op.drop_table("accounts")
