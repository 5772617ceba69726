"""Add append-only cost ledger, approval events, and audit log."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ledger_entries",
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.String(), nullable=False),
        sa.Column("department", sa.String(), nullable=False, server_default="creative"),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("output_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index("ix_ledger_entries_job_id", "ledger_entries", ["job_id"], unique=False)
    op.create_index(
        "ix_ledger_entries_workflow_id",
        "ledger_entries",
        ["workflow_id"],
        unique=False,
    )
    op.create_index("idx_ledger_entries_time", "ledger_entries", ["created_at"], unique=False)
    op.create_index(
        "idx_ledger_entries_department_time",
        "ledger_entries",
        ["department", "created_at"],
        unique=False,
    )

    op.create_table(
        "approval_events",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("workflow_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("gate", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=False, server_default="operator"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index(
        "ix_approval_events_workflow_id",
        "approval_events",
        ["workflow_id"],
        unique=False,
    )
    op.create_index("ix_approval_events_job_id", "approval_events", ["job_id"], unique=False)
    op.create_index(
        "idx_approval_events_gate",
        "approval_events",
        ["gate", "workflow_id", "job_id"],
        unique=False,
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("level", sa.String(), nullable=False, server_default="info"),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("workflow_id", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_job_id", "audit_log", ["job_id"], unique=False)
    op.create_index("ix_audit_log_workflow_id", "audit_log", ["workflow_id"], unique=False)
    op.create_index("idx_audit_log_event_time", "audit_log", ["event", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("approval_events")
    op.drop_table("ledger_entries")
