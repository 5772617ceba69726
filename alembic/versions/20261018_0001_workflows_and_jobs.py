"""Create workflow and pipeline job tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "workflows",
        sa.Column("workflow_id", sa.String(), nullable=False),
        sa.Column("company_name", sa.String(), nullable=False),
        sa.Column("project_name", sa.String(), nullable=False, server_default=""),
        sa.Column("department", sa.String(), nullable=False, server_default="creative"),
        sa.Column("autonomy_level", sa.String(), nullable=False, server_default="supervised"),
        sa.Column("status", sa.String(), nullable=False, server_default="requested"),
        sa.Column("pipeline_stage", sa.String(), nullable=True),
        sa.Column("spend_cap_cents", sa.Integer(), nullable=True),
        sa.Column("revision_cooldown_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("feedback_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("workflow_id"),
    )
    op.create_index("ix_workflows_company_name", "workflows", ["company_name"], unique=False)
    op.create_index("ix_workflows_department", "workflows", ["department"], unique=False)
    op.create_index("ix_workflows_status", "workflows", ["status"], unique=False)

    op.create_table(
        "pipeline_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("department", sa.String(), nullable=False, server_default="creative"),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflows.workflow_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_pipeline_jobs_workflow_id", "pipeline_jobs", ["workflow_id"], unique=False)
    op.create_index("ix_pipeline_jobs_job_type", "pipeline_jobs", ["job_type"], unique=False)
    op.create_index("ix_pipeline_jobs_status", "pipeline_jobs", ["status"], unique=False)
    op.create_index("ix_pipeline_jobs_department", "pipeline_jobs", ["department"], unique=False)
    op.create_index(
        "ix_pipeline_jobs_failure_class",
        "pipeline_jobs",
        ["failure_class"],
        unique=False,
    )
    op.create_index("ix_pipeline_jobs_worker_id", "pipeline_jobs", ["worker_id"], unique=False)
    op.create_index(
        "idx_pipeline_jobs_queue",
        "pipeline_jobs",
        ["status", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_pipeline_jobs_workflow_type",
        "pipeline_jobs",
        ["workflow_id", "job_type", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("pipeline_jobs")
    op.drop_table("workflows")
