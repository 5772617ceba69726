"""SQLModel ORM tables for the pipeline job store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel

DEFAULT_DEPARTMENT = "creative"


class Workflow(SQLModel, table=True):
    __tablename__ = "workflows"  # type: ignore[bad-override]

    workflow_id: str = Field(primary_key=True)
    company_name: str = Field(index=True)
    project_name: str = ""
    department: str = Field(default=DEFAULT_DEPARTMENT, index=True)
    autonomy_level: str = Field(default="supervised")
    status: str = Field(default="requested", index=True)
    pipeline_stage: str | None = None
    spend_cap_cents: int | None = None
    revision_cooldown_until: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    feedback_updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    published_url: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PipelineJob(SQLModel, table=True):
    __tablename__ = "pipeline_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_pipeline_jobs_queue", "status", "created_at"),
        Index("idx_pipeline_jobs_workflow_type", "workflow_id", "job_type", "status"),
    )

    job_id: str = Field(primary_key=True)
    workflow_id: str = Field(
        sa_column=Column(
            ForeignKey("workflows.workflow_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    job_type: str = Field(index=True)
    status: str = Field(index=True)
    department: str = Field(default=DEFAULT_DEPARTMENT, index=True)
    payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    failure_class: str | None = Field(default=None, index=True)
    worker_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entries"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_ledger_entries_time", "created_at"),
        Index("idx_ledger_entries_department_time", "department", "created_at"),
    )

    entry_id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(index=True)
    workflow_id: str = Field(index=True)
    department: str = Field(default=DEFAULT_DEPARTMENT)
    category: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ApprovalEvent(SQLModel, table=True):
    __tablename__ = "approval_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_approval_events_gate", "gate", "workflow_id", "job_id"),)

    event_id: int | None = Field(default=None, primary_key=True)
    workflow_id: str = Field(index=True)
    job_id: str | None = Field(default=None, index=True)
    gate: str
    actor: str = "operator"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLogEntry(SQLModel, table=True):
    __tablename__ = "audit_log"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_audit_log_event_time", "event", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    event: str
    level: str = "info"
    job_id: str | None = Field(default=None, index=True)
    workflow_id: str | None = Field(default=None, index=True)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
