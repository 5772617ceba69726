"""Domain models for the pipeline job store and its periodic passes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobType(str, Enum):
    """Closed set of pipeline stages; every member must have a handler."""

    PULL = "pull"
    EXTRACT_NARRATIVE = "extract-narrative"
    GENERATE_COPY = "generate-copy"
    AGENTIC_BUILD = "agentic-build"
    REVIEW = "review"
    REVISE = "revise"
    PUSH = "push"
    PULL_FEEDBACK = "pull-feedback"
    HEALTH_CHECK = "health-check"


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Stages that call the content-generation service and therefore spend money.
COST_INCURRING_TYPES = frozenset(
    {
        JobType.EXTRACT_NARRATIVE,
        JobType.GENERATE_COPY,
        JobType.AGENTIC_BUILD,
        JobType.REVIEW,
        JobType.REVISE,
    },
)


class AutonomyLevel(str, Enum):
    """How much human approval a workflow owner requires."""

    MANUAL = "manual"
    SUPERVISED = "supervised"
    FULL_AUTO = "full_auto"


class ApprovalGateName(str, Enum):
    NARRATIVE_APPROVED = "narrative-approved"
    JOB_ADMIN_APPROVED = "job-admin-approved"


class ReviewVerdict(str, Enum):
    PASS = "pass"
    CONDITIONAL = "conditional"
    FAIL = "fail"


class FailureClass(str, Enum):
    """Normalized failure classes persisted on the job row."""

    TRANSIENT = "transient"
    PRECONDITION = "precondition"
    CLI_FAILURE = "cli_failure"
    OUTPUT_INVALID = "output_invalid"
    UNEXPECTED = "unexpected"
    STALE = "stale"
    MAX_ATTEMPTS = "max_attempts"


@dataclass(slots=True)
class WorkflowCreate:
    """Input payload for registering a workflow owner record."""

    company_name: str
    project_name: str = ""
    workflow_id: str | None = None
    department: str = "creative"
    autonomy_level: AutonomyLevel = AutonomyLevel.SUPERVISED
    status: str = "requested"
    spend_cap_cents: int | None = None
    published_url: str | None = None


@dataclass(slots=True)
class WorkflowView:
    """Readable workflow view; the core reads autonomy, caps, and cooldown."""

    workflow_id: str
    company_name: str
    project_name: str
    department: str
    autonomy_level: AutonomyLevel
    status: str
    pipeline_stage: str | None
    spend_cap_cents: int | None
    revision_cooldown_until: datetime | None
    feedback_updated_at: datetime | None
    published_url: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def safe_name(self) -> str:
        """Filesystem-safe slug used for task and app directories."""

        chars = [ch if ch.isalnum() else "-" for ch in self.company_name.lower()]
        slug = "".join(chars)
        while "--" in slug:
            slug = slug.replace("--", "-")
        return slug.strip("-") or self.workflow_id


@dataclass(slots=True)
class JobCreate:
    """Input payload for inserting a pipeline job."""

    workflow_id: str
    job_type: JobType
    status: JobStatus = JobStatus.QUEUED
    payload: dict[str, Any] = field(default_factory=dict)
    max_attempts: int = 3
    job_id: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable job view for CLI and poller logic."""

    job_id: str
    workflow_id: str
    job_type: JobType
    status: JobStatus
    department: str
    payload: dict[str, Any]
    result: dict[str, Any] | None
    attempts: int
    max_attempts: int
    last_error: str | None
    failure_class: FailureClass | None
    worker_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class LedgerEntryView:
    entry_id: int
    job_id: str
    workflow_id: str
    department: str
    category: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_cents: int
    created_at: datetime


@dataclass(slots=True)
class AuditEntryView:
    """One structured audit-log record."""

    entry_id: int
    event: str
    level: str
    job_id: str | None
    workflow_id: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job with its audit trail."""

    job: JobView
    events: list[AuditEntryView]
    cost_cents: int
