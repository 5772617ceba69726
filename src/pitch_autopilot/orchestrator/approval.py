"""Approval gate: promotes ``pending`` jobs to ``queued`` per autonomy policy.

Policy matrix:

- ``manual``: never auto-promoted.
- ``full_auto``: safe stages always; narrative-gated stages only once a
  ``narrative-approved`` event exists for the workflow; everything else.
- ``supervised``: safe stages always; everything else only with a
  ``job-admin-approved`` event for that specific job.

Each pass first runs stale-job recovery so crashed work re-enters the queue on
the same cadence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pitch_autopilot.orchestrator.models import (
    ApprovalGateName,
    AutonomyLevel,
    JobStatus,
    JobType,
    JobView,
    WorkflowView,
)
from pitch_autopilot.orchestrator.reaper import ReaperSummary, StaleJobReaper
from pitch_autopilot.orchestrator.repository import PipelineRepository

logger = logging.getLogger(__name__)

SAFE_JOB_TYPES = frozenset({JobType.PULL, JobType.PULL_FEEDBACK, JobType.HEALTH_CHECK})
NARRATIVE_GATED_JOB_TYPES = frozenset({JobType.GENERATE_COPY, JobType.AGENTIC_BUILD})

WAITING_FOR_ADMIN = "admin-approval"
WAITING_FOR_NARRATIVE = "narrative-approval"
WAITING_FOR_MANUAL = "manual-autonomy"


@dataclass(slots=True)
class ApprovalDecision:
    approve: bool
    reason: str
    waiting_for: str | None = None


@dataclass(slots=True)
class ApprovalPassSummary:
    skipped: bool = False
    approved: list[str] = field(default_factory=list)
    still_pending: list[str] = field(default_factory=list)
    reaper: ReaperSummary | None = None


def decide(
    *,
    job: JobView,
    autonomy: AutonomyLevel,
    narrative_approved: bool,
    admin_approved: bool,
) -> ApprovalDecision:
    """Pure policy decision for one pending job."""

    if autonomy == AutonomyLevel.MANUAL:
        return ApprovalDecision(False, "manual autonomy", WAITING_FOR_MANUAL)
    if job.job_type in SAFE_JOB_TYPES:
        return ApprovalDecision(True, "safe stage")
    if autonomy == AutonomyLevel.FULL_AUTO:
        if job.job_type in NARRATIVE_GATED_JOB_TYPES and not narrative_approved:
            return ApprovalDecision(False, "narrative not approved", WAITING_FOR_NARRATIVE)
        return ApprovalDecision(True, "full auto")
    if admin_approved:
        return ApprovalDecision(True, "admin approved")
    return ApprovalDecision(False, "supervised stage needs admin approval", WAITING_FOR_ADMIN)


class ApprovalGate:
    def __init__(
        self,
        *,
        repository: PipelineRepository,
        reaper: StaleJobReaper,
        automation_enabled: bool = True,
    ) -> None:
        self.repository = repository
        self.reaper = reaper
        self.automation_enabled = automation_enabled

    def run_pass(self, *, limit: int = 500) -> ApprovalPassSummary:
        if not self.automation_enabled:
            logger.info("Automation disabled; approval pass skipped")
            return ApprovalPassSummary(skipped=True)

        summary = ApprovalPassSummary(reaper=self.reaper.run_pass())
        pending = self.repository.list_jobs(
            status=JobStatus.PENDING,
            limit=limit,
            oldest_first=True,
        )
        workflows: dict[str, WorkflowView | None] = {}
        for job in pending:
            if job.workflow_id not in workflows:
                workflows[job.workflow_id] = self.repository.get_workflow(
                    workflow_id=job.workflow_id,
                )
            workflow = workflows[job.workflow_id]
            if workflow is None:
                summary.still_pending.append(job.job_id)
                continue
            self._evaluate(job=job, workflow=workflow, summary=summary)

        logger.info(
            "Approval pass: approved=%d still_pending=%d",
            len(summary.approved),
            len(summary.still_pending),
        )
        return summary

    def _evaluate(
        self,
        *,
        job: JobView,
        workflow: WorkflowView,
        summary: ApprovalPassSummary,
    ) -> None:
        decision = decide(
            job=job,
            autonomy=workflow.autonomy_level,
            narrative_approved=self.repository.has_approval_event(
                gate=ApprovalGateName.NARRATIVE_APPROVED,
                workflow_id=workflow.workflow_id,
            ),
            admin_approved=self.repository.has_approval_event(
                gate=ApprovalGateName.JOB_ADMIN_APPROVED,
                job_id=job.job_id,
            ),
        )
        details: dict[str, object] = {
            "job_type": job.job_type.value,
            "autonomy_level": workflow.autonomy_level.value,
            "reason": decision.reason,
        }
        if decision.approve:
            if self.repository.approve_pending_job(job_id=job.job_id, details=details):
                summary.approved.append(job.job_id)
            return

        summary.still_pending.append(job.job_id)
        self.repository.add_audit(
            event="job-still-pending",
            job_id=job.job_id,
            workflow_id=workflow.workflow_id,
            details={**details, "waiting_for": decision.waiting_for},
        )


def record_approval(
    repository: PipelineRepository,
    *,
    gate: ApprovalGateName,
    workflow_id: str,
    job_id: str | None = None,
    actor: str = "operator",
) -> None:
    """Append an approval event; the next gate pass picks it up."""

    if repository.get_workflow(workflow_id=workflow_id) is None:
        raise RuntimeError(f"Workflow not found: {workflow_id}")
    if gate == ApprovalGateName.JOB_ADMIN_APPROVED:
        if job_id is None:
            raise ValueError("Job approval requires a job id")
        job = repository.get_job(job_id=job_id)
        if job is None or job.workflow_id != workflow_id:
            raise RuntimeError(f"Job not found for workflow {workflow_id}: {job_id}")
    repository.add_approval_event(gate=gate, workflow_id=workflow_id, job_id=job_id, actor=actor)
