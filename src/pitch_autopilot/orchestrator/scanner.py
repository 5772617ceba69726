"""Workflow scanner: turns workflow-state changes into first jobs and alerts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pitch_autopilot.orchestrator.models import (
    AutonomyLevel,
    JobCreate,
    JobStatus,
    JobType,
    WorkflowView,
)
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.storage.common import utc_now

logger = logging.getLogger(__name__)

NEW_WORKFLOW_STATUS = "requested"
IN_PROGRESS_STATUS = "in_progress"


@dataclass(slots=True)
class ScanSummary:
    skipped: bool = False
    pulls_created: list[str] = field(default_factory=list)
    feedback_jobs_created: list[str] = field(default_factory=list)
    stale_workflows: list[str] = field(default_factory=list)


class WorkflowScanner:
    def __init__(
        self,
        *,
        repository: PipelineRepository,
        automation_enabled: bool = True,
        stale_after: timedelta = timedelta(hours=48),
        max_attempts: int = 3,
    ) -> None:
        self.repository = repository
        self.automation_enabled = automation_enabled
        self.stale_after = stale_after
        self.max_attempts = max_attempts

    def run_pass(self, *, now: datetime | None = None) -> ScanSummary:
        if not self.automation_enabled:
            logger.info("Automation disabled; scan skipped")
            return ScanSummary(skipped=True)

        current = now or utc_now()
        summary = ScanSummary()
        # Stale listing runs first, so workflows promoted by this pass are not alerted.
        for workflow in self.repository.list_workflows(
            status=IN_PROGRESS_STATUS,
            updated_before=current - self.stale_after,
            limit=None,
        ):
            self._alert_stale(workflow, summary, now=current)
        for workflow in self.repository.list_workflows(status=NEW_WORKFLOW_STATUS, limit=None):
            self._detect_new(workflow, summary)
        for workflow in self.repository.list_workflows(with_feedback=True, limit=None):
            self._detect_feedback(workflow, summary, now=current)
        return summary

    def _detect_new(self, workflow: WorkflowView, summary: ScanSummary) -> None:
        if workflow.autonomy_level == AutonomyLevel.MANUAL:
            return
        if self.repository.latest_job(workflow_id=workflow.workflow_id, job_type=JobType.PULL):
            return
        job = self.repository.insert_job(
            JobCreate(
                workflow_id=workflow.workflow_id,
                job_type=JobType.PULL,
                status=_initial_status(workflow),
                max_attempts=self.max_attempts,
            ),
        )
        self.repository.set_workflow_status(
            workflow_id=workflow.workflow_id,
            status=IN_PROGRESS_STATUS,
        )
        summary.pulls_created.append(job.job_id)

    def _alert_stale(self, workflow: WorkflowView, summary: ScanSummary, *, now: datetime) -> None:
        idle_hours = int((now - workflow.updated_at).total_seconds() // 3600)
        self.repository.add_audit(
            event="stale-workflow-alert",
            level="warning",
            workflow_id=workflow.workflow_id,
            details={
                "company_name": workflow.company_name,
                "pipeline_stage": workflow.pipeline_stage,
                "idle_hours": idle_hours,
            },
        )
        summary.stale_workflows.append(workflow.workflow_id)

    def _detect_feedback(
        self,
        workflow: WorkflowView,
        summary: ScanSummary,
        *,
        now: datetime,
    ) -> None:
        if workflow.feedback_updated_at is None:
            return
        # Wait out the cooldown so the follow-up revise is not skipped for it.
        if workflow.revision_cooldown_until is not None and workflow.revision_cooldown_until > now:
            return
        latest = self.repository.latest_job(
            workflow_id=workflow.workflow_id,
            job_type=JobType.PULL_FEEDBACK,
        )
        if latest is not None and latest.created_at >= workflow.feedback_updated_at:
            return
        if self.repository.has_active_job(
            workflow_id=workflow.workflow_id,
            job_types=(JobType.PULL_FEEDBACK, JobType.REVISE),
            statuses=(JobStatus.PENDING, JobStatus.QUEUED, JobStatus.RUNNING),
        ):
            return
        job = self.repository.insert_job(
            JobCreate(
                workflow_id=workflow.workflow_id,
                job_type=JobType.PULL_FEEDBACK,
                status=_initial_status(workflow),
                max_attempts=self.max_attempts,
            ),
        )
        summary.feedback_jobs_created.append(job.job_id)


def _initial_status(workflow: WorkflowView) -> JobStatus:
    if workflow.autonomy_level == AutonomyLevel.FULL_AUTO:
        return JobStatus.QUEUED
    return JobStatus.PENDING
