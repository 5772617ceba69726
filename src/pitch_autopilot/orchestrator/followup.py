"""Follow-up graph builder: decides the next stage after a job completes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from pitch_autopilot.orchestrator.advisory import advisory
from pitch_autopilot.orchestrator.handlers.base import StageResult
from pitch_autopilot.orchestrator.models import (
    AutonomyLevel,
    JobCreate,
    JobStatus,
    JobType,
    JobView,
    ReviewVerdict,
    WorkflowView,
)
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.storage.common import utc_now

logger = logging.getLogger(__name__)

STAGE_SEQUENCE: dict[JobType, JobType | None] = {
    JobType.PULL: JobType.EXTRACT_NARRATIVE,
    JobType.EXTRACT_NARRATIVE: JobType.AGENTIC_BUILD,
    JobType.GENERATE_COPY: JobType.AGENTIC_BUILD,
    JobType.AGENTIC_BUILD: JobType.REVIEW,
    JobType.REVIEW: JobType.PUSH,
    JobType.REVISE: JobType.REVIEW,
    JobType.PULL_FEEDBACK: JobType.REVISE,
    JobType.PUSH: None,
    JobType.HEALTH_CHECK: None,
}

# Always created pending, whatever the autonomy level.
ALWAYS_GATED_JOB_TYPES = frozenset({JobType.GENERATE_COPY, JobType.AGENTIC_BUILD})

_ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.QUEUED, JobStatus.RUNNING)


@dataclass(slots=True)
class FollowUpOutcome:
    created_job: JobView | None = None
    skipped_reason: str | None = None


class FollowUpBuilder:
    def __init__(self, *, repository: PipelineRepository) -> None:
        self.repository = repository

    def build(
        self,
        *,
        job: JobView,
        workflow: WorkflowView,
        result: StageResult,
        now: datetime | None = None,
    ) -> FollowUpOutcome:
        with advisory(
            self.repository,
            action="set-pipeline-stage",
            job_id=job.job_id,
            workflow_id=workflow.workflow_id,
        ):
            self.repository.set_workflow_stage(
                workflow_id=workflow.workflow_id,
                stage=job.job_type.value,
            )

        next_type = STAGE_SEQUENCE[job.job_type]
        if next_type is None:
            return FollowUpOutcome(skipped_reason="terminal-stage")
        if not result.continue_pipeline:
            return self._skip(job, next_type, "nothing-to-do")

        if job.job_type == JobType.REVIEW and result.verdict in {None, ReviewVerdict.FAIL}:
            self.repository.add_audit(
                event="follow-up-blocked",
                level="warning",
                job_id=job.job_id,
                workflow_id=workflow.workflow_id,
                details={
                    "job_type": job.job_type.value,
                    "next_job_type": next_type.value,
                    "verdict": result.verdict.value if result.verdict else None,
                },
            )
            return FollowUpOutcome(skipped_reason="review-verdict")

        if next_type == JobType.REVISE:
            if self.repository.has_active_job(
                workflow_id=workflow.workflow_id,
                job_types=(JobType.REVISE,),
            ):
                return self._skip(job, next_type, "revise-in-progress")
            current = now or utc_now()
            cooldown = workflow.revision_cooldown_until
            if cooldown is not None and cooldown > current:
                return self._skip(job, next_type, "revision-cooldown")

        if self.repository.has_active_job(
            workflow_id=workflow.workflow_id,
            job_types=(next_type,),
            statuses=_ACTIVE_STATUSES,
        ):
            return self._skip(job, next_type, "already-active")

        status = initial_status(
            job_type=next_type,
            autonomy=workflow.autonomy_level,
            verdict=result.verdict,
        )
        try:
            created = self.repository.insert_job(
                JobCreate(
                    workflow_id=workflow.workflow_id,
                    job_type=next_type,
                    status=status,
                    payload={"source_job_id": job.job_id, **result.follow_up_payload},
                    max_attempts=job.max_attempts,
                ),
            )
        except (SQLAlchemyError, RuntimeError) as error:
            logger.error(
                "Could not create %s follow-up for job %s: %s",
                next_type.value,
                job.job_id,
                error,
            )
            self.repository.add_audit(
                event="follow-up-job-failed",
                level="error",
                job_id=job.job_id,
                workflow_id=workflow.workflow_id,
                details={"next_job_type": next_type.value, "error": str(error)},
            )
            return FollowUpOutcome(skipped_reason="insert-failed")

        self.repository.add_audit(
            event="follow-up-job-created",
            job_id=created.job_id,
            workflow_id=workflow.workflow_id,
            details={
                "source_job_id": job.job_id,
                "job_type": next_type.value,
                "status": status.value,
            },
        )
        return FollowUpOutcome(created_job=created)

    def _skip(self, job: JobView, next_type: JobType, reason: str) -> FollowUpOutcome:
        self.repository.add_audit(
            event="follow-up-skipped",
            job_id=job.job_id,
            workflow_id=job.workflow_id,
            details={"next_job_type": next_type.value, "reason": reason},
        )
        return FollowUpOutcome(skipped_reason=reason)


def initial_status(
    *,
    job_type: JobType,
    autonomy: AutonomyLevel,
    verdict: ReviewVerdict | None = None,
) -> JobStatus:
    if job_type in ALWAYS_GATED_JOB_TYPES or verdict == ReviewVerdict.CONDITIONAL:
        return JobStatus.PENDING
    if autonomy == AutonomyLevel.FULL_AUTO:
        return JobStatus.QUEUED
    return JobStatus.PENDING
