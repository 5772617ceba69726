from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from pitch_autopilot.orchestrator.approval import (
    WAITING_FOR_ADMIN,
    WAITING_FOR_MANUAL,
    WAITING_FOR_NARRATIVE,
    ApprovalGate,
    decide,
    record_approval,
)
from pitch_autopilot.orchestrator.models import (
    ApprovalGateName,
    AutonomyLevel,
    JobStatus,
    JobType,
    JobView,
)
from pitch_autopilot.orchestrator.reaper import StaleJobReaper
from pitch_autopilot.storage.common import utc_now

pytestmark = [
    allure.epic("Approvals"),
    allure.feature("Autonomy Policy"),
]


def _job(job_type: JobType) -> JobView:
    now = utc_now()
    return JobView(
        job_id="job-1",
        workflow_id="wf-1",
        job_type=job_type,
        status=JobStatus.PENDING,
        department="creative",
        payload={},
        result=None,
        attempts=0,
        max_attempts=3,
        last_error=None,
        failure_class=None,
        worker_id=None,
        created_at=now,
        started_at=None,
        completed_at=None,
        updated_at=now,
    )


def _gate(repository, *, automation_enabled: bool = True) -> ApprovalGate:
    return ApprovalGate(
        repository=repository,
        reaper=StaleJobReaper(repository=repository),
        automation_enabled=automation_enabled,
    )


@pytest.mark.parametrize(
    ("job_type", "autonomy", "narrative", "admin", "approve", "waiting_for"),
    [
        (JobType.PULL, AutonomyLevel.MANUAL, True, True, False, WAITING_FOR_MANUAL),
        (JobType.PULL, AutonomyLevel.SUPERVISED, False, False, True, None),
        (JobType.HEALTH_CHECK, AutonomyLevel.SUPERVISED, False, False, True, None),
        (JobType.PULL_FEEDBACK, AutonomyLevel.FULL_AUTO, False, False, True, None),
        (
            JobType.AGENTIC_BUILD,
            AutonomyLevel.FULL_AUTO,
            False,
            False,
            False,
            WAITING_FOR_NARRATIVE,
        ),
        (JobType.AGENTIC_BUILD, AutonomyLevel.FULL_AUTO, True, False, True, None),
        (JobType.GENERATE_COPY, AutonomyLevel.FULL_AUTO, False, True, False, WAITING_FOR_NARRATIVE),
        (JobType.PUSH, AutonomyLevel.FULL_AUTO, False, False, True, None),
        (JobType.REVIEW, AutonomyLevel.SUPERVISED, True, False, False, WAITING_FOR_ADMIN),
        (JobType.REVIEW, AutonomyLevel.SUPERVISED, False, True, True, None),
        (JobType.AGENTIC_BUILD, AutonomyLevel.SUPERVISED, True, False, False, WAITING_FOR_ADMIN),
    ],
)
def test_decide_policy_matrix(  # noqa: PLR0913
    job_type: JobType,
    autonomy: AutonomyLevel,
    narrative: bool,
    admin: bool,
    approve: bool,
    waiting_for: str | None,
) -> None:
    decision = decide(
        job=_job(job_type),
        autonomy=autonomy,
        narrative_approved=narrative,
        admin_approved=admin,
    )

    assert decision.approve is approve
    assert decision.waiting_for == waiting_for


def test_full_auto_build_waits_for_narrative_approval(
    repository,
    make_workflow,
    make_job,
) -> None:
    workflow = make_workflow(autonomy_level=AutonomyLevel.FULL_AUTO)
    build = make_job(workflow, JobType.AGENTIC_BUILD, status=JobStatus.PENDING)
    pull = make_job(workflow, JobType.PULL, status=JobStatus.PENDING)

    first = _gate(repository).run_pass()

    assert first.approved == [pull.job_id]
    assert first.still_pending == [build.job_id]
    waiting = repository.list_audit(event="job-still-pending", job_id=build.job_id)
    assert waiting[0].details["waiting_for"] == WAITING_FOR_NARRATIVE
    assert waiting[0].details["autonomy_level"] == "full_auto"

    record_approval(
        repository,
        gate=ApprovalGateName.NARRATIVE_APPROVED,
        workflow_id=workflow.workflow_id,
        actor="alice",
    )
    second = _gate(repository).run_pass()

    assert second.approved == [build.job_id]
    job = repository.get_job(job_id=build.job_id)
    assert job is not None
    assert job.status == JobStatus.QUEUED
    approved = repository.list_audit(event="job-approved", job_id=build.job_id)
    assert approved[0].details["job_type"] == "agentic-build"


def test_supervised_job_needs_its_own_admin_approval(
    repository,
    make_workflow,
    make_job,
) -> None:
    workflow = make_workflow(autonomy_level=AutonomyLevel.SUPERVISED)
    review = make_job(workflow, JobType.REVIEW, status=JobStatus.PENDING)
    push = make_job(workflow, JobType.PUSH, status=JobStatus.PENDING)
    record_approval(
        repository,
        gate=ApprovalGateName.JOB_ADMIN_APPROVED,
        workflow_id=workflow.workflow_id,
        job_id=review.job_id,
    )

    summary = _gate(repository).run_pass()

    assert summary.approved == [review.job_id]
    assert summary.still_pending == [push.job_id]


def test_manual_workflow_is_never_promoted(repository, make_workflow, make_job) -> None:
    workflow = make_workflow(autonomy_level=AutonomyLevel.MANUAL)
    job = make_job(workflow, JobType.PULL, status=JobStatus.PENDING)

    summary = _gate(repository).run_pass()

    assert summary.still_pending == [job.job_id]
    waiting = repository.list_audit(event="job-still-pending", job_id=job.job_id)
    assert waiting[0].details["waiting_for"] == WAITING_FOR_MANUAL


def test_kill_switch_skips_the_pass(repository, make_workflow, make_job) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.PULL, status=JobStatus.PENDING)

    summary = _gate(repository, automation_enabled=False).run_pass()

    assert summary.skipped is True
    assert summary.reaper is None
    stored = repository.get_job(job_id=job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.PENDING


def test_pass_runs_stale_recovery_first(repository, make_workflow, make_job) -> None:
    workflow = make_workflow()
    make_job(workflow, JobType.PULL, job_id="job-stale")
    repository.claim_next_job(worker_id="w1")
    gate = ApprovalGate(
        repository=repository,
        reaper=StaleJobReaper(repository=repository, stale_after=timedelta(0)),
    )

    summary = gate.run_pass()

    assert summary.reaper is not None
    assert summary.reaper.requeued == ["job-stale"]


def test_record_approval_validates_targets(repository, make_workflow, make_job) -> None:
    workflow = make_workflow("One")
    other = make_workflow("Two")
    foreign_job = make_job(other, JobType.REVIEW, status=JobStatus.PENDING)

    with pytest.raises(RuntimeError, match="Workflow not found"):
        record_approval(
            repository,
            gate=ApprovalGateName.NARRATIVE_APPROVED,
            workflow_id="missing",
        )
    with pytest.raises(ValueError, match="requires a job id"):
        record_approval(
            repository,
            gate=ApprovalGateName.JOB_ADMIN_APPROVED,
            workflow_id=workflow.workflow_id,
        )
    with pytest.raises(RuntimeError, match="Job not found for workflow"):
        record_approval(
            repository,
            gate=ApprovalGateName.JOB_ADMIN_APPROVED,
            workflow_id=workflow.workflow_id,
            job_id=foreign_job.job_id,
        )
