"""Controllers for pitch-autopilot CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from pitch_autopilot.agent.client import AnthropicContentService
from pitch_autopilot.config import Settings
from pitch_autopilot.orchestrator.approval import ApprovalGate, record_approval
from pitch_autopilot.orchestrator.breaker import CircuitBreaker
from pitch_autopilot.orchestrator.handlers import CliRunner
from pitch_autopilot.orchestrator.ledger import CostLedger
from pitch_autopilot.orchestrator.models import (
    ApprovalGateName,
    AutonomyLevel,
    JobCreate,
    JobStatus,
    JobType,
    WorkflowCreate,
)
from pitch_autopilot.orchestrator.poller import Poller
from pitch_autopilot.orchestrator.reaper import StaleJobReaper
from pitch_autopilot.orchestrator.reports import render_breaker_lines, render_cost_lines
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.orchestrator.scanner import WorkflowScanner
from pitch_autopilot.storage.common import start_of_utc_day, utc_now


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for poller execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class PassCommand:
    """CLI input for one-shot periodic passes (approvals, reaper, scan, breaker)."""

    db_path: Path | None


@dataclass(slots=True)
class EnqueueJobCommand:
    db_path: Path | None
    workflow_id: str
    job_type: str
    pending: bool
    payload_json: str | None


@dataclass(slots=True)
class ListJobsCommand:
    db_path: Path | None
    status: str | None
    workflow_id: str | None
    limit: int


@dataclass(slots=True)
class JobIdCommand:
    """CLI input for inspect/retry/cancel operations."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class AddWorkflowCommand:
    db_path: Path | None
    company_name: str
    project_name: str
    department: str
    autonomy_level: str
    spend_cap_cents: int | None


@dataclass(slots=True)
class ListWorkflowsCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ApproveCommand:
    db_path: Path | None
    workflow_id: str
    job_id: str | None
    actor: str


@dataclass(slots=True)
class CostReportCommand:
    db_path: Path | None
    days: int
    output_format: str = "table"


class AutopilotCliController:
    """Coordinates poller, periodic passes, and inspection CLI operations."""

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            poller = Poller(
                repository=repository,
                settings=settings,
                content_service=AnthropicContentService(
                    model=settings.agent.model,
                    max_tokens=settings.agent.max_tokens,
                ),
                cli_runner=CliRunner(
                    command=settings.agent.cli_command,
                    timeout_seconds=settings.agent.cli_timeout_seconds,
                ),
            )
            summary = (
                poller.run_once()
                if command.once
                else poller.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Poller summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"follow_ups={summary.follow_ups} breaker_trips={summary.breaker_trips} "
            f"idle_polls={summary.idle_polls}",
        ]

    def run_approvals(self, command: PassCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            gate = ApprovalGate(
                repository=repository,
                reaper=_reaper(repository, settings),
                automation_enabled=settings.automation_enabled,
            )
            summary = gate.run_pass()

        if summary.skipped:
            return ["Automation disabled; approval pass skipped."]
        lines = [
            f"Approval pass: approved={len(summary.approved)} "
            f"still_pending={len(summary.still_pending)}",
        ]
        if summary.reaper is not None:
            lines.append(
                f"Stale recovery: requeued={len(summary.reaper.requeued)} "
                f"failed={len(summary.reaper.failed)}",
            )
        lines.extend(f"  approved {job_id}" for job_id in summary.approved)
        return lines

    def run_reaper(self, command: PassCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            summary = _reaper(repository, settings).run_pass()
        return [
            f"Stale recovery: requeued={len(summary.requeued)} failed={len(summary.failed)} "
            f"skipped={len(summary.skipped)}",
        ]

    def run_scan(self, command: PassCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            scanner = WorkflowScanner(
                repository=repository,
                automation_enabled=settings.automation_enabled,
                stale_after=timedelta(hours=settings.recovery.stale_workflow_hours),
                max_attempts=settings.poller.max_attempts,
            )
            summary = scanner.run_pass()

        if summary.skipped:
            return ["Automation disabled; scan skipped."]
        return [
            f"Scan: pulls_created={len(summary.pulls_created)} "
            f"feedback_jobs_created={len(summary.feedback_jobs_created)} "
            f"stale_workflows={len(summary.stale_workflows)}",
        ]

    def enqueue_job(self, command: EnqueueJobCommand) -> list[str]:
        settings = _settings(command.db_path)
        payload: dict[str, Any] = {}
        if command.payload_json:
            parsed = json.loads(command.payload_json)
            if not isinstance(parsed, dict):
                raise ValueError("--payload must be a JSON object")
            payload = parsed
        with _repository(settings) as repository:
            job = repository.insert_job(
                JobCreate(
                    workflow_id=command.workflow_id,
                    job_type=JobType(command.job_type),
                    status=JobStatus.PENDING if command.pending else JobStatus.QUEUED,
                    payload=payload,
                    max_attempts=settings.poller.max_attempts,
                ),
            )
        return [
            f"Job enqueued: job_id={job.job_id} type={job.job_type.value} "
            f"status={job.status.value}",
        ]

    def list_jobs(self, command: ListJobsCommand) -> list[str]:
        settings = _settings(command.db_path)
        status = JobStatus(command.status.strip().lower()) if command.status else None
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                status=status,
                workflow_id=command.workflow_id,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} type={job.job_type.value} status={job.status.value} "
                f"workflow={job.workflow_id} attempt={job.attempts}/{job.max_attempts} "
                f"created_at={job.created_at.isoformat()}",
            )
        return lines

    def inspect_job(self, command: JobIdCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            details = repository.get_job_details(job_id=command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        lines = [
            f"Job: {job.job_id}",
            f"Workflow: {job.workflow_id}",
            f"Type: {job.job_type.value}",
            f"Status: {job.status.value}",
            f"Attempt: {job.attempts}/{job.max_attempts}",
            f"Failure class: {job.failure_class.value if job.failure_class else '-'}",
            f"Error: {job.last_error or '-'}",
            f"Cost: ${details.cost_cents / 100:.2f}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(f"  {event.created_at.isoformat()} [{event.level}] {event.event}")
        return lines

    def retry_job(self, command: JobIdCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            retried = repository.retry_failed_job(job_id=command.job_id)
        return [f"Job retried: {command.job_id} -> new job {retried.job_id}"]

    def cancel_job(self, command: JobIdCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            repository.cancel_job(job_id=command.job_id)
        return [f"Job cancelled: {command.job_id}"]

    def add_workflow(self, command: AddWorkflowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            workflow = repository.create_workflow(
                WorkflowCreate(
                    company_name=command.company_name,
                    project_name=command.project_name,
                    department=command.department,
                    autonomy_level=AutonomyLevel(command.autonomy_level),
                    spend_cap_cents=command.spend_cap_cents,
                ),
            )
        return [
            f"Workflow added: workflow_id={workflow.workflow_id} "
            f"company={workflow.company_name} autonomy={workflow.autonomy_level.value}",
        ]

    def list_workflows(self, command: ListWorkflowsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            workflows = repository.list_workflows(status=command.status, limit=command.limit)

        lines = [f"Workflows: {len(workflows)}"]
        for workflow in workflows:
            lines.append(
                f"  {workflow.workflow_id} company={workflow.company_name} "
                f"status={workflow.status} stage={workflow.pipeline_stage or '-'} "
                f"autonomy={workflow.autonomy_level.value} department={workflow.department}",
            )
        return lines

    def approve_narrative(self, command: ApproveCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            record_approval(
                repository,
                gate=ApprovalGateName.NARRATIVE_APPROVED,
                workflow_id=command.workflow_id,
                actor=command.actor,
            )
        return [f"Narrative approved for workflow {command.workflow_id}"]

    def approve_job(self, command: ApproveCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            record_approval(
                repository,
                gate=ApprovalGateName.JOB_ADMIN_APPROVED,
                workflow_id=command.workflow_id,
                job_id=command.job_id,
                actor=command.actor,
            )
        return [f"Job approved: {command.job_id}"]

    def cost_report(self, command: CostReportCommand) -> list[str]:
        settings = _settings(command.db_path)
        since = start_of_utc_day(utc_now()) - timedelta(days=max(0, command.days - 1))
        with _repository(settings) as repository:
            entries = repository.list_ledger_entries(since=since, limit=100_000)
        return render_cost_lines(
            entries=entries,
            since=since,
            settings=settings.breaker,
            output_format=command.output_format,
        )

    def breaker_status(self, command: PassCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            breaker = CircuitBreaker(
                repository=repository,
                ledger=CostLedger(repository=repository),
                settings=settings.breaker,
            )
            decision = breaker.check(record=False)
        return render_breaker_lines(decision=decision, settings=settings.breaker)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _reaper(repository: PipelineRepository, settings: Settings) -> StaleJobReaper:
    return StaleJobReaper(
        repository=repository,
        stale_after=timedelta(minutes=settings.recovery.stale_running_minutes),
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[PipelineRepository]:
    repository = PipelineRepository(
        db_path=settings.db_path,
        claim_mode=settings.poller.claim_mode,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
