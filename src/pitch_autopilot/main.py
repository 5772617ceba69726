"""CLI entrypoint for pitch-autopilot."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from pitch_autopilot import __version__
from pitch_autopilot.orchestrator.controllers import (
    AddWorkflowCommand,
    ApproveCommand,
    AutopilotCliController,
    CostReportCommand,
    EnqueueJobCommand,
    JobIdCommand,
    ListJobsCommand,
    ListWorkflowsCommand,
    PassCommand,
    WorkerCommand,
)
from pitch_autopilot.orchestrator.models import AutonomyLevel, JobStatus, JobType

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AutopilotCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="pitch-autopilot")
def pitch_autopilot() -> None:
    """Pipeline orchestration core: poller, approvals, recovery, and reports."""

    logging.basicConfig(
        level=os.getenv("PITCH_AUTOPILOT_LOG_LEVEL", "INFO").strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@pitch_autopilot.group()
def worker() -> None:
    """Job poller."""


@worker.command("run")
@DB_PATH_OPTION
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one poll tick or keep polling.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls (default: never).",
)
def worker_run(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int | None,
) -> None:
    """Claim and run jobs."""

    _emit(
        CONTROLLER.run_worker,
        WorkerCommand(
            db_path=db_path,
            once=once,
            max_jobs=max_jobs,
            max_idle_polls=max_idle_polls,
        ),
    )


@pitch_autopilot.group()
def approvals() -> None:
    """Approval gate."""


@approvals.command("run")
@DB_PATH_OPTION
def approvals_run(db_path: Path | None) -> None:
    """Recover stale jobs, then promote pending jobs per autonomy policy."""

    _emit(CONTROLLER.run_approvals, PassCommand(db_path=db_path))


@pitch_autopilot.group()
def reaper() -> None:
    """Stale-job recovery."""


@reaper.command("run")
@DB_PATH_OPTION
def reaper_run(db_path: Path | None) -> None:
    """Requeue or fail jobs stuck in running."""

    _emit(CONTROLLER.run_reaper, PassCommand(db_path=db_path))


@pitch_autopilot.group()
def scan() -> None:
    """Workflow scanner."""


@scan.command("run")
@DB_PATH_OPTION
def scan_run(db_path: Path | None) -> None:
    """Create first jobs for new workflows and feedback, flag stale workflows."""

    _emit(CONTROLLER.run_scan, PassCommand(db_path=db_path))


@pitch_autopilot.group()
def jobs() -> None:
    """Job inspection and operator actions."""


@jobs.command("enqueue")
@DB_PATH_OPTION
@click.option("--workflow-id", required=True, help="Workflow id.")
@click.option(
    "--type",
    "job_type",
    type=click.Choice([item.value for item in JobType], case_sensitive=False),
    required=True,
    help="Job type.",
)
@click.option("--pending", is_flag=True, help="Insert as pending (requires approval).")
@click.option("--payload", "payload_json", default=None, help="JSON object payload.")
def jobs_enqueue(
    db_path: Path | None,
    workflow_id: str,
    job_type: str,
    pending: bool,
    payload_json: str | None,
) -> None:
    """Insert a job for a workflow."""

    _emit(
        CONTROLLER.enqueue_job,
        EnqueueJobCommand(
            db_path=db_path,
            workflow_id=workflow_id,
            job_type=job_type,
            pending=pending,
            payload_json=payload_json,
        ),
    )


@jobs.command("list")
@DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice([item.value for item in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--workflow-id", default=None, help="Optional workflow filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    status: str | None,
    workflow_id: str | None,
    limit: int,
) -> None:
    """List jobs, newest first."""

    _emit(
        CONTROLLER.list_jobs,
        ListJobsCommand(db_path=db_path, status=status, workflow_id=workflow_id, limit=limit),
    )


@jobs.command("inspect")
@DB_PATH_OPTION
@click.option("--job-id", required=True, help="Job id.")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with its audit trail."""

    _emit(CONTROLLER.inspect_job, JobIdCommand(db_path=db_path, job_id=job_id))


@jobs.command("retry")
@DB_PATH_OPTION
@click.option("--job-id", required=True, help="Job id.")
def jobs_retry(db_path: Path | None, job_id: str) -> None:
    """Insert a fresh queued copy of a failed or cancelled job."""

    _emit(CONTROLLER.retry_job, JobIdCommand(db_path=db_path, job_id=job_id))


@jobs.command("cancel")
@DB_PATH_OPTION
@click.option("--job-id", required=True, help="Job id.")
def jobs_cancel(db_path: Path | None, job_id: str) -> None:
    """Cancel a pending or queued job."""

    _emit(CONTROLLER.cancel_job, JobIdCommand(db_path=db_path, job_id=job_id))


@pitch_autopilot.group()
def workflows() -> None:
    """Workflow records."""


@workflows.command("add")
@DB_PATH_OPTION
@click.option("--company", "company_name", required=True, help="Company name.")
@click.option("--project", "project_name", default="", help="Project name.")
@click.option("--department", default="creative", show_default=True, help="Tenant tag.")
@click.option(
    "--autonomy",
    "autonomy_level",
    type=click.Choice([item.value for item in AutonomyLevel], case_sensitive=False),
    default=AutonomyLevel.SUPERVISED.value,
    show_default=True,
    help="Approval policy.",
)
@click.option(
    "--spend-cap-cents",
    type=click.IntRange(min=1),
    default=None,
    help="Optional lifetime spend cap for this workflow.",
)
def workflows_add(  # noqa: PLR0913
    db_path: Path | None,
    company_name: str,
    project_name: str,
    department: str,
    autonomy_level: str,
    spend_cap_cents: int | None,
) -> None:
    """Register a workflow."""

    _emit(
        CONTROLLER.add_workflow,
        AddWorkflowCommand(
            db_path=db_path,
            company_name=company_name,
            project_name=project_name,
            department=department,
            autonomy_level=autonomy_level,
            spend_cap_cents=spend_cap_cents,
        ),
    )


@workflows.command("list")
@DB_PATH_OPTION
@click.option("--status", default=None, help="Optional status filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max workflows to print.",
)
def workflows_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List workflows."""

    _emit(
        CONTROLLER.list_workflows,
        ListWorkflowsCommand(db_path=db_path, status=status, limit=limit),
    )


@pitch_autopilot.group()
def approve() -> None:
    """Record approval events."""


@approve.command("narrative")
@DB_PATH_OPTION
@click.option("--workflow-id", required=True, help="Workflow id.")
@click.option("--actor", default="operator", show_default=True, help="Who approved.")
def approve_narrative(db_path: Path | None, workflow_id: str, actor: str) -> None:
    """Approve a workflow's narrative; unblocks copy and build under full autonomy."""

    _emit(
        CONTROLLER.approve_narrative,
        ApproveCommand(db_path=db_path, workflow_id=workflow_id, job_id=None, actor=actor),
    )


@approve.command("job")
@DB_PATH_OPTION
@click.option("--workflow-id", required=True, help="Workflow id.")
@click.option("--job-id", required=True, help="Job id.")
@click.option("--actor", default="operator", show_default=True, help="Who approved.")
def approve_job(db_path: Path | None, workflow_id: str, job_id: str, actor: str) -> None:
    """Admin-approve one pending job of a supervised workflow."""

    _emit(
        CONTROLLER.approve_job,
        ApproveCommand(db_path=db_path, workflow_id=workflow_id, job_id=job_id, actor=actor),
    )


@pitch_autopilot.group()
def costs() -> None:
    """Cost ledger reports."""


@costs.command("report")
@DB_PATH_OPTION
@click.option(
    "--days",
    type=click.IntRange(min=1, max=90),
    default=1,
    show_default=True,
    help="Window in UTC days, including today.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
)
def costs_report(db_path: Path | None, days: int, output_format: str) -> None:
    """Spend by department and category."""

    _emit(
        CONTROLLER.cost_report,
        CostReportCommand(db_path=db_path, days=days, output_format=output_format),
    )


@pitch_autopilot.group()
def breaker() -> None:
    """Circuit breaker."""


@breaker.command("status")
@DB_PATH_OPTION
def breaker_status(db_path: Path | None) -> None:
    """Show whether new work may start right now."""

    _emit(CONTROLLER.breaker_status, PassCommand(db_path=db_path))


def _emit(action: Callable[[Any], list[str]], command: object) -> None:
    try:
        lines = action(command)
    except (RuntimeError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    pitch_autopilot()
