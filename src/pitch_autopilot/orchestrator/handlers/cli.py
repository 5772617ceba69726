"""Stages delegated to the external workflow CLI: pull, push, pull-feedback."""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pitch_autopilot.orchestrator.advisory import advisory
from pitch_autopilot.orchestrator.handlers.base import (
    HandlerContext,
    PreconditionError,
    StageError,
    StageResult,
)
from pitch_autopilot.orchestrator.models import FailureClass
from pitch_autopilot.orchestrator.sanitization import first_lines

logger = logging.getLogger(__name__)


class CliStageError(StageError):
    """CLI invocation failed; ``transient`` marks timeouts and start failures."""

    failure_class = FailureClass.CLI_FAILURE

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class CliRunner:
    """Run the workflow CLI and parse its JSON stdout."""

    def __init__(self, *, command: Sequence[str], timeout_seconds: int = 180) -> None:
        if not command:
            raise ValueError("CLI command must not be empty")
        self.command = tuple(command)
        self.timeout_seconds = timeout_seconds

    def run(self, args: Sequence[str], *, cwd: Path | None = None) -> dict[str, Any]:
        argv = [*self.command, *args]
        logger.debug("Running CLI: %s", argv)
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                cwd=cwd,
                check=False,
            )
        except FileNotFoundError as error:
            raise CliStageError(f"CLI command not found: {self.command[0]}") from error
        except subprocess.TimeoutExpired as error:
            raise CliStageError(
                f"CLI timed out after {self.timeout_seconds}s",
                transient=True,
            ) from error
        except OSError as error:
            raise CliStageError(f"CLI failed to start: {error}", transient=True) from error

        if completed.returncode != 0:
            detail = first_lines(completed.stderr) or f"exit code {completed.returncode}"
            raise CliStageError(f"CLI failed: {detail}")

        stdout = completed.stdout.strip()
        if not stdout:
            return {}
        try:
            parsed = json.loads(stdout)
        except json.JSONDecodeError as error:
            raise CliStageError(f"CLI returned malformed JSON: {error}") from error
        if not isinstance(parsed, dict):
            raise CliStageError("CLI returned JSON that is not an object")
        return parsed


def handle_pull(context: HandlerContext) -> StageResult:
    """Fetch the workflow's mission and materials into its task directory."""

    context.task_dir.mkdir(parents=True, exist_ok=True)
    output = context.cli_runner.run(
        ["pull", context.workflow.workflow_id, "--dir", str(context.task_dir)],
    )
    files = sorted(
        path.relative_to(context.task_dir).as_posix()
        for path in context.task_dir.rglob("*")
        if path.is_file()
    )
    return StageResult(
        payload={
            "task_dir": str(context.task_dir),
            "files": files,
            "cli": output,
        },
    )


def handle_push(context: HandlerContext) -> StageResult:
    """Deploy the built app; requires an ``index.html`` in the app directory."""

    index = context.app_dir / "index.html"
    if not index.is_file():
        raise PreconditionError(f"No built app to push: {index} does not exist")

    output = context.cli_runner.run(
        ["push", context.workflow.workflow_id, "--dir", str(context.app_dir)],
    )
    url = output.get("url")
    if isinstance(url, str) and url:
        with advisory(
            context.repository,
            action="set-published-url",
            job_id=context.job.job_id,
            workflow_id=context.workflow.workflow_id,
        ):
            context.repository.set_published_url(
                workflow_id=context.workflow.workflow_id,
                url=url,
            )
    return StageResult(payload={"url": url, "cli": output})


def handle_pull_feedback(context: HandlerContext) -> StageResult:
    """Collect client feedback and hand it to the revise stage as revision notes."""

    output = context.cli_runner.run(["feedback", context.workflow.workflow_id])
    items = output.get("feedback") or []
    if not isinstance(items, list):
        raise CliStageError("CLI feedback output must contain a list under 'feedback'")

    notes = "\n".join(f"- {str(item).strip()}" for item in items if str(item).strip())
    context.task_dir.mkdir(parents=True, exist_ok=True)
    (context.task_dir / "feedback.json").write_text(
        json.dumps(output, ensure_ascii=False, indent=2),
        "utf-8",
    )
    return StageResult(
        payload={"feedback_count": len(items), "revision_notes": notes},
        follow_up_payload={"revision_notes": notes},
        continue_pipeline=bool(notes),
    )
