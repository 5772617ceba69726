"""Shared handler contract: context in, stage result out, typed failures."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from pitch_autopilot.agent.client import ContentRequest, ContentService
from pitch_autopilot.agent.loop import AgenticLoopRunner
from pitch_autopilot.config import Settings
from pitch_autopilot.orchestrator.breaker import BudgetGuard
from pitch_autopilot.orchestrator.ledger import CostLedger
from pitch_autopilot.orchestrator.models import (
    FailureClass,
    JobView,
    ReviewVerdict,
    WorkflowView,
)
from pitch_autopilot.orchestrator.repository import PipelineRepository

if TYPE_CHECKING:
    from pitch_autopilot.orchestrator.handlers.cli import CliRunner

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


class StageError(RuntimeError):
    """Stage handler failure; the job is requeued or failed by the poller."""

    failure_class = FailureClass.UNEXPECTED


class PreconditionError(StageError):
    """Required input for the stage is missing."""

    failure_class = FailureClass.PRECONDITION


class OutputInvalidError(StageError):
    """The content service or a tool returned output the stage cannot use."""

    failure_class = FailureClass.OUTPUT_INVALID


class TransientStageError(StageError):
    failure_class = FailureClass.TRANSIENT


@dataclass(slots=True)
class StageResult:
    """Handler output; the follow-up fields steer the next stage."""

    payload: dict[str, Any] = field(default_factory=dict)
    verdict: ReviewVerdict | None = None
    follow_up_payload: dict[str, Any] = field(default_factory=dict)
    continue_pipeline: bool = True


@dataclass(slots=True)
class HandlerContext:
    """Everything a handler may touch while running one job."""

    job: JobView
    workflow: WorkflowView
    repository: PipelineRepository
    ledger: CostLedger
    budget_guard: BudgetGuard
    settings: Settings
    content_service: ContentService
    cli_runner: CliRunner

    @property
    def task_dir(self) -> Path:
        return self.settings.tasks_root / self.workflow.safe_name

    @property
    def app_dir(self) -> Path:
        return self.settings.apps_root / self.workflow.safe_name

    def loop_runner(self, *, max_turns: int | None = None) -> AgenticLoopRunner:
        return AgenticLoopRunner(
            content_service=self.content_service,
            ledger=self.ledger,
            budget_guard=self.budget_guard,
            max_turns=self.settings.agent.max_turns if max_turns is None else max_turns,
        )

    def complete_text(self, *, system: str, prompt: str, category: str | None = None) -> str:
        """Single content-service turn without tools, charged to the ledger."""

        response = self.content_service.create(
            ContentRequest(
                system=system,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.settings.agent.max_tokens,
            ),
        )
        self.ledger.record_usage(
            job=self.job,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            category=category,
        )
        text = response.text.strip()
        if not text:
            raise OutputInvalidError(
                f"Content service returned no text for {self.job.job_type.value}",
            )
        return text


class StageHandler(Protocol):
    def __call__(self, context: HandlerContext) -> StageResult:
        """Run one stage for the claimed job."""


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating a fenced block or prose around it."""

    candidates = [text.strip()]
    fenced = _JSON_FENCE.search(text)
    if fenced:
        candidates.insert(0, fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise OutputInvalidError("Expected a JSON object in content-service output")


def read_materials(directory: Path, *, suffixes: tuple[str, ...] = (".txt", ".md", ".csv")) -> str:
    """Concatenate text materials in a task directory, one headed block per file."""

    if not directory.is_dir():
        return ""
    blocks: list[str] = []
    for path in sorted(directory.rglob("*")):
        if path.is_file() and path.suffix.lower() in suffixes:
            relative = path.relative_to(directory).as_posix()
            blocks.append(f"--- {relative} ---\n{path.read_text('utf-8', errors='replace')}")
    return "\n\n".join(blocks)
