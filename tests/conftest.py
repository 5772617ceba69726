"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any

import pytest

from pitch_autopilot.agent.client import (
    ContentBlock,
    ContentRequest,
    ContentResponse,
    Usage,
)
from pitch_autopilot.config import PollerSettings, Settings
from pitch_autopilot.orchestrator.breaker import BudgetGuard
from pitch_autopilot.orchestrator.handlers import HandlerContext
from pitch_autopilot.orchestrator.ledger import CostLedger
from pitch_autopilot.orchestrator.models import (
    AutonomyLevel,
    JobCreate,
    JobStatus,
    JobType,
    JobView,
    WorkflowCreate,
    WorkflowView,
)
from pitch_autopilot.orchestrator.repository import PipelineRepository

TEST_MODEL = "claude-test"


class ScriptedContentService:
    """Replays queued responses in order and records every request."""

    def __init__(self, model: str = TEST_MODEL) -> None:
        self.model = model
        self.responses: list[ContentResponse] = []
        self.requests: list[ContentRequest] = []

    def reply_text(
        self,
        text: str,
        *,
        input_tokens: int = 1_000,
        output_tokens: int = 500,
    ) -> ScriptedContentService:
        self.responses.append(
            ContentResponse(
                stop_reason="end_turn",
                blocks=[ContentBlock(type="text", text=text)],
                usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
                model=self.model,
            ),
        )
        return self

    def reply_tools(
        self,
        *calls: tuple[str, dict[str, Any]],
        text: str = "",
        input_tokens: int = 1_000,
        output_tokens: int = 500,
    ) -> ScriptedContentService:
        blocks = [ContentBlock(type="text", text=text)] if text else []
        turn = len(self.responses) + len(self.requests)
        for index, (name, arguments) in enumerate(calls):
            blocks.append(
                ContentBlock(
                    type="tool_use",
                    id=f"toolu_{turn}_{index}",
                    name=name,
                    input=arguments,
                ),
            )
        self.responses.append(
            ContentResponse(
                stop_reason="tool_use",
                blocks=blocks,
                usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
                model=self.model,
            ),
        )
        return self

    def create(self, request: ContentRequest) -> ContentResponse:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("No scripted content response left")
        return self.responses.pop(0)


CliReply = dict[str, Any] | Exception | Callable[[Sequence[str]], dict[str, Any]]


class FakeCliRunner:
    """Stands in for the workflow CLI; replies are keyed by subcommand."""

    def __init__(self) -> None:
        self.replies: dict[str, CliReply] = {}
        self.calls: list[list[str]] = []

    def run(self, args: Sequence[str], *, cwd: Path | None = None) -> dict[str, Any]:
        self.calls.append(list(args))
        reply = self.replies.get(args[0], {})
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(args)
        return dict(reply)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[PipelineRepository]:
    repo = PipelineRepository(tmp_path / "pipeline.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "pipeline.db",
        workspace_root=tmp_path / "work",
        poller=PollerSettings(worker_id="worker-test", poll_interval_seconds=0.0),
    )


@pytest.fixture()
def content_service() -> ScriptedContentService:
    return ScriptedContentService()


@pytest.fixture()
def cli_runner() -> FakeCliRunner:
    return FakeCliRunner()


@pytest.fixture()
def make_workflow(repository: PipelineRepository) -> Callable[..., WorkflowView]:
    def _make(
        company_name: str = "Acme Robotics",
        *,
        autonomy_level: AutonomyLevel = AutonomyLevel.FULL_AUTO,
        **kwargs: Any,
    ) -> WorkflowView:
        return repository.create_workflow(
            WorkflowCreate(company_name=company_name, autonomy_level=autonomy_level, **kwargs),
        )

    return _make


@pytest.fixture()
def make_job(repository: PipelineRepository) -> Callable[..., JobView]:
    def _make(
        workflow: WorkflowView,
        job_type: JobType = JobType.PULL,
        *,
        status: JobStatus = JobStatus.QUEUED,
        **kwargs: Any,
    ) -> JobView:
        return repository.insert_job(
            JobCreate(
                workflow_id=workflow.workflow_id,
                job_type=job_type,
                status=status,
                **kwargs,
            ),
        )

    return _make


@pytest.fixture()
def make_context(
    repository: PipelineRepository,
    settings: Settings,
    content_service: ScriptedContentService,
    cli_runner: FakeCliRunner,
) -> Callable[..., HandlerContext]:
    def _make(job: JobView, workflow: WorkflowView) -> HandlerContext:
        return HandlerContext(
            job=job,
            workflow=workflow,
            repository=repository,
            ledger=CostLedger(repository=repository),
            budget_guard=BudgetGuard(
                repository=repository,
                job_cap_cents=settings.breaker.job_cost_cap_cents,
            ),
            settings=settings,
            content_service=content_service,
            cli_runner=cli_runner,  # type: ignore[arg-type]
        )

    return _make
