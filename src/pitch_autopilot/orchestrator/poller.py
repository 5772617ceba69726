"""Poller: one tick is kill switch, breaker, claim, dispatch, record, follow-up."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass

from pitch_autopilot.agent.client import ContentService
from pitch_autopilot.config import Settings
from pitch_autopilot.orchestrator.breaker import BudgetGuard, CircuitBreaker
from pitch_autopilot.orchestrator.failure_classifier import classify_failure
from pitch_autopilot.orchestrator.followup import FollowUpBuilder
from pitch_autopilot.orchestrator.handlers import (
    HANDLERS,
    CliRunner,
    HandlerContext,
    StageHandler,
    StageResult,
)
from pitch_autopilot.orchestrator.ledger import CostLedger
from pitch_autopilot.orchestrator.models import FailureClass, JobStatus, JobType, JobView
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.orchestrator.sanitization import sanitize_error

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PollerRunSummary:
    """Aggregate poller counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    follow_ups: int = 0
    breaker_trips: int = 0
    idle_polls: int = 0
    skipped_disabled: int = 0

    def add(self, other: PollerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.follow_ups += other.follow_ups
        self.breaker_trips += other.breaker_trips
        self.idle_polls += other.idle_polls
        self.skipped_disabled += other.skipped_disabled


class Poller:
    """Claims and runs one job per tick; many pollers may share one store."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: PipelineRepository,
        settings: Settings,
        content_service: ContentService,
        cli_runner: CliRunner,
        ledger: CostLedger | None = None,
        breaker: CircuitBreaker | None = None,
        budget_guard: BudgetGuard | None = None,
        follow_ups: FollowUpBuilder | None = None,
        handlers: Mapping[JobType, StageHandler] = HANDLERS,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.content_service = content_service
        self.cli_runner = cli_runner
        self.ledger = ledger or CostLedger(repository=repository)
        self.breaker = breaker or CircuitBreaker(
            repository=repository,
            ledger=self.ledger,
            settings=settings.breaker,
        )
        self.budget_guard = budget_guard or BudgetGuard(
            repository=repository,
            job_cap_cents=settings.breaker.job_cost_cap_cents,
        )
        self.follow_ups = follow_ups or FollowUpBuilder(repository=repository)
        self.handlers = handlers
        self.worker_id = settings.poller.worker_id
        self.poll_interval_seconds = settings.poller.poll_interval_seconds
        self._stop_requested = False

    def run_once(self) -> PollerRunSummary:
        """Process at most one job from the queue."""

        summary = PollerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary
        if not self.settings.automation_enabled:
            logger.info("Automation disabled; poller tick skipped")
            summary.skipped_disabled = 1
            summary.idle_polls = 1
            return summary

        decision = self.breaker.check()
        if not decision.allowed:
            logger.warning("Circuit breaker open: %s", decision.reason)
            summary.breaker_trips = 1
            summary.idle_polls = 1
            return summary

        job = self.repository.claim_next_job(
            worker_id=self.worker_id,
            exclude_departments=decision.blocked_departments,
        )
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        if job.attempts > job.max_attempts:
            self.repository.fail_exhausted_job(job_id=job.job_id)
            summary.failed = 1
            return summary

        self._run_job(job=job, summary=summary)
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> PollerRunSummary:
        """Poll until stopped, ``max_jobs`` processed, or ``max_idle_polls`` idle ticks in a row."""

        aggregate = PollerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def request_stop(self) -> None:
        self._stop_requested = True

    def _run_job(self, *, job: JobView, summary: PollerRunSummary) -> None:
        workflow = self.repository.get_workflow(workflow_id=job.workflow_id)
        if workflow is None:
            self._record_failure(
                job=job,
                summary=summary,
                error=f"Workflow not found: {job.workflow_id}",
                failure_class=FailureClass.PRECONDITION,
            )
            return

        self.repository.add_audit(
            event="job-started",
            job_id=job.job_id,
            workflow_id=job.workflow_id,
            details={
                "job_type": job.job_type.value,
                "attempt": job.attempts,
                "worker_id": self.worker_id,
            },
        )
        context = HandlerContext(
            job=job,
            workflow=workflow,
            repository=self.repository,
            ledger=self.ledger,
            budget_guard=self.budget_guard,
            settings=self.settings,
            content_service=self.content_service,
            cli_runner=self.cli_runner,
        )
        handler = self.handlers[job.job_type]
        try:
            result = handler(context)
        except Exception as error:  # noqa: BLE001
            classification = classify_failure(error)
            logger.warning(
                "Job %s (%s) failed with %s [%s]: %s",
                job.job_id,
                job.job_type.value,
                classification.failure_class.value,
                classification.reason_code,
                error,
            )
            self._record_failure(
                job=job,
                summary=summary,
                error=sanitize_error(str(error) or error.__class__.__name__),
                failure_class=classification.failure_class,
            )
            return

        if not self.repository.complete_job(job_id=job.job_id, result=_result_payload(result)):
            # Reaped or cancelled while the handler ran.
            logger.warning("Job %s was no longer running at completion", job.job_id)
            return
        summary.succeeded = 1

        outcome = self.follow_ups.build(job=job, workflow=workflow, result=result)
        if outcome.created_job is not None:
            summary.follow_ups = 1

    def _record_failure(
        self,
        *,
        job: JobView,
        summary: PollerRunSummary,
        error: str,
        failure_class: FailureClass,
    ) -> None:
        status = self.repository.requeue_or_fail(
            job_id=job.job_id,
            error=error,
            failure_class=failure_class,
        )
        if status == JobStatus.QUEUED:
            summary.retried = 1
        elif status == JobStatus.FAILED:
            summary.failed = 1

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received %s; stopping after the current job", signal.Signals(signum).name)
            self._stop_requested = True

        originals: dict[signal.Signals, object] = {}
        try:
            for signum in (signal.SIGINT, signal.SIGTERM):
                originals[signum] = signal.getsignal(signum)
                signal.signal(signum, _handler)
        except ValueError:
            # Only the main thread may install signal handlers.
            originals.clear()
        try:
            yield
        finally:
            for signum, original in originals.items():
                signal.signal(signum, original)  # type: ignore[arg-type]


def _result_payload(result: StageResult) -> dict[str, object]:
    payload: dict[str, object] = dict(result.payload)
    if result.verdict is not None:
        payload["verdict"] = result.verdict.value
    return payload
