"""Circuit breaker and per-job budget guard."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pitch_autopilot.config import BreakerSettings
from pitch_autopilot.orchestrator.ledger import CostLedger
from pitch_autopilot.orchestrator.models import COST_INCURRING_TYPES, JobView, WorkflowView
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BreakerDecision:
    """Whether the poller may claim new work this tick."""

    allowed: bool
    reason: str | None = None
    reason_code: str | None = None
    blocked_departments: tuple[str, ...] = ()
    daily_cost_cents: int = 0
    running_jobs: int = 0
    started_last_hour: int = 0
    department_costs: dict[str, int] = field(default_factory=dict)


class CircuitBreaker:
    """Answers "is it safe to start a new unit of work right now"."""

    def __init__(
        self,
        *,
        repository: PipelineRepository,
        ledger: CostLedger,
        settings: BreakerSettings,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.settings = settings

    def check(self, *, now: datetime | None = None, record: bool = True) -> BreakerDecision:
        """Evaluate global caps; over-cap departments are returned, not tripped.

        ``record=False`` evaluates without writing a trip to the audit log.
        """

        current = now or utc_now()
        daily = self.ledger.daily_total_cents(now=current)
        if daily >= self.settings.daily_cost_cap_cents:
            return self._trip(
                record=record,
                decision=BreakerDecision(
                    allowed=False,
                    reason=(
                        f"Daily cost cap reached: ${daily / 100:.2f} / "
                        f"${self.settings.daily_cost_cap_cents / 100:.2f}"
                    ),
                    reason_code="daily-cost-cap",
                    daily_cost_cents=daily,
                ),
            )

        running = self.repository.count_running_jobs(job_types=COST_INCURRING_TYPES)
        if running >= self.settings.max_concurrent_jobs:
            return self._trip(
                record=record,
                decision=BreakerDecision(
                    allowed=False,
                    reason=(
                        f"Max concurrent jobs reached: {running}/"
                        f"{self.settings.max_concurrent_jobs}"
                    ),
                    reason_code="max-concurrency",
                    daily_cost_cents=daily,
                    running_jobs=running,
                ),
            )

        hourly = self.repository.count_jobs_started_since(
            job_types=COST_INCURRING_TYPES,
            since=current - timedelta(hours=1),
        )
        if hourly >= self.settings.max_jobs_per_hour:
            return self._trip(
                record=record,
                decision=BreakerDecision(
                    allowed=False,
                    reason=f"Hourly job cap reached: {hourly}/{self.settings.max_jobs_per_hour}",
                    reason_code="hourly-rate",
                    daily_cost_cents=daily,
                    running_jobs=running,
                    started_last_hour=hourly,
                ),
            )

        department_costs = self.ledger.department_totals_cents(now=current)
        blocked = tuple(
            sorted(
                department
                for department, spent in department_costs.items()
                if spent >= self.settings.department_cap(department)
            ),
        )
        if blocked:
            logger.info("Department daily cap reached for: %s", ", ".join(blocked))
        return BreakerDecision(
            allowed=True,
            blocked_departments=blocked,
            daily_cost_cents=daily,
            running_jobs=running,
            started_last_hour=hourly,
            department_costs=department_costs,
        )

    def _trip(self, *, decision: BreakerDecision, record: bool) -> BreakerDecision:
        if not record:
            return decision
        self.repository.add_audit(
            event="circuit-breaker-tripped",
            level="warning",
            details={
                "reason": decision.reason_code,
                "message": decision.reason,
                "daily_cost_cents": decision.daily_cost_cents,
                "daily_cap_cents": self.settings.daily_cost_cap_cents,
                "running_jobs": decision.running_jobs,
                "started_last_hour": decision.started_last_hour,
            },
        )
        return decision


@dataclass(slots=True)
class BudgetStatus:
    exhausted: bool
    spent_cents: int
    limit_cents: int
    reason: str | None = None


class BudgetGuard:
    """Per-job spend ceiling consulted before every expensive turn."""

    def __init__(
        self,
        *,
        repository: PipelineRepository,
        job_cap_cents: int,
    ) -> None:
        self.repository = repository
        self.job_cap_cents = job_cap_cents

    def check(self, *, job: JobView, workflow: WorkflowView | None = None) -> BudgetStatus:
        spent = self.repository.sum_cost_cents(job_id=job.job_id)
        if spent >= self.job_cap_cents:
            return BudgetStatus(
                exhausted=True,
                spent_cents=spent,
                limit_cents=self.job_cap_cents,
                reason=f"Per-job cost cap reached: {spent}/{self.job_cap_cents} cents",
            )
        if workflow is not None and workflow.spend_cap_cents is not None:
            workflow_spent = self.repository.sum_cost_cents(workflow_id=workflow.workflow_id)
            if workflow_spent >= workflow.spend_cap_cents:
                return BudgetStatus(
                    exhausted=True,
                    spent_cents=workflow_spent,
                    limit_cents=workflow.spend_cap_cents,
                    reason=(
                        "Workflow spend cap reached: "
                        f"{workflow_spent}/{workflow.spend_cap_cents} cents"
                    ),
                )
        return BudgetStatus(exhausted=False, spent_cents=spent, limit_cents=self.job_cap_cents)
