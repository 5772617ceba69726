"""Append-only cost ledger over content-service usage."""

from __future__ import annotations

from datetime import datetime

from pitch_autopilot.orchestrator.models import JobView
from pitch_autopilot.orchestrator.pricing import estimate_cost_cents
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.storage.common import start_of_utc_day, utc_now


class CostLedger:
    """Converts token usage to cents and answers range totals."""

    def __init__(self, *, repository: PipelineRepository) -> None:
        self.repository = repository

    def record_usage(
        self,
        *,
        job: JobView,
        model: str,
        input_tokens: int,
        output_tokens: int,
        category: str | None = None,
    ) -> int:
        """Append one entry for one call; returns the charged cents."""

        cost_cents = estimate_cost_cents(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        self.repository.add_ledger_entry(
            job_id=job.job_id,
            workflow_id=job.workflow_id,
            department=job.department,
            category=category or job.job_type.value,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_cents=cost_cents,
        )
        return cost_cents

    def daily_total_cents(self, *, now: datetime | None = None) -> int:
        return self.repository.sum_cost_cents(since=start_of_utc_day(now or utc_now()))

    def department_totals_cents(self, *, now: datetime | None = None) -> dict[str, int]:
        return self.repository.cost_by_department(since=start_of_utc_day(now or utc_now()))

    def job_total_cents(self, *, job_id: str) -> int:
        return self.repository.sum_cost_cents(job_id=job_id)

    def workflow_total_cents(self, *, workflow_id: str) -> int:
        return self.repository.sum_cost_cents(workflow_id=workflow_id)
