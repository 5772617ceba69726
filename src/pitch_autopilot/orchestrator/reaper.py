"""Crash recovery for jobs stuck in ``running``.

Liveness is inferred from wall-clock time since the claim; there is no
heartbeat. A job whose worker died is requeued while it still has attempts
left and failed otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pitch_autopilot.orchestrator.models import JobStatus
from pitch_autopilot.orchestrator.repository import PipelineRepository
from pitch_autopilot.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReaperSummary:
    requeued: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class StaleJobReaper:
    def __init__(
        self,
        *,
        repository: PipelineRepository,
        stale_after: timedelta = timedelta(minutes=10),
    ) -> None:
        self.repository = repository
        self.stale_after = stale_after

    def run_pass(self, *, now: datetime | None = None) -> ReaperSummary:
        current = now or utc_now()
        summary = ReaperSummary()
        minutes = int(self.stale_after.total_seconds() // 60)
        stale = self.repository.list_stale_running_jobs(started_before=current - self.stale_after)
        for job in stale:
            if job.started_at is None:
                continue
            target = JobStatus.FAILED if job.attempts >= job.max_attempts else JobStatus.QUEUED
            released = self.repository.release_stale_job(
                job_id=job.job_id,
                observed_started_at=job.started_at,
                target=target,
                error=f"Recovered from stale running state (>{minutes}min)",
                details={
                    "started_at": job.started_at.isoformat(),
                    "attempts": job.attempts,
                    "max_attempts": job.max_attempts,
                    "worker_id": job.worker_id,
                },
            )
            if not released:
                # Reclaimed or finished between the scan and the update.
                summary.skipped.append(job.job_id)
                continue
            if target == JobStatus.FAILED:
                summary.failed.append(job.job_id)
            else:
                summary.requeued.append(job.job_id)

        if summary.requeued or summary.failed:
            logger.warning(
                "Stale jobs recovered: requeued=%d failed=%d",
                len(summary.requeued),
                len(summary.failed),
            )
        return summary
