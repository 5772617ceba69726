"""Persistent job store for the pipeline orchestrator."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from pitch_autopilot.orchestrator.models import (
    ApprovalGateName,
    AuditEntryView,
    AutonomyLevel,
    FailureClass,
    JobCreate,
    JobDetails,
    JobStatus,
    JobType,
    JobView,
    LedgerEntryView,
    WorkflowCreate,
    WorkflowView,
)
from pitch_autopilot.storage.alembic_runner import upgrade_head
from pitch_autopilot.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from pitch_autopilot.storage.sqlmodel_models import (
    ApprovalEvent,
    AuditLogEntry,
    LedgerEntry,
    PipelineJob,
    Workflow,
)

logger = logging.getLogger(__name__)

CLAIM_MODES = ("atomic", "conditional")


class PipelineRepository:
    """Job store facade backed by SQLModel + SQLite.

    Every job mutation is a conditional update keyed on the status the caller
    expects, so two processes racing on the same row cannot both win.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        claim_mode: str = "atomic",
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        if claim_mode not in CLAIM_MODES:
            raise ValueError(f"Unsupported claim mode: {claim_mode!r}")
        self.db_path = db_path
        self.claim_mode = claim_mode
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def create_workflow(self, payload: WorkflowCreate) -> WorkflowView:
        now = utc_now()
        workflow_id = payload.workflow_id or str(uuid4())
        with Session(self.engine) as session:
            row = Workflow(
                workflow_id=workflow_id,
                company_name=payload.company_name,
                project_name=payload.project_name,
                department=payload.department,
                autonomy_level=AutonomyLevel(payload.autonomy_level).value,
                status=payload.status,
                spend_cap_cents=payload.spend_cap_cents,
                published_url=payload.published_url,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            self._add_audit(
                session=session,
                event="workflow-created",
                workflow_id=workflow_id,
                details={
                    "company_name": payload.company_name,
                    "autonomy_level": row.autonomy_level,
                    "department": payload.department,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_workflow_view(row)

    def get_workflow(self, *, workflow_id: str) -> WorkflowView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Workflow).where(Workflow.workflow_id == workflow_id),
            ).one_or_none()
        return _to_workflow_view(row) if row is not None else None

    def list_workflows(
        self,
        *,
        status: str | None = None,
        updated_before: datetime | None = None,
        with_feedback: bool = False,
        limit: int | None = 200,
    ) -> list[WorkflowView]:
        """List workflows oldest first; `limit=None` returns every match."""

        with Session(self.engine) as session:
            statement = select(Workflow).order_by(col(Workflow.created_at).asc())
            if limit is not None:
                statement = statement.limit(limit)
            if status is not None:
                statement = statement.where(Workflow.status == status)
            if updated_before is not None:
                statement = statement.where(
                    col(Workflow.updated_at) < to_db_datetime(updated_before),
                )
            if with_feedback:
                statement = statement.where(col(Workflow.feedback_updated_at).is_not(None))
            rows = session.exec(statement).all()
        return [_to_workflow_view(row) for row in rows]

    def set_workflow_stage(self, *, workflow_id: str, stage: str) -> bool:
        """Record the furthest completed pipeline stage."""

        return self._update_workflow(workflow_id=workflow_id, pipeline_stage=stage)

    def set_workflow_status(self, *, workflow_id: str, status: str) -> bool:
        return self._update_workflow(workflow_id=workflow_id, status=status)

    def set_published_url(self, *, workflow_id: str, url: str) -> bool:
        return self._update_workflow(workflow_id=workflow_id, published_url=url)

    def record_feedback(
        self,
        *,
        workflow_id: str,
        received_at: datetime | None = None,
        cooldown: timedelta = timedelta(minutes=5),
    ) -> bool:
        """Mark new client feedback and push the revision cooldown window forward."""

        at = received_at or utc_now()
        return self._update_workflow(
            workflow_id=workflow_id,
            feedback_updated_at=to_db_datetime(at),
            revision_cooldown_until=to_db_datetime(at + cooldown),
        )

    def _update_workflow(self, *, workflow_id: str, **values: Any) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Workflow)
                .where(col(Workflow.workflow_id) == workflow_id)
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def insert_job(self, payload: JobCreate) -> JobView:
        """Insert a job at ``queued`` or ``pending``."""

        if payload.status not in {JobStatus.QUEUED, JobStatus.PENDING}:
            raise ValueError(f"New jobs must start queued or pending, got {payload.status.value}")

        now = to_db_datetime(utc_now())
        job_id = payload.job_id or str(uuid4())
        with Session(self.engine) as session:
            workflow = session.exec(
                select(Workflow).where(Workflow.workflow_id == payload.workflow_id),
            ).one_or_none()
            if workflow is None:
                raise RuntimeError(f"Workflow not found: {payload.workflow_id}")

            row = PipelineJob(
                job_id=job_id,
                workflow_id=payload.workflow_id,
                job_type=JobType(payload.job_type).value,
                status=payload.status.value,
                department=workflow.department,
                payload_json=_dump_json(payload.payload),
                attempts=0,
                max_attempts=payload.max_attempts,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_audit(
                session=session,
                event="job-created",
                job_id=job_id,
                workflow_id=payload.workflow_id,
                details={
                    "job_type": row.job_type,
                    "status": row.status,
                    "max_attempts": payload.max_attempts,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def claim_next_job(
        self,
        *,
        worker_id: str,
        exclude_departments: Iterable[str] = (),
    ) -> JobView | None:
        """Move the oldest queued job to running and return it, or ``None``."""

        excluded = tuple(sorted(set(exclude_departments)))
        if self.claim_mode == "atomic":
            try:
                return self._claim_atomic(worker_id=worker_id, excluded=excluded)
            except SQLAlchemyError as error:
                logger.warning(
                    "Atomic claim unavailable (%s); using conditional claim",
                    error.__class__.__name__,
                )
        return self._claim_conditional(worker_id=worker_id, excluded=excluded)

    def _claim_atomic(self, *, worker_id: str, excluded: tuple[str, ...]) -> JobView | None:
        now = to_db_datetime(utc_now())
        jobs = PipelineJob.__table__  # type: ignore[attr-defined]
        # Aliased so the subquery is not correlated to the UPDATE target.
        candidate = jobs.alias("candidate")
        oldest_queued = (
            sa_select(candidate.c.job_id)
            .where(candidate.c.status == JobStatus.QUEUED.value)
            .order_by(candidate.c.created_at.asc(), candidate.c.job_id.asc())
            .limit(1)
        )
        if excluded:
            oldest_queued = oldest_queued.where(candidate.c.department.not_in(excluded))

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(jobs)
                .where(
                    jobs.c.job_id == oldest_queued.scalar_subquery(),
                    jobs.c.status == JobStatus.QUEUED.value,
                )
                .values(
                    status=JobStatus.RUNNING.value,
                    attempts=jobs.c.attempts + 1,
                    started_at=now,
                    completed_at=None,
                    worker_id=worker_id,
                    updated_at=now,
                )
                .returning(jobs.c.job_id),
            )
            claimed_id = result.scalar_one_or_none()
            if claimed_id is None:
                session.rollback()
                return None
            return self._finish_claim(
                session=session,
                job_id=claimed_id,
                worker_id=worker_id,
                mode="atomic",
            )

    def _claim_conditional(
        self,
        *,
        worker_id: str,
        excluded: tuple[str, ...],
    ) -> JobView | None:
        # Read and write in separate sessions: the conditional update is the
        # only thing that decides ownership.
        with Session(self.engine) as session:
            statement = (
                select(PipelineJob)
                .where(PipelineJob.status == JobStatus.QUEUED.value)
                .order_by(col(PipelineJob.created_at).asc(), col(PipelineJob.job_id).asc())
                .limit(1)
            )
            if excluded:
                statement = statement.where(col(PipelineJob.department).not_in(excluded))
            candidate = session.exec(statement).one_or_none()
            if candidate is None:
                return None
            candidate_id = candidate.job_id

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(PipelineJob)
                .where(
                    col(PipelineJob.job_id) == candidate_id,
                    col(PipelineJob.status) == JobStatus.QUEUED.value,
                )
                .values(
                    status=JobStatus.RUNNING.value,
                    attempts=col(PipelineJob.attempts) + 1,
                    started_at=now,
                    completed_at=None,
                    worker_id=worker_id,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                # Claimed by another poller, or our read was stale. Either way
                # this tick claims nothing.
                session.rollback()
                logger.info("Conditional claim lost for job %s", candidate_id)
                return None
            return self._finish_claim(
                session=session,
                job_id=candidate_id,
                worker_id=worker_id,
                mode="conditional",
            )

    def _finish_claim(
        self,
        *,
        session: Session,
        job_id: str,
        worker_id: str,
        mode: str,
    ) -> JobView:
        claimed = session.exec(select(PipelineJob).where(PipelineJob.job_id == job_id)).one()
        self._add_audit(
            session=session,
            event="job-claimed",
            job_id=job_id,
            workflow_id=claimed.workflow_id,
            details={
                "job_type": claimed.job_type,
                "worker_id": worker_id,
                "attempt": claimed.attempts,
                "claim_mode": mode,
            },
        )
        session.commit()
        return _to_job_view(claimed)

    def fail_exhausted_job(self, *, job_id: str) -> bool:
        """Fail a freshly claimed job whose attempts already exceed the ceiling."""

        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            message = f"Max attempts ({row.max_attempts}) exceeded"
            if not self._transition(
                session=session,
                job_id=job_id,
                expected=JobStatus.RUNNING,
                target=JobStatus.FAILED,
                last_error=message,
                failure_class=FailureClass.MAX_ATTEMPTS.value,
                completed_at=to_db_datetime(utc_now()),
            ):
                return False
            self._add_audit(
                session=session,
                event="job-max-attempts",
                level="warning",
                job_id=job_id,
                workflow_id=row.workflow_id,
                details={
                    "job_type": row.job_type,
                    "attempts": row.attempts,
                    "max_attempts": row.max_attempts,
                },
            )
            session.commit()
            return True

    def complete_job(self, *, job_id: str, result: dict[str, Any]) -> bool:
        """Mark a running job completed and store its result payload."""

        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            if not self._transition(
                session=session,
                job_id=job_id,
                expected=JobStatus.RUNNING,
                target=JobStatus.COMPLETED,
                result_json=_dump_json(result),
                completed_at=to_db_datetime(utc_now()),
            ):
                return False
            self._add_audit(
                session=session,
                event="job-completed",
                job_id=job_id,
                workflow_id=row.workflow_id,
                details={"job_type": row.job_type, "attempt": row.attempts},
            )
            session.commit()
            return True

    def requeue_or_fail(
        self,
        *,
        job_id: str,
        error: str,
        failure_class: FailureClass,
    ) -> JobStatus | None:
        """Requeue a failed running job, or fail it once attempts hit the ceiling.

        Returns the status written, or ``None`` if the job was no longer running.
        """

        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            if row.status != JobStatus.RUNNING.value:
                return None
            target = JobStatus.FAILED if row.attempts >= row.max_attempts else JobStatus.QUEUED
            values: dict[str, Any] = {
                "last_error": error,
                "failure_class": failure_class.value,
            }
            if target == JobStatus.FAILED:
                values["completed_at"] = to_db_datetime(utc_now())
            else:
                values["worker_id"] = None
            if not self._transition(
                session=session,
                job_id=job_id,
                expected=JobStatus.RUNNING,
                target=target,
                **values,
            ):
                return None
            self._add_audit(
                session=session,
                event="job-failed",
                level="error" if target == JobStatus.FAILED else "warning",
                job_id=job_id,
                workflow_id=row.workflow_id,
                details={
                    "job_type": row.job_type,
                    "error": error,
                    "failure_class": failure_class.value,
                    "attempt": row.attempts,
                    "will_retry": target == JobStatus.QUEUED,
                },
            )
            session.commit()
            return target

    def approve_pending_job(self, *, job_id: str, details: dict[str, object]) -> bool:
        """Move a pending job to queued."""

        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            if not self._transition(
                session=session,
                job_id=job_id,
                expected=JobStatus.PENDING,
                target=JobStatus.QUEUED,
            ):
                return False
            self._add_audit(
                session=session,
                event="job-approved",
                job_id=job_id,
                workflow_id=row.workflow_id,
                details={"job_type": row.job_type, **details},
            )
            session.commit()
            return True

    def list_stale_running_jobs(self, *, started_before: datetime) -> list[JobView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PipelineJob)
                .where(
                    PipelineJob.status == JobStatus.RUNNING.value,
                    col(PipelineJob.started_at) < to_db_datetime(started_before),
                )
                .order_by(col(PipelineJob.started_at).asc()),
            ).all()
        return [_to_job_view(row) for row in rows]

    def release_stale_job(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        observed_started_at: datetime,
        target: JobStatus,
        error: str,
        details: dict[str, object],
    ) -> bool:
        """Requeue or fail a stale running job unless it was reclaimed meanwhile."""

        if target not in {JobStatus.QUEUED, JobStatus.FAILED}:
            raise ValueError(f"Unsupported stale recovery status: {target}")

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            result = session.exec(
                sa_update(PipelineJob)
                .where(
                    col(PipelineJob.job_id) == job_id,
                    col(PipelineJob.status) == JobStatus.RUNNING.value,
                    col(PipelineJob.started_at) == to_db_datetime(observed_started_at),
                )
                .values(
                    status=target.value,
                    last_error=error,
                    failure_class=FailureClass.STALE.value,
                    worker_id=None,
                    completed_at=now if target == JobStatus.FAILED else None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_audit(
                session=session,
                event="stale-job-recovered",
                level="warning",
                job_id=job_id,
                workflow_id=row.workflow_id,
                details={"job_type": row.job_type, "new_status": target.value, **details},
            )
            session.commit()
            return True

    def cancel_job(self, *, job_id: str) -> None:
        """Operator cancel for jobs that have not started."""

        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            previous = JobStatus(row.status)
            if previous not in {JobStatus.PENDING, JobStatus.QUEUED}:
                raise RuntimeError(f"Job cannot be cancelled from status={row.status}")
            if not self._transition(
                session=session,
                job_id=job_id,
                expected=previous,
                target=JobStatus.CANCELLED,
                completed_at=to_db_datetime(utc_now()),
            ):
                raise RuntimeError(
                    "Job state changed concurrently while cancelling; "
                    f"please retry command (job_id={job_id}).",
                )
            self._add_audit(
                session=session,
                event="job-cancelled",
                job_id=job_id,
                workflow_id=row.workflow_id,
                details={"job_type": row.job_type, "status_from": previous.value},
            )
            session.commit()

    def retry_failed_job(self, *, job_id: str) -> JobView:
        """Operator retry: terminal jobs stay terminal, a fresh queued copy is inserted."""

        with Session(self.engine) as session:
            row = self._get_job_row(session=session, job_id=job_id)
            if row.status not in {JobStatus.FAILED.value, JobStatus.CANCELLED.value}:
                raise RuntimeError(
                    f"Only failed/cancelled jobs can be retried manually, got {row.status}.",
                )
            original_payload = _load_json_dict(row.payload_json) or {}

        retried = self.insert_job(
            JobCreate(
                workflow_id=row.workflow_id,
                job_type=JobType(row.job_type),
                status=JobStatus.QUEUED,
                payload=original_payload,
                max_attempts=row.max_attempts,
            ),
        )
        self.add_audit(
            event="job-retried",
            job_id=retried.job_id,
            workflow_id=row.workflow_id,
            details={"retried_from": job_id, "job_type": row.job_type},
        )
        return retried

    def get_job(self, *, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PipelineJob).where(PipelineJob.job_id == job_id),
            ).one_or_none()
        return _to_job_view(row) if row is not None else None

    def get_job_details(self, *, job_id: str) -> JobDetails | None:
        job = self.get_job(job_id=job_id)
        if job is None:
            return None
        return JobDetails(
            job=job,
            events=self.list_audit(job_id=job_id, limit=500, newest_first=False),
            cost_cents=self.sum_cost_cents(job_id=job_id),
        )

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        workflow_id: str | None = None,
        job_type: JobType | None = None,
        limit: int = 50,
        oldest_first: bool = False,
    ) -> list[JobView]:
        """List jobs, newest first unless ``oldest_first``."""

        created = col(PipelineJob.created_at)
        order = created.asc() if oldest_first else created.desc()
        with Session(self.engine) as session:
            statement = select(PipelineJob).order_by(order, col(PipelineJob.job_id)).limit(limit)
            if status is not None:
                statement = statement.where(PipelineJob.status == status.value)
            if workflow_id is not None:
                statement = statement.where(PipelineJob.workflow_id == workflow_id)
            if job_type is not None:
                statement = statement.where(PipelineJob.job_type == job_type.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def has_active_job(
        self,
        *,
        workflow_id: str,
        job_types: Iterable[JobType],
        statuses: Iterable[JobStatus] = (JobStatus.QUEUED, JobStatus.RUNNING),
    ) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(PipelineJob.job_id)
                .where(
                    PipelineJob.workflow_id == workflow_id,
                    col(PipelineJob.job_type).in_([item.value for item in job_types]),
                    col(PipelineJob.status).in_([item.value for item in statuses]),
                )
                .limit(1),
            ).first()
        return row is not None

    def latest_job(self, *, workflow_id: str, job_type: JobType) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PipelineJob)
                .where(
                    PipelineJob.workflow_id == workflow_id,
                    PipelineJob.job_type == job_type.value,
                )
                .order_by(col(PipelineJob.created_at).desc())
                .limit(1),
            ).one_or_none()
        return _to_job_view(row) if row is not None else None

    def count_running_jobs(self, *, job_types: Iterable[JobType]) -> int:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(PipelineJob)
                .where(
                    PipelineJob.status == JobStatus.RUNNING.value,
                    col(PipelineJob.job_type).in_([item.value for item in job_types]),
                ),
            ).one()
        return int(count or 0)

    def count_jobs_started_since(self, *, job_types: Iterable[JobType], since: datetime) -> int:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(PipelineJob)
                .where(
                    col(PipelineJob.started_at) >= to_db_datetime(since),
                    col(PipelineJob.job_type).in_([item.value for item in job_types]),
                ),
            ).one()
        return int(count or 0)

    def _transition(
        self,
        *,
        session: Session,
        job_id: str,
        expected: JobStatus,
        target: JobStatus,
        **values: Any,
    ) -> bool:
        result = session.exec(
            sa_update(PipelineJob)
            .where(
                col(PipelineJob.job_id) == job_id,
                col(PipelineJob.status) == expected.value,
            )
            .values(
                status=target.value,
                updated_at=to_db_datetime(utc_now()),
                **values,
            ),
        )
        if result.rowcount != 1:
            session.rollback()
            return False
        return True

    def _get_job_row(self, *, session: Session, job_id: str) -> PipelineJob:
        row = session.exec(
            select(PipelineJob).where(PipelineJob.job_id == job_id),
        ).one_or_none()
        if row is None:
            raise RuntimeError(f"Job not found: {job_id}")
        return row

    # ------------------------------------------------------------------
    # Cost ledger
    # ------------------------------------------------------------------

    def add_ledger_entry(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        workflow_id: str,
        department: str,
        category: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost_cents: int,
    ) -> LedgerEntryView:
        """Append one immutable ledger entry and its audit record."""

        with Session(self.engine) as session:
            row = LedgerEntry(
                job_id=job_id,
                workflow_id=workflow_id,
                department=department,
                category=category,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_cents=cost_cents,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            self._add_audit(
                session=session,
                event="cost-incurred",
                job_id=job_id,
                workflow_id=workflow_id,
                details={
                    "category": category,
                    "model": model,
                    "cost_cents": cost_cents,
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_ledger_view(row)

    def sum_cost_cents(
        self,
        *,
        since: datetime | None = None,
        job_id: str | None = None,
        workflow_id: str | None = None,
        department: str | None = None,
    ) -> int:
        with Session(self.engine) as session:
            statement = select(func.coalesce(func.sum(LedgerEntry.cost_cents), 0))
            if since is not None:
                statement = statement.where(col(LedgerEntry.created_at) >= to_db_datetime(since))
            if job_id is not None:
                statement = statement.where(LedgerEntry.job_id == job_id)
            if workflow_id is not None:
                statement = statement.where(LedgerEntry.workflow_id == workflow_id)
            if department is not None:
                statement = statement.where(LedgerEntry.department == department)
            total = session.exec(statement).one()
        return int(total or 0)

    def cost_by_department(self, *, since: datetime | None = None) -> dict[str, int]:
        with Session(self.engine) as session:
            statement = select(LedgerEntry.department, func.sum(LedgerEntry.cost_cents)).group_by(
                LedgerEntry.department,
            )
            if since is not None:
                statement = statement.where(col(LedgerEntry.created_at) >= to_db_datetime(since))
            rows = session.exec(statement).all()
        return {department: int(total or 0) for department, total in rows}

    def list_ledger_entries(
        self,
        *,
        since: datetime | None = None,
        job_id: str | None = None,
        limit: int = 500,
    ) -> list[LedgerEntryView]:
        with Session(self.engine) as session:
            statement = (
                select(LedgerEntry).order_by(col(LedgerEntry.created_at).asc()).limit(limit)
            )
            if since is not None:
                statement = statement.where(col(LedgerEntry.created_at) >= to_db_datetime(since))
            if job_id is not None:
                statement = statement.where(LedgerEntry.job_id == job_id)
            rows = session.exec(statement).all()
        return [_to_ledger_view(row) for row in rows]

    # ------------------------------------------------------------------
    # Approval events
    # ------------------------------------------------------------------

    def add_approval_event(
        self,
        *,
        gate: ApprovalGateName,
        workflow_id: str,
        job_id: str | None = None,
        actor: str = "operator",
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                ApprovalEvent(
                    workflow_id=workflow_id,
                    job_id=job_id,
                    gate=gate.value,
                    actor=actor,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            self._add_audit(
                session=session,
                event=gate.value,
                job_id=job_id,
                workflow_id=workflow_id,
                details={"actor": actor},
            )
            session.commit()

    def has_approval_event(
        self,
        *,
        gate: ApprovalGateName,
        workflow_id: str | None = None,
        job_id: str | None = None,
    ) -> bool:
        with Session(self.engine) as session:
            statement = select(ApprovalEvent.event_id).where(ApprovalEvent.gate == gate.value)
            if workflow_id is not None:
                statement = statement.where(ApprovalEvent.workflow_id == workflow_id)
            if job_id is not None:
                statement = statement.where(ApprovalEvent.job_id == job_id)
            row = session.exec(statement.limit(1)).first()
        return row is not None

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def add_audit(
        self,
        *,
        event: str,
        details: dict[str, object] | None = None,
        job_id: str | None = None,
        workflow_id: str | None = None,
        level: str = "info",
    ) -> None:
        with Session(self.engine) as session:
            self._add_audit(
                session=session,
                event=event,
                level=level,
                job_id=job_id,
                workflow_id=workflow_id,
                details=details or {},
            )
            session.commit()

    def list_audit(
        self,
        *,
        event: str | None = None,
        job_id: str | None = None,
        workflow_id: str | None = None,
        limit: int = 100,
        newest_first: bool = True,
    ) -> list[AuditEntryView]:
        order = col(AuditLogEntry.id).desc() if newest_first else col(AuditLogEntry.id).asc()
        with Session(self.engine) as session:
            statement = select(AuditLogEntry).order_by(order).limit(limit)
            if event is not None:
                statement = statement.where(AuditLogEntry.event == event)
            if job_id is not None:
                statement = statement.where(AuditLogEntry.job_id == job_id)
            if workflow_id is not None:
                statement = statement.where(AuditLogEntry.workflow_id == workflow_id)
            rows = session.exec(statement).all()
        return [_to_audit_view(row) for row in rows]

    def _add_audit(  # noqa: PLR0913
        self,
        *,
        session: Session,
        event: str,
        details: dict[str, object],
        job_id: str | None = None,
        workflow_id: str | None = None,
        level: str = "info",
    ) -> None:
        session.add(
            AuditLogEntry(
                event=event,
                level=level,
                job_id=job_id,
                workflow_id=workflow_id,
                details_json=_dump_json(details) if details else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )
        logger.log(
            _LOG_LEVELS.get(level, logging.INFO),
            "%s job=%s workflow=%s %s",
            event,
            job_id or "-",
            workflow_id or "-",
            _dump_json(details) if details else "",
        )


_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _dump_json(value: dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def _load_json_dict(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    if isinstance(parsed, dict):
        return parsed
    return None


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_workflow_view(row: Workflow) -> WorkflowView:
    return WorkflowView(
        workflow_id=row.workflow_id,
        company_name=row.company_name,
        project_name=row.project_name,
        department=row.department,
        autonomy_level=AutonomyLevel(row.autonomy_level),
        status=row.status,
        pipeline_stage=row.pipeline_stage,
        spend_cap_cents=row.spend_cap_cents,
        revision_cooldown_until=_optional_aware(row.revision_cooldown_until),
        feedback_updated_at=_optional_aware(row.feedback_updated_at),
        published_url=row.published_url,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_job_view(row: PipelineJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        workflow_id=row.workflow_id,
        job_type=JobType(row.job_type),
        status=JobStatus(row.status),
        department=row.department,
        payload=_load_json_dict(row.payload_json) or {},
        result=_load_json_dict(row.result_json),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        last_error=row.last_error,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        worker_id=row.worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_ledger_view(row: LedgerEntry) -> LedgerEntryView:
    return LedgerEntryView(
        entry_id=row.entry_id or 0,
        job_id=row.job_id,
        workflow_id=row.workflow_id,
        department=row.department,
        category=row.category,
        model=row.model,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        cost_cents=row.cost_cents,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_audit_view(row: AuditLogEntry) -> AuditEntryView:
    return AuditEntryView(
        entry_id=row.id or 0,
        event=row.event,
        level=row.level,
        job_id=row.job_id,
        workflow_id=row.workflow_id,
        created_at=to_utc_aware_datetime(row.created_at),
        details=_load_json_dict(row.details_json) or {},
    )
