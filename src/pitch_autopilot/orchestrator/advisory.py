"""Best-effort side effects that must never fail the surrounding stage."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from pitch_autopilot.orchestrator.repository import PipelineRepository

logger = logging.getLogger(__name__)


@contextmanager
def advisory(
    repository: PipelineRepository,
    *,
    action: str,
    job_id: str | None = None,
    workflow_id: str | None = None,
) -> Iterator[None]:
    """Run the block; on failure record a warning audit entry and continue."""

    try:
        yield
    except Exception as error:  # noqa: BLE001
        logger.warning("Advisory action %s failed: %s", action, error)
        try:
            repository.add_audit(
                event="advisory-failed",
                level="warning",
                job_id=job_id,
                workflow_id=workflow_id,
                details={
                    "action": action,
                    "error": str(error),
                    "error_type": error.__class__.__name__,
                },
            )
        except SQLAlchemyError:
            logger.exception("Could not record advisory failure for %s", action)
