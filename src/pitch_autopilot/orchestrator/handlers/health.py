"""Health check of a workflow's published URL."""

from __future__ import annotations

from pitch_autopilot.orchestrator.handlers.base import (
    HandlerContext,
    PreconditionError,
    StageResult,
    TransientStageError,
)
from pitch_autopilot.orchestrator.http_probe import HttpProbe


def handle_health_check(context: HandlerContext) -> StageResult:
    url = context.job.payload.get("url") or context.workflow.published_url
    if not url:
        raise PreconditionError("Workflow has no published URL to check")

    with HttpProbe(timeout_seconds=context.settings.agent.probe_timeout_seconds) as probe:
        result = probe.probe(str(url))
    if not result.is_healthy:
        raise TransientStageError(f"Health check failed for {url}: {result.error}")
    return StageResult(
        payload={
            "url": result.url,
            "status_code": result.status_code,
            "elapsed_ms": result.elapsed_ms,
        },
    )
