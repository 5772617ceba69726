"""Stage handler registry.

Every ``JobType`` maps to exactly one handler; a missing entry fails at import
rather than surfacing as a dispatch miss on a live job.
"""

from __future__ import annotations

from pitch_autopilot.orchestrator.handlers.base import (
    HandlerContext,
    OutputInvalidError,
    PreconditionError,
    StageError,
    StageHandler,
    StageResult,
    TransientStageError,
)
from pitch_autopilot.orchestrator.handlers.build import handle_agentic_build, handle_revise
from pitch_autopilot.orchestrator.handlers.cli import (
    CliRunner,
    CliStageError,
    handle_pull,
    handle_pull_feedback,
    handle_push,
)
from pitch_autopilot.orchestrator.handlers.content import (
    handle_extract_narrative,
    handle_generate_copy,
)
from pitch_autopilot.orchestrator.handlers.health import handle_health_check
from pitch_autopilot.orchestrator.handlers.review import handle_review
from pitch_autopilot.orchestrator.models import JobType

HANDLERS: dict[JobType, StageHandler] = {
    JobType.PULL: handle_pull,
    JobType.EXTRACT_NARRATIVE: handle_extract_narrative,
    JobType.GENERATE_COPY: handle_generate_copy,
    JobType.AGENTIC_BUILD: handle_agentic_build,
    JobType.REVIEW: handle_review,
    JobType.REVISE: handle_revise,
    JobType.PUSH: handle_push,
    JobType.PULL_FEEDBACK: handle_pull_feedback,
    JobType.HEALTH_CHECK: handle_health_check,
}

_missing = set(JobType) - set(HANDLERS)
if _missing:
    raise RuntimeError(
        "No stage handler registered for: " + ", ".join(sorted(item.value for item in _missing)),
    )

__all__ = [
    "HANDLERS",
    "CliRunner",
    "CliStageError",
    "HandlerContext",
    "OutputInvalidError",
    "PreconditionError",
    "StageError",
    "StageHandler",
    "StageResult",
    "TransientStageError",
]
