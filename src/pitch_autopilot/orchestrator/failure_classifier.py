"""Deterministic failure classification for the poller's retry bookkeeping."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass

import httpx
from sqlalchemy.exc import OperationalError

from pitch_autopilot.agent.client import ContentServiceError
from pitch_autopilot.orchestrator.handlers.base import StageError
from pitch_autopilot.orchestrator.handlers.cli import CliStageError
from pitch_autopilot.orchestrator.models import FailureClass

_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "overloaded",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
    "timed out",
    "database is locked",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None = None

    def to_event_details(self) -> dict[str, object]:
        return {
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_pattern": self.matched_pattern,
        }


def classify_failure(error: BaseException) -> FailureClassification:
    """Map a handler exception to a failure class; every class is retried to the ceiling."""

    if isinstance(error, ContentServiceError):
        if error.transient:
            return FailureClassification(FailureClass.TRANSIENT, "content_service_transient")
        return FailureClassification(FailureClass.UNEXPECTED, "content_service_rejected")

    if isinstance(error, CliStageError):
        if error.transient:
            return FailureClassification(FailureClass.TRANSIENT, "cli_timeout")
        return FailureClassification(FailureClass.CLI_FAILURE, "cli_failed")

    if isinstance(error, StageError):
        return FailureClassification(
            error.failure_class,
            f"stage_{error.failure_class.value}",
        )

    if isinstance(error, (httpx.TransportError, subprocess.TimeoutExpired, TimeoutError)):
        return FailureClassification(FailureClass.TRANSIENT, "io_transient")

    pattern = _first_match(str(error).lower(), _TRANSIENT_PATTERNS)
    if pattern is not None:
        reason = "store_busy" if isinstance(error, OperationalError) else "generic_transient"
        return FailureClassification(FailureClass.TRANSIENT, reason, pattern)

    return FailureClassification(FailureClass.UNEXPECTED, "unexpected_error")


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
