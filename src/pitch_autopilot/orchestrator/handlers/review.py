"""Multi-persona review with a synthesized verdict and a bounded auto-fix pass.

Five fixed personas critique the app in sequence. A final synthesis call
merges their notes into ``{"verdict": ..., "findings": {"critical": [...],
"major": [...], "minor": [...]}}``. Critical findings trigger up to
``review_autofix_rounds`` short fix loops, each followed by a re-review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pitch_autopilot.orchestrator.handlers.base import (
    HandlerContext,
    OutputInvalidError,
    PreconditionError,
    StageResult,
    parse_json_object,
)
from pitch_autopilot.orchestrator.handlers.build import run_fix_loop, run_safety_net
from pitch_autopilot.orchestrator.models import ReviewVerdict

logger = logging.getLogger(__name__)

MAX_APP_CHARS = 60_000
FINDING_LEVELS = ("critical", "major", "minor")


@dataclass(frozen=True, slots=True)
class Persona:
    key: str
    brief: str


PERSONAS: tuple[Persona, ...] = (
    Persona("product", "Product lead: does the story land and does every section earn its place?"),
    Persona("copywriter", "Copywriter: is the copy clear, specific, and free of filler?"),
    Persona("designer", "Visual designer: hierarchy, spacing, typography, and consistency."),
    Persona("engineer", "Front-end engineer: broken markup, missing assets, and animation bugs."),
    Persona("client", "The client: would you be proud to send this to an investor today?"),
)

SYNTHESIS_SYSTEM = (
    "Merge the reviewer notes into one verdict. Reply with JSON only: "
    '{"verdict": "pass" | "conditional" | "fail", '
    '"findings": {"critical": [str], "major": [str], "minor": [str]}}.'
)


@dataclass(slots=True)
class ReviewRound:
    verdict: ReviewVerdict
    findings: dict[str, list[str]]
    personas_run: list[str]
    budget_exhausted: bool = False


def handle_review(context: HandlerContext) -> StageResult:
    if not (context.app_dir / "index.html").is_file():
        raise PreconditionError(f"No app to review in {context.app_dir}")

    rounds: list[dict[str, Any]] = []
    review = _review_once(context)
    rounds.append(_round_payload(review))
    autofix_rounds = 0

    while (
        review.findings["critical"]
        and not review.budget_exhausted
        and autofix_rounds < context.settings.agent.review_autofix_rounds
    ):
        autofix_rounds += 1
        logger.info(
            "Auto-fix round %d for job %s (%d critical findings)",
            autofix_rounds,
            context.job.job_id,
            len(review.findings["critical"]),
        )
        fix = run_fix_loop(context, findings=review.findings["critical"])
        if fix.budget_exhausted:
            break
        review = _review_once(context)
        rounds.append(_round_payload(review))

    payload: dict[str, Any] = {
        "verdict": review.verdict.value,
        "findings": review.findings,
        "autofix_rounds": autofix_rounds,
        "rounds": rounds,
        "budget_exhausted": review.budget_exhausted,
        "safety": run_safety_net(context),
    }
    revision_notes = "\n".join(
        f"- {item}" for level in ("critical", "major") for item in review.findings[level]
    )
    return StageResult(
        payload=payload,
        verdict=review.verdict,
        follow_up_payload={"revision_notes": revision_notes} if revision_notes else {},
    )


def _review_once(context: HandlerContext) -> ReviewRound:
    app_text = _app_snapshot(context)
    notes: list[str] = []
    personas_run: list[str] = []
    for index, persona in enumerate(PERSONAS):
        if index > 0:
            budget = context.budget_guard.check(job=context.job, workflow=context.workflow)
            if budget.exhausted:
                logger.warning(
                    "Review for job %s stopped early: %s",
                    context.job.job_id,
                    budget.reason,
                )
                # An incomplete review never passes.
                return ReviewRound(
                    verdict=ReviewVerdict.CONDITIONAL,
                    findings=_empty_findings(),
                    personas_run=personas_run,
                    budget_exhausted=True,
                )
        note = context.complete_text(
            system=f"You are reviewing a pitch app as the {persona.brief}",
            prompt=f"Review this app and list concrete problems by severity.\n\n{app_text}",
            category=f"review-{persona.key}",
        )
        notes.append(f"## {persona.key}\n{note}")
        personas_run.append(persona.key)

    synthesis = context.complete_text(
        system=SYNTHESIS_SYSTEM,
        prompt="\n\n".join(notes),
        category="review-synthesis",
    )
    verdict, findings = parse_synthesis(synthesis)
    return ReviewRound(verdict=verdict, findings=findings, personas_run=personas_run)


def parse_synthesis(text: str) -> tuple[ReviewVerdict, dict[str, list[str]]]:
    """Parse the synthesis JSON; anything unusable is an output-invalid failure."""

    parsed = parse_json_object(text)
    try:
        verdict = ReviewVerdict(str(parsed.get("verdict", "")).strip().lower())
    except ValueError as error:
        raise OutputInvalidError(f"Unknown review verdict: {parsed.get('verdict')!r}") from error

    raw_findings = parsed.get("findings") or {}
    if not isinstance(raw_findings, dict):
        raise OutputInvalidError("Review findings must be an object")
    findings = _empty_findings()
    for level in FINDING_LEVELS:
        items = raw_findings.get(level) or []
        if not isinstance(items, list):
            raise OutputInvalidError(f"Review findings.{level} must be a list")
        findings[level] = [str(item).strip() for item in items if str(item).strip()]
    return verdict, findings


def _empty_findings() -> dict[str, list[str]]:
    return {level: [] for level in FINDING_LEVELS}


def _round_payload(review: ReviewRound) -> dict[str, Any]:
    return {
        "verdict": review.verdict.value,
        "critical": len(review.findings["critical"]),
        "major": len(review.findings["major"]),
        "minor": len(review.findings["minor"]),
        "personas": review.personas_run,
    }


def _app_snapshot(context: HandlerContext) -> str:
    parts: list[str] = []
    for path in sorted(context.app_dir.rglob("*")):
        if path.is_file() and path.suffix.lower() in {".html", ".css", ".js", ".md"}:
            relative = path.relative_to(context.app_dir).as_posix()
            parts.append(f"--- {relative} ---\n{path.read_text('utf-8', errors='replace')}")
    return "\n\n".join(parts)[:MAX_APP_CHARS]
