"""Agentic stages that write the app: build, revise, and the review auto-fix pass."""

from __future__ import annotations

import logging
from typing import Any

from pitch_autopilot.agent.loop import LoopResult
from pitch_autopilot.agent.tools import Sandbox, Toolset, add_animation_tools, build_file_toolset
from pitch_autopilot.agent.validator import (
    format_violations,
    has_critical_violations,
    validate_code,
    violations_to_payload,
)
from pitch_autopilot.orchestrator.handlers.base import (
    HandlerContext,
    PreconditionError,
    StageResult,
)
from pitch_autopilot.orchestrator.handlers.content import COPY_FILE, NARRATIVE_FILE

logger = logging.getLogger(__name__)

ANIMATION_REVISION = "animation"
AUTOFIX_MAX_TURNS = 6

BUILD_SYSTEM = (
    "You build single-page scroll-driven pitch apps. Work only through the provided "
    "tools. Write index.html, css/style.css and js/app.js into the app directory, copy "
    "any images you use with copy_asset, and call done with a short summary when finished."
)

REVISE_SYSTEM = (
    "You revise an existing pitch app. Read the current files before changing them, "
    "apply the requested changes with the smallest edits that work, and call done with "
    "a summary of what changed."
)

ANIMATION_SYSTEM = (
    REVISE_SYSTEM
    + " You are revising scroll animations. Use lookup_pattern for reference "
    "implementations and run validate_code on every JS/CSS file you write."
)

FIX_SYSTEM = (
    "You fix specific review findings in an existing pitch app. Address only the listed "
    "critical findings, then call done."
)


def handle_agentic_build(context: HandlerContext) -> StageResult:
    narrative_path = context.task_dir / NARRATIVE_FILE
    if not narrative_path.is_file():
        raise PreconditionError(f"Narrative is missing: {narrative_path}")

    context.app_dir.mkdir(parents=True, exist_ok=True)
    toolset = _file_toolset(context)
    prompt_parts = [
        f"Build the pitch app for {context.workflow.company_name}.",
        f"# Narrative\n{narrative_path.read_text('utf-8')}",
    ]
    copy_path = context.app_dir / COPY_FILE
    if copy_path.is_file():
        prompt_parts.append(f"# Approved copy\n{copy_path.read_text('utf-8')}")
    prompt_parts.append("Materials and images are readable under the task directory.")

    result = context.loop_runner().run(
        job=context.job,
        workflow=context.workflow,
        system=BUILD_SYSTEM,
        prompt="\n\n".join(prompt_parts),
        toolset=toolset,
    )
    return StageResult(payload=_loop_payload(context, result))


def handle_revise(context: HandlerContext) -> StageResult:
    if not (context.app_dir / "index.html").is_file():
        raise PreconditionError(f"No app to revise in {context.app_dir}")
    notes = str(context.job.payload.get("revision_notes") or "").strip()
    if not notes:
        raise PreconditionError("Revise job has no revision notes")

    toolset = _file_toolset(context)
    system = REVISE_SYSTEM
    revision_kind = context.job.payload.get("revision_kind")
    if revision_kind == ANIMATION_REVISION:
        add_animation_tools(toolset, conventions_path=context.settings.agent.conventions_path)
        system = ANIMATION_SYSTEM

    result = context.loop_runner().run(
        job=context.job,
        workflow=context.workflow,
        system=system,
        prompt=f"Apply these revisions to the app:\n{notes}",
        toolset=toolset,
    )
    payload = _loop_payload(context, result)
    payload["revision_kind"] = revision_kind or "general"
    return StageResult(payload=payload)


def run_fix_loop(context: HandlerContext, *, findings: list[str]) -> LoopResult:
    """Short agentic pass over critical review findings."""

    listed = "\n".join(f"- {item}" for item in findings)
    return context.loop_runner(max_turns=AUTOFIX_MAX_TURNS).run(
        job=context.job,
        workflow=context.workflow,
        system=FIX_SYSTEM,
        prompt=f"Fix these critical findings:\n{listed}",
        toolset=_file_toolset(context),
        category="review-autofix",
    )


def run_safety_net(context: HandlerContext) -> dict[str, Any]:
    """Validate written JS/CSS; findings are audited and reported, never fatal."""

    js = _concat_sources(context, "*.js")
    css = _concat_sources(context, "*.css")
    violations = validate_code(js=js, css=css)
    if violations:
        context.repository.add_audit(
            event="safety-violations",
            level="warning",
            job_id=context.job.job_id,
            workflow_id=context.workflow.workflow_id,
            details={
                "count": len(violations),
                "critical": has_critical_violations(violations),
                "violations": violations_to_payload(violations),
            },
        )
        logger.warning(
            "Safety findings for job %s:\n%s",
            context.job.job_id,
            format_violations(violations),
        )
    return {
        "violations": violations_to_payload(violations),
        "has_critical": has_critical_violations(violations),
    }


def _file_toolset(context: HandlerContext) -> Toolset:
    sandbox = Sandbox(read_roots=[context.task_dir], write_root=context.app_dir)
    return build_file_toolset(sandbox, asset_max_bytes=context.settings.agent.asset_max_bytes)


def _loop_payload(context: HandlerContext, result: LoopResult) -> dict[str, Any]:
    payload = result.to_payload()
    payload["app_dir"] = str(context.app_dir)
    payload["safety"] = run_safety_net(context)
    return payload


def _concat_sources(context: HandlerContext, pattern: str) -> str:
    if not context.app_dir.is_dir():
        return ""
    return "\n".join(
        path.read_text("utf-8", errors="replace")
        for path in sorted(context.app_dir.rglob(pattern))
        if path.is_file()
    )
