from __future__ import annotations

import allure
import pytest

from pitch_autopilot.orchestrator.handlers import PreconditionError
from pitch_autopilot.orchestrator.handlers.build import handle_agentic_build, handle_revise
from pitch_autopilot.orchestrator.handlers.content import COPY_FILE, NARRATIVE_FILE
from pitch_autopilot.orchestrator.models import JobType

pytestmark = [
    allure.epic("Agentic Stages"),
    allure.feature("Build and Revise"),
]


def _tool_names(request) -> list[str]:
    return [tool["name"] for tool in request.tools]


def test_build_requires_narrative(make_workflow, make_job, make_context) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.AGENTIC_BUILD)

    with pytest.raises(PreconditionError, match="Narrative is missing"):
        handle_agentic_build(make_context(job, workflow))


def test_build_writes_app_and_reports_safety_findings(
    repository,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.AGENTIC_BUILD)
    context = make_context(job, workflow)
    context.task_dir.mkdir(parents=True)
    (context.task_dir / NARRATIVE_FILE).write_text("## 1. Hook\nRobots.", "utf-8")
    context.app_dir.mkdir(parents=True)
    (context.app_dir / COPY_FILE).write_text("Fold laundry with one tap.", "utf-8")
    content_service.reply_tools(
        ("write_file", {"path": "index.html", "content": "<h1>Acme</h1>"}),
        ("write_file", {"path": "js/app.js", "content": "gsap.from('.card', { y: 40 });"}),
    )
    content_service.reply_tools(("done", {"summary": "Built it."}))

    result = handle_agentic_build(context)

    assert result.payload["stop_reason"] == "done"
    assert result.payload["summary"] == "Built it."
    assert result.payload["files_written"] == ["index.html", "js/app.js"]
    assert result.payload["app_dir"] == str(context.app_dir)
    assert result.payload["safety"]["has_critical"] is True
    assert [item["rule"] for item in result.payload["safety"]["violations"]] == ["no-gsap-from"]

    prompt = content_service.requests[0].messages[0]["content"]
    assert "Build the pitch app for Acme Robotics." in prompt
    assert "# Approved copy\nFold laundry with one tap." in prompt
    assert _tool_names(content_service.requests[0]) == [
        "read_file",
        "write_file",
        "list_files",
        "copy_asset",
        "done",
    ]

    audits = repository.list_audit(event="safety-violations", job_id=job.job_id)
    assert len(audits) == 1
    assert audits[0].level == "warning"
    assert audits[0].details["critical"] is True
    entries = repository.list_ledger_entries(job_id=job.job_id)
    assert {entry.category for entry in entries} == {"agentic-build"}


def test_build_with_clean_output_audits_nothing(
    repository,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.AGENTIC_BUILD)
    context = make_context(job, workflow)
    context.task_dir.mkdir(parents=True)
    (context.task_dir / NARRATIVE_FILE).write_text("## 1. Hook\nRobots.", "utf-8")
    content_service.reply_text("I have nothing to build.")

    result = handle_agentic_build(context)

    assert result.payload["stop_reason"] == "end_turn"
    assert result.payload["safety"] == {"violations": [], "has_critical": False}
    assert repository.list_audit(event="safety-violations") == []


def test_revise_requires_app_and_notes(make_workflow, make_job, make_context) -> None:
    workflow = make_workflow()
    missing_app = make_job(workflow, JobType.REVISE, payload={"revision_notes": "- Fix"})

    with pytest.raises(PreconditionError, match="No app to revise"):
        handle_revise(make_context(missing_app, workflow))

    no_notes = make_job(workflow, JobType.REVISE, payload={"revision_notes": "   "})
    context = make_context(no_notes, workflow)
    context.app_dir.mkdir(parents=True)
    (context.app_dir / "index.html").write_text("<h1>Acme</h1>", "utf-8")

    with pytest.raises(PreconditionError, match="no revision notes"):
        handle_revise(context)


def test_revise_applies_notes_with_file_tools(
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.REVISE, payload={"revision_notes": "- Bigger logo"})
    context = make_context(job, workflow)
    context.app_dir.mkdir(parents=True)
    (context.app_dir / "index.html").write_text("<h1>Acme</h1>", "utf-8")
    content_service.reply_tools(
        ("write_file", {"path": "index.html", "content": "<h1 class='big'>Acme</h1>"}),
        ("done", {"summary": "Logo enlarged."}),
    )

    result = handle_revise(context)

    assert result.payload["revision_kind"] == "general"
    assert result.payload["summary"] == "Logo enlarged."
    assert (context.app_dir / "index.html").read_text("utf-8") == "<h1 class='big'>Acme</h1>"
    assert "- Bigger logo" in content_service.requests[0].messages[0]["content"]
    assert "lookup_pattern" not in _tool_names(content_service.requests[0])


def test_animation_revision_adds_pattern_and_validator_tools(
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow()
    job = make_job(
        workflow,
        JobType.REVISE,
        payload={"revision_notes": "- Smoother hero", "revision_kind": "animation"},
    )
    context = make_context(job, workflow)
    context.app_dir.mkdir(parents=True)
    (context.app_dir / "index.html").write_text("<h1>Acme</h1>", "utf-8")
    content_service.reply_tools(
        ("validate_code", {"js": "gsap.from('.hero', { opacity: 0 })"}),
    )
    content_service.reply_tools(("done", {"summary": "Switched to gsap.to."}))

    result = handle_revise(context)

    assert result.payload["revision_kind"] == "animation"
    names = _tool_names(content_service.requests[0])
    assert names[-2:] == ["lookup_pattern", "validate_code"]
    assert "scroll animations" in content_service.requests[0].system
    tool_result = content_service.requests[1].messages[2]["content"][0]
    assert "no-gsap-from" in tool_result["content"]
