from __future__ import annotations

import allure
import pytest

from pitch_autopilot.orchestrator.handlers import OutputInvalidError, PreconditionError
from pitch_autopilot.orchestrator.handlers.base import parse_json_object, read_materials
from pitch_autopilot.orchestrator.handlers.content import (
    COPY_FILE,
    MISSION_FILE,
    NARRATIVE_FILE,
    handle_extract_narrative,
    handle_generate_copy,
    parse_sections,
)
from pitch_autopilot.orchestrator.models import JobType

pytestmark = [
    allure.epic("Stage Handlers"),
    allure.feature("Content Stages"),
]

NARRATIVE = """# Acme narrative

## 1. **The Hook**
Robots that fold laundry.
Every household loses five hours a week to chores.

## 2. The Proof
Ten thousand units shipped.

### 3. _Ask_
Raise a seed round.
"""


def test_parse_sections_reads_numbered_headings() -> None:
    sections = parse_sections(NARRATIVE)

    assert [section["number"] for section in sections] == [1, 2, 3]
    assert [section["label"] for section in sections] == ["THE HOOK", "THE PROOF", "ASK"]
    assert sections[0]["headline"] == "Robots that fold laundry."
    assert sections[0]["body"] == "Every household loses five hours a week to chores."
    assert sections[1]["body"] == ""


def test_parse_sections_is_empty_for_free_text() -> None:
    assert parse_sections("Just a paragraph with no structure.") == []


def test_parse_json_object_tolerates_fences_and_prose() -> None:
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object('Here you go:\n```json\n{"a": 2}\n```\nThanks') == {"a": 2}
    assert parse_json_object('Verdict follows {"a": 3} end') == {"a": 3}
    with pytest.raises(OutputInvalidError):
        parse_json_object("no json here")
    with pytest.raises(OutputInvalidError):
        parse_json_object("[1, 2]")


def test_read_materials_concatenates_text_files(tmp_path) -> None:
    (tmp_path / "notes").mkdir()
    (tmp_path / "notes" / "a.md").write_text("alpha", "utf-8")
    (tmp_path / "b.txt").write_text("beta", "utf-8")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG")

    text = read_materials(tmp_path)

    assert text == "--- b.txt ---\nbeta\n\n--- notes/a.md ---\nalpha"
    assert read_materials(tmp_path / "missing") == ""


def test_extract_narrative_requires_mission(make_workflow, make_job, make_context) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.EXTRACT_NARRATIVE)

    with pytest.raises(PreconditionError, match="Mission file is missing"):
        handle_extract_narrative(make_context(job, workflow))


def test_extract_narrative_writes_narrative_and_sections(
    repository,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow(project_name="Seed deck")
    job = make_job(
        workflow,
        JobType.EXTRACT_NARRATIVE,
        payload={"revision_notes": "- lead with traction"},
    )
    context = make_context(job, workflow)
    (context.task_dir / "materials").mkdir(parents=True)
    (context.task_dir / MISSION_FILE).write_text("Raise money.", "utf-8")
    (context.task_dir / "materials" / "deck.txt").write_text("10k units", "utf-8")
    content_service.reply_text(NARRATIVE)

    result = handle_extract_narrative(context)

    assert (context.task_dir / NARRATIVE_FILE).read_text("utf-8").startswith("# Acme narrative")
    assert result.payload["section_count"] == 3
    assert result.payload["revision_notes"] == "- lead with traction"
    prompt = content_service.requests[0].messages[0]["content"]
    assert "Project: Seed deck" in prompt
    assert "--- deck.txt ---\n10k units" in prompt
    assert "# Revision notes\n- lead with traction" in prompt
    entries = repository.list_ledger_entries(job_id=job.job_id)
    assert [entry.category for entry in entries] == ["extract-narrative"]


def test_empty_completion_is_output_invalid(
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.EXTRACT_NARRATIVE)
    context = make_context(job, workflow)
    context.task_dir.mkdir(parents=True)
    (context.task_dir / MISSION_FILE).write_text("Raise money.", "utf-8")
    content_service.reply_text("   ")

    with pytest.raises(OutputInvalidError, match="no text"):
        handle_extract_narrative(context)


def test_generate_copy_writes_into_app_dir(
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.GENERATE_COPY)
    context = make_context(job, workflow)
    context.task_dir.mkdir(parents=True)
    (context.task_dir / NARRATIVE_FILE).write_text(NARRATIVE, "utf-8")
    content_service.reply_text("## 1. THE HOOK\nFold laundry with one tap.")

    result = handle_generate_copy(context)

    copy_path = context.app_dir / COPY_FILE
    assert copy_path.read_text("utf-8") == "## 1. THE HOOK\nFold laundry with one tap.\n"
    assert result.payload["copy_path"] == str(copy_path)
    assert "# Approved narrative" in content_service.requests[0].messages[0]["content"]


def test_generate_copy_requires_narrative(make_workflow, make_job, make_context) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.GENERATE_COPY)

    with pytest.raises(PreconditionError, match="Narrative is missing"):
        handle_generate_copy(make_context(job, workflow))
