"""Single-turn content stages: narrative extraction and copy generation."""

from __future__ import annotations

import re
from typing import Any

from pitch_autopilot.orchestrator.handlers.base import (
    HandlerContext,
    PreconditionError,
    StageResult,
    read_materials,
)

MISSION_FILE = "mission.md"
NARRATIVE_FILE = "narrative.md"
COPY_FILE = "pitchapp-copy.md"
SECTION_BODY_MAX_CHARS = 500

_SECTION_HEADING = re.compile(r"^#{1,3}\s*(\d+)\.\s*(.+?)$", re.MULTILINE)

NARRATIVE_SYSTEM = (
    "You are a narrative strategist. Turn the mission and source materials into a "
    "numbered story arc. Use markdown headings of the form '## 1. LABEL', followed by "
    "a one-line headline and a short body for each section."
)

COPY_SYSTEM = (
    "You are a conversion copywriter. Write final on-page copy for each section of "
    "the approved narrative. Keep the section numbering and headings."
)


def parse_sections(narrative: str) -> list[dict[str, Any]]:
    """Best-effort parse of numbered section headings; empty when the format is not followed."""

    matches = list(_SECTION_HEADING.finditer(narrative))
    sections: list[dict[str, Any]] = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(narrative)
        lines = [line.strip() for line in narrative[match.end() : end].splitlines()]
        lines = [line for line in lines if line]
        headline = lines[0] if lines else ""
        body = " ".join(lines[1:])[:SECTION_BODY_MAX_CHARS]
        sections.append(
            {
                "number": int(match.group(1)),
                "label": re.sub(r"[*_]", "", match.group(2)).strip().upper(),
                "headline": headline,
                "body": body,
            },
        )
    return sections


def handle_extract_narrative(context: HandlerContext) -> StageResult:
    mission_path = context.task_dir / MISSION_FILE
    if not mission_path.is_file():
        raise PreconditionError(f"Mission file is missing: {mission_path}")

    mission = mission_path.read_text("utf-8")
    materials = read_materials(context.task_dir / "materials")
    revision_notes = str(context.job.payload.get("revision_notes") or "").strip()

    prompt_parts = [
        f"Company: {context.workflow.company_name}",
        f"Project: {context.workflow.project_name}",
        f"# Mission\n{mission}",
    ]
    if materials:
        prompt_parts.append(f"# Materials\n{materials}")
    if revision_notes:
        prompt_parts.append(f"# Revision notes\n{revision_notes}")

    narrative = context.complete_text(system=NARRATIVE_SYSTEM, prompt="\n\n".join(prompt_parts))
    narrative_path = context.task_dir / NARRATIVE_FILE
    narrative_path.write_text(narrative + "\n", "utf-8")

    sections = parse_sections(narrative)
    return StageResult(
        payload={
            "narrative_path": str(narrative_path),
            "sections": sections,
            "section_count": len(sections),
            "revision_notes": revision_notes or None,
        },
    )


def handle_generate_copy(context: HandlerContext) -> StageResult:
    narrative_path = context.task_dir / NARRATIVE_FILE
    if not narrative_path.is_file():
        raise PreconditionError(f"Narrative is missing: {narrative_path}")

    copy = context.complete_text(
        system=COPY_SYSTEM,
        prompt=(
            f"Company: {context.workflow.company_name}\n\n"
            f"# Approved narrative\n{narrative_path.read_text('utf-8')}"
        ),
    )
    context.app_dir.mkdir(parents=True, exist_ok=True)
    copy_path = context.app_dir / COPY_FILE
    copy_path.write_text(copy + "\n", "utf-8")
    return StageResult(payload={"copy_path": str(copy_path), "chars": len(copy)})
