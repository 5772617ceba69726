from __future__ import annotations

from pathlib import Path

import allure

from pitch_autopilot.agent.patterns import PATTERN_SECTIONS, lookup_pattern, slice_section

pytestmark = [
    allure.epic("Agentic Stages"),
    allure.feature("Pattern Lookup"),
]

DOCUMENT = """# Conventions

### 10.1 Product Grid
Tilt cards on hover.

### 10.2 Terminal Typing
Type one character per frame.

### 10.3 CSS-Only Flame Loader
"""


def test_slice_section_between_headings() -> None:
    section = slice_section(DOCUMENT, start="### 10.1 Product Grid", end="### 10.2 Terminal Typing")

    assert section == "### 10.1 Product Grid\nTilt cards on hover."


def test_slice_section_runs_to_end_when_end_heading_missing() -> None:
    section = slice_section(DOCUMENT, start="### 10.3 CSS-Only Flame Loader", end="### 10.4 Nope")

    assert section == "### 10.3 CSS-Only Flame Loader"


def test_slice_section_missing_start() -> None:
    assert slice_section(DOCUMENT, start="### 99 Missing", end="### 10.1 Product Grid") is None


def test_lookup_pattern_reads_conventions_document(tmp_path: Path) -> None:
    conventions = tmp_path / "CONVENTIONS.md"
    conventions.write_text(DOCUMENT, "utf-8")

    section = lookup_pattern("terminal_typing", conventions_path=conventions)

    assert section == "### 10.2 Terminal Typing\nType one character per frame."


def test_lookup_pattern_messages(tmp_path: Path) -> None:
    conventions = tmp_path / "CONVENTIONS.md"
    conventions.write_text(DOCUMENT, "utf-8")

    unknown = lookup_pattern("warp_drive", conventions_path=conventions)
    unavailable = lookup_pattern("terminal_typing", conventions_path=tmp_path / "missing.md")
    not_configured = lookup_pattern("terminal_typing", conventions_path=None)
    absent = lookup_pattern("video_hero", conventions_path=conventions)

    assert unknown.startswith("Unknown pattern 'warp_drive'. Known patterns: abstract_grid_hero")
    assert unavailable == "Conventions document is not available; implement from first principles."
    assert not_configured == unavailable
    assert absent == "Pattern 'video_hero' not found in conventions document."


def test_every_pattern_has_distinct_bounds() -> None:
    assert len(PATTERN_SECTIONS) == 17
    for start, end in PATTERN_SECTIONS.values():
        assert start != end
