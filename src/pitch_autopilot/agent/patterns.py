"""Reference-pattern lookup over the conventions document.

Each pattern maps to a start heading and an end heading; the lookup returns
the text from the start heading up to, but not including, the end heading.
"""

from __future__ import annotations

from pathlib import Path

PATTERN_SECTIONS: dict[str, tuple[str, str]] = {
    "product_grid_tilt": ("### 10.1 Product Grid", "### 10.2 Terminal Typing"),
    "terminal_typing": ("### 10.2 Terminal Typing", "### 10.3 CSS-Only Flame Loader"),
    "flame_loader": ("### 10.3 CSS-Only Flame Loader", "### 10.4 Abstract Grid Hero"),
    "light_section": ("### 10.5 Light Section System", "### 10.6 Video Hero"),
    "video_hero": ("### 10.6 Video Hero", "### 10.7 Character Decode Animation"),
    "character_decode": ("### 10.7 Character Decode Animation", "### 10.8 Feed Fragments"),
    "feed_fragments": ("### 10.8 Feed Fragments", "### 10.9 Equation/Formula Cards"),
    "equation_cards": ("### 10.9 Equation/Formula Cards", "### 10.10 Signal Path Flowchart"),
    "signal_path": (
        "### 10.10 Signal Path Flowchart",
        "### 10.11 Case Study Cards with 3D Flip",
    ),
    "case_study_flip": (
        "### 10.11 Case Study Cards with 3D Flip",
        "### 10.12 Client Logo Wall with Magnetic Repulsion",
    ),
    "client_wall_magnetic": (
        "### 10.12 Client Logo Wall with Magnetic Repulsion",
        "### 10.13 Contact Overlay Modal",
    ),
    "contact_overlay": ("### 10.13 Contact Overlay Modal", "## 11. Hero Archetypes"),
    "abstract_grid_hero": ("### 11.2 Abstract Grid Hero", "### 11.3 Video + Content Hero"),
    "parallax_bg": ("### 3.5 Parallax", "## 4. Image Naming Convention"),
    "counter_animation": ("## 3. Animation Conventions", "### 3.5 Parallax"),
    "stagger_fade": ("### 3.2 Stagger Timing", "### 3.3 Easing"),
    "clip_path_reveal": ("### 1.8 Split Image+Text", "### 1.9 List"),
}


def slice_section(document: str, *, start: str, end: str) -> str | None:
    """Text from ``start`` up to ``end`` (or document end); ``None`` if start is absent."""

    begin = document.find(start)
    if begin < 0:
        return None
    finish = document.find(end, begin + len(start))
    if finish < 0:
        finish = len(document)
    return document[begin:finish].strip()


def lookup_pattern(name: str, *, conventions_path: Path | None) -> str:
    """Return the reference section for a named pattern, or an explanatory message."""

    bounds = PATTERN_SECTIONS.get(name)
    if bounds is None:
        known = ", ".join(sorted(PATTERN_SECTIONS))
        return f"Unknown pattern {name!r}. Known patterns: {known}"
    if conventions_path is None or not conventions_path.is_file():
        return "Conventions document is not available; implement from first principles."
    section = slice_section(
        conventions_path.read_text("utf-8"),
        start=bounds[0],
        end=bounds[1],
    )
    if section is None:
        return f"Pattern {name!r} not found in conventions document."
    return section
