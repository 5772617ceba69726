"""Static safety checks for generated scroll-animation code.

Every check is independent and pure: it looks at the JS and/or CSS text and
returns zero or more violations. Critical findings are near-certain visible
bugs; warnings are robustness and accessibility issues.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

CRITICAL = "critical"
WARNING = "warning"

REUSED_BACKGROUND_CLASSES = ("hero-grid-bg", "hero-glow", "bg-layer")

_GSAP_FROM = re.compile(r"gsap\.from\s*\(")
_SMOOTH_SCROLL = re.compile(r"scroll-behavior\s*:\s*smooth")
_REGISTERS_SCROLLTRIGGER = re.compile(r"registerPlugin[^)]*ScrollTrigger")
_REGISTERS_SCROLLTO = re.compile(r"registerPlugin[^)]*ScrollToPlugin")
_GSAP_CLASS_TARGET = re.compile(r"gsap\.(to|set|fromTo)\s*\(\s*['\"](\.[\w-]+)['\"]")
_CACHED_DIMENSION = re.compile(
    r"const\s+(?:width|height|w|h)\s*=\s*\w+\."
    r"(?:offsetWidth|offsetHeight|clientWidth|clientHeight|getBoundingClientRect)",
)


@dataclass(frozen=True, slots=True)
class Violation:
    severity: str
    rule: str
    message: str


def check_gsap_from(js: str, css: str) -> list[Violation]:
    if _GSAP_FROM.search(js):
        return [
            Violation(
                CRITICAL,
                "no-gsap-from",
                "gsap.from() detected: elements flash visible before snapping hidden. "
                "Use gsap.to() with CSS initial states instead.",
            ),
        ]
    return []


def check_css_smooth_scroll(js: str, css: str) -> list[Violation]:
    if _SMOOTH_SCROLL.search(css):
        return [
            Violation(
                CRITICAL,
                "no-css-smooth-scroll",
                "CSS scroll-behavior: smooth conflicts with ScrollToPlugin and causes "
                "double-scroll jank. Remove it from the html selector.",
            ),
        ]
    return []


def check_scrolltrigger_registered(js: str, css: str) -> list[Violation]:
    if "ScrollTrigger" in js and not _REGISTERS_SCROLLTRIGGER.search(js):
        return [
            Violation(
                WARNING,
                "register-scrolltrigger",
                "ScrollTrigger used but not found in a registerPlugin() call.",
            ),
        ]
    return []


def check_scrollto_registered(js: str, css: str) -> list[Violation]:
    if "scrollTo" in js and not _REGISTERS_SCROLLTO.search(js):
        return [
            Violation(
                WARNING,
                "register-scrolltoplugin",
                "scrollTo used but ScrollToPlugin not registered; smooth-scroll links "
                "will silently fail.",
            ),
        ]
    return []


def check_scoped_selectors(js: str, css: str) -> list[Violation]:
    violations: list[Violation] = []
    for match in _GSAP_CLASS_TARGET.finditer(js):
        method, selector = match.group(1), match.group(2)
        if selector.lstrip(".") in REUSED_BACKGROUND_CLASSES:
            violations.append(
                Violation(
                    WARNING,
                    "scope-selectors",
                    f"Potentially unscoped selector '{selector}' in gsap.{method}(); "
                    f"scope it to its section, e.g. '.section-x {selector}'.",
                ),
            )
    return violations


def check_cached_dimensions(js: str, css: str) -> list[Violation]:
    if _CACHED_DIMENSION.search(js):
        return [
            Violation(
                WARNING,
                "no-cached-dimensions",
                "Dimensions cached at init; read them inside animation callbacks so "
                "orientation changes are picked up.",
            ),
        ]
    return []


def check_reduced_motion(js: str, css: str) -> list[Violation]:
    if "ScrollTrigger" in js and "prefers-reduced-motion" not in js:
        return [
            Violation(
                WARNING,
                "reduced-motion",
                "ScrollTrigger used without a prefers-reduced-motion check.",
            ),
        ]
    return []


CHECKS: tuple[Callable[[str, str], list[Violation]], ...] = (
    check_gsap_from,
    check_css_smooth_scroll,
    check_scrolltrigger_registered,
    check_scrollto_registered,
    check_cached_dimensions,
    check_reduced_motion,
    check_scoped_selectors,
)


def validate_code(js: str = "", css: str = "") -> list[Violation]:
    violations: list[Violation] = []
    for check in CHECKS:
        violations.extend(check(js, css))
    return violations


def format_violations(violations: list[Violation]) -> str:
    if not violations:
        return "No issues found. Animation code looks clean."
    lines = [
        f"{index}. [{item.severity.upper()}] {item.rule}: {item.message}"
        for index, item in enumerate(violations, start=1)
    ]
    return f"Found {len(violations)} issue(s):\n" + "\n".join(lines)


def has_critical_violations(violations: list[Violation]) -> bool:
    return any(item.severity == CRITICAL for item in violations)


def violations_to_payload(violations: list[Violation]) -> list[dict[str, str]]:
    return [
        {"severity": item.severity, "rule": item.rule, "message": item.message}
        for item in violations
    ]
