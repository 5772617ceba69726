"""Redaction for error text persisted on job rows and in the audit log."""

from __future__ import annotations

import re
from collections.abc import Callable

MAX_ERROR_CHARS = 2_000

_Replacement = str | Callable[[re.Match[str]], str]

_REPLACEMENTS: tuple[tuple[re.Pattern[str], _Replacement], ...] = (
    (
        re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-]{8,}\b"),
        r"\1 [redacted-token]",
    ),
    (
        re.compile(r"(?i)\bsk-(?:ant-)?[a-z0-9_\-]{8,}\b"),
        "[redacted-token]",
    ),
    (
        re.compile(
            r"(?i)\b(pitch_autopilot|anthropic|vercel|supabase)[a-z0-9_]*_?"
            r"(api_)?(key|token|secret)\b"
            r"\s*[:=]\s*['\"]?[^'\" \n\r\t]+['\"]?",
        ),
        "[redacted-secret]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=[^&\s]+)"),
        lambda match: match.group(1).split("=")[0] + "=[redacted]",
    ),
)


def sanitize_error(text: str, *, max_chars: int = MAX_ERROR_CHARS) -> str:
    """Redact obvious credentials and clamp length."""

    redacted = text.strip()
    for pattern, replacement in _REPLACEMENTS:
        redacted = pattern.sub(replacement, redacted)
    return redacted[:max_chars]


def first_lines(text: str, *, count: int = 3) -> str:
    """Join the first non-empty lines of a command's output into one line."""

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return " ".join(lines[:count])
