"""Operator-facing cost and breaker reports."""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime

from pitch_autopilot.config import BreakerSettings
from pitch_autopilot.orchestrator.breaker import BreakerDecision
from pitch_autopilot.orchestrator.models import LedgerEntryView


def render_cost_lines(
    *,
    entries: list[LedgerEntryView],
    since: datetime,
    settings: BreakerSettings,
    output_format: str = "table",
) -> list[str]:
    """Group ledger entries by department and category."""

    by_department: dict[str, int] = defaultdict(int)
    by_category: dict[str, int] = defaultdict(int)
    input_tokens = output_tokens = 0
    for entry in entries:
        by_department[entry.department] += entry.cost_cents
        by_category[entry.category] += entry.cost_cents
        input_tokens += entry.input_tokens
        output_tokens += entry.output_tokens
    total = sum(by_department.values())

    if output_format == "json":
        return [
            json.dumps(
                {
                    "since": since.isoformat(),
                    "total_cents": total,
                    "daily_cap_cents": settings.daily_cost_cap_cents,
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    "departments": dict(sorted(by_department.items())),
                    "categories": dict(sorted(by_category.items())),
                },
                indent=2,
                ensure_ascii=False,
            ),
        ]

    lines = [
        f"Cost since {since.isoformat()}: total={_usd(total)} "
        f"cap={_usd(settings.daily_cost_cap_cents)} entries={len(entries)} "
        f"input_tokens={input_tokens} output_tokens={output_tokens}",
        "By department:",
    ]
    for department, cents in sorted(by_department.items()):
        lines.append(
            f"  {department}: {_usd(cents)} / {_usd(settings.department_cap(department))}",
        )
    lines.append("By category:")
    for category, cents in sorted(by_category.items(), key=lambda item: (-item[1], item[0])):
        lines.append(f"  {category}: {_usd(cents)}")
    return lines


def render_breaker_lines(*, decision: BreakerDecision, settings: BreakerSettings) -> list[str]:
    state = "closed (work allowed)" if decision.allowed else f"open: {decision.reason}"
    lines = [
        f"Circuit breaker: {state}",
        f"  daily cost: {_usd(decision.daily_cost_cents)} / {_usd(settings.daily_cost_cap_cents)}",
        f"  running jobs: {decision.running_jobs} / {settings.max_concurrent_jobs}",
        f"  started last hour: {decision.started_last_hour} / {settings.max_jobs_per_hour}",
    ]
    if decision.blocked_departments:
        lines.append(f"  departments at cap: {', '.join(decision.blocked_departments)}")
    return lines


def _usd(cents: int) -> str:
    return f"${cents / 100:.2f}"
