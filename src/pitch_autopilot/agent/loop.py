"""Bounded multi-turn tool loop against the content-generation service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pitch_autopilot.agent.client import ContentRequest, ContentService
from pitch_autopilot.agent.tools import Toolset
from pitch_autopilot.orchestrator.breaker import BudgetGuard
from pitch_autopilot.orchestrator.ledger import CostLedger
from pitch_autopilot.orchestrator.models import JobView, WorkflowView

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 15


class LoopStopReason(str, Enum):
    DONE = "done"
    END_TURN = "end_turn"
    MAX_TURNS = "max_turns"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass(slots=True)
class LoopResult:
    """Outcome of one loop run; the transcript stays in memory only."""

    stop_reason: LoopStopReason
    turns: int
    summary: str | None = None
    final_text: str = ""
    files_written: list[str] = field(default_factory=list)
    tool_calls: int = 0
    budget_exhausted: bool = False
    budget_note: str | None = None
    cost_cents: int = 0
    transcript: list[dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "stop_reason": self.stop_reason.value,
            "turns": self.turns,
            "summary": self.summary,
            "files_written": list(self.files_written),
            "tool_calls": self.tool_calls,
            "budget_exhausted": self.budget_exhausted,
            "budget_note": self.budget_note,
            "cost_cents": self.cost_cents,
        }


class AgenticLoopRunner:
    """Drives tool-use turns until done, no tool calls, the turn ceiling, or budget exhaustion."""

    def __init__(
        self,
        *,
        content_service: ContentService,
        ledger: CostLedger,
        budget_guard: BudgetGuard,
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self.content_service = content_service
        self.ledger = ledger
        self.budget_guard = budget_guard
        self.max_turns = max_turns

    def run(  # noqa: PLR0913
        self,
        *,
        job: JobView,
        workflow: WorkflowView | None,
        system: str,
        prompt: str,
        toolset: Toolset,
        category: str | None = None,
        max_turns: int | None = None,
    ) -> LoopResult:
        ceiling = self.max_turns if max_turns is None else max_turns
        messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]
        result = LoopResult(stop_reason=LoopStopReason.MAX_TURNS, turns=0, transcript=messages)

        for turn in range(1, ceiling + 1):
            if turn > 1:
                budget = self.budget_guard.check(job=job, workflow=workflow)
                if budget.exhausted:
                    logger.warning(
                        "Budget exhausted for job %s before turn %d: %s",
                        job.job_id,
                        turn,
                        budget.reason,
                    )
                    result.stop_reason = LoopStopReason.BUDGET_EXHAUSTED
                    result.budget_exhausted = True
                    result.budget_note = (
                        f"Stopped before turn {turn}: {budget.reason}. Partial output kept."
                    )
                    break

            response = self.content_service.create(
                ContentRequest(system=system, messages=messages, tools=toolset.definitions),
            )
            result.turns = turn
            result.cost_cents += self.ledger.record_usage(
                job=job,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                category=category,
            )
            if response.text:
                result.final_text = response.text
            messages.append(
                {
                    "role": "assistant",
                    "content": [block.to_message_param() for block in response.blocks],
                },
            )

            tool_calls = response.tool_calls
            if not tool_calls:
                result.stop_reason = LoopStopReason.END_TURN
                break

            tool_results: list[dict[str, Any]] = []
            for call in tool_calls:
                result.tool_calls += 1
                outcome = toolset.dispatch(call.name or "", call.input)
                tool_result: dict[str, Any] = {
                    "type": "tool_result",
                    "tool_use_id": call.id,
                    "content": outcome.content,
                }
                if outcome.is_error:
                    tool_result["is_error"] = True
                tool_results.append(tool_result)
                if outcome.done_summary is not None:
                    result.summary = outcome.done_summary
            messages.append({"role": "user", "content": tool_results})

            if result.summary is not None:
                result.stop_reason = LoopStopReason.DONE
                break

        result.files_written = list(toolset.files_written)
        logger.info(
            "Agent loop for job %s stopped: reason=%s turns=%d tool_calls=%d files=%d",
            job.job_id,
            result.stop_reason.value,
            result.turns,
            result.tool_calls,
            len(result.files_written),
        )
        return result
