from __future__ import annotations

import json

import allure
import pytest

from pitch_autopilot.orchestrator.handlers import OutputInvalidError, PreconditionError
from pitch_autopilot.orchestrator.handlers.review import PERSONAS, handle_review, parse_synthesis
from pitch_autopilot.orchestrator.models import JobType, ReviewVerdict

pytestmark = [
    allure.epic("Stage Handlers"),
    allure.feature("Multi-Persona Review"),
]


def _synthesis(verdict: str, *, critical=(), major=(), minor=()) -> str:
    return json.dumps(
        {
            "verdict": verdict,
            "findings": {"critical": list(critical), "major": list(major), "minor": list(minor)},
        },
    )


def _script_review(content_service, synthesis: str) -> None:
    for persona in PERSONAS:
        content_service.reply_text(f"{persona.key}: looks fine")
    content_service.reply_text(synthesis)


def _review_context(make_workflow, make_job, make_context):
    workflow = make_workflow()
    job = make_job(workflow, JobType.REVIEW)
    context = make_context(job, workflow)
    context.app_dir.mkdir(parents=True)
    (context.app_dir / "index.html").write_text("<h1>Acme</h1>", "utf-8")
    return context


def test_parse_synthesis_normalizes_verdict_and_findings() -> None:
    verdict, findings = parse_synthesis(
        'Summary:\n{"verdict": " PASS ", "findings": {"minor": [" tighten hero ", ""]}}',
    )

    assert verdict == ReviewVerdict.PASS
    assert findings == {"critical": [], "major": [], "minor": ["tighten hero"]}


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ('{"verdict": "maybe"}', "Unknown review verdict"),
        ('{"verdict": "pass", "findings": ["x"]}', "must be an object"),
        ('{"verdict": "fail", "findings": {"major": "x"}}', "findings.major must be a list"),
        ("the app is great", "Expected a JSON object"),
    ],
)
def test_parse_synthesis_rejects_unusable_output(text: str, message: str) -> None:
    with pytest.raises(OutputInvalidError, match=message):
        parse_synthesis(text)


def test_review_requires_built_app(make_workflow, make_job, make_context) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.REVIEW)

    with pytest.raises(PreconditionError, match="No app to review"):
        handle_review(make_context(job, workflow))


def test_review_runs_every_persona_then_synthesis(
    repository,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    context = _review_context(make_workflow, make_job, make_context)
    _script_review(content_service, _synthesis("pass", minor=["tighten hero"]))

    result = handle_review(context)

    assert result.verdict == ReviewVerdict.PASS
    assert result.payload["autofix_rounds"] == 0
    assert result.payload["budget_exhausted"] is False
    assert result.payload["rounds"][0]["personas"] == [persona.key for persona in PERSONAS]
    assert result.payload["safety"] == {"violations": [], "has_critical": False}
    # Minor findings alone do not produce revision notes.
    assert result.follow_up_payload == {}
    assert len(content_service.requests) == len(PERSONAS) + 1
    categories = [
        entry.category for entry in repository.list_ledger_entries(job_id=context.job.job_id)
    ]
    assert categories.count("review-synthesis") == 1
    assert "review-designer" in categories


def test_conditional_review_carries_revision_notes(
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    context = _review_context(make_workflow, make_job, make_context)
    _script_review(content_service, _synthesis("conditional", major=["Hero copy is vague"]))

    result = handle_review(context)

    assert result.verdict == ReviewVerdict.CONDITIONAL
    assert result.follow_up_payload == {"revision_notes": "- Hero copy is vague"}


def test_critical_findings_trigger_autofix_and_rereview(
    repository,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    context = _review_context(make_workflow, make_job, make_context)
    _script_review(content_service, _synthesis("fail", critical=["Hero image is missing"]))
    content_service.reply_tools(
        ("write_file", {"path": "index.html", "content": "<h1>Acme</h1><img src='hero.png'>"}),
    )
    content_service.reply_tools(("done", {"summary": "Added hero image."}))
    _script_review(content_service, _synthesis("pass"))

    result = handle_review(context)

    assert result.verdict == ReviewVerdict.PASS
    assert result.payload["autofix_rounds"] == 1
    assert [item["verdict"] for item in result.payload["rounds"]] == ["fail", "pass"]
    assert result.payload["rounds"][0]["critical"] == 1
    assert "hero.png" in (context.app_dir / "index.html").read_text("utf-8")
    categories = {
        entry.category for entry in repository.list_ledger_entries(job_id=context.job.job_id)
    }
    assert "review-autofix" in categories


def test_autofix_rounds_are_bounded(
    settings,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    settings.agent.review_autofix_rounds = 0
    context = _review_context(make_workflow, make_job, make_context)
    _script_review(content_service, _synthesis("fail", critical=["Broken layout"]))

    result = handle_review(context)

    assert result.verdict == ReviewVerdict.FAIL
    assert result.payload["autofix_rounds"] == 0
    assert result.follow_up_payload == {"revision_notes": "- Broken layout"}


def test_budget_exhaustion_mid_review_is_conditional(
    settings,
    make_workflow,
    make_job,
    make_context,
    content_service,
) -> None:
    settings.breaker.job_cost_cap_cents = 30
    context = _review_context(make_workflow, make_job, make_context)
    content_service.reply_text("product: needs work", input_tokens=100_000)

    result = handle_review(context)

    assert result.verdict == ReviewVerdict.CONDITIONAL
    assert result.payload["budget_exhausted"] is True
    assert result.payload["rounds"][0]["personas"] == ["product"]
    assert len(content_service.requests) == 1
