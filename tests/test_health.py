from __future__ import annotations

import allure
import httpx
import pytest

from pitch_autopilot.orchestrator.handlers import PreconditionError, TransientStageError
from pitch_autopilot.orchestrator.handlers import health as health_module
from pitch_autopilot.orchestrator.http_probe import HttpProbe
from pitch_autopilot.orchestrator.models import JobType

pytestmark = [
    allure.epic("Stage Handlers"),
    allure.feature("Health Check"),
]


def _use_transport(monkeypatch, handler) -> list[httpx.Request]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    monkeypatch.setattr(
        health_module,
        "HttpProbe",
        lambda **kwargs: HttpProbe(transport=httpx.MockTransport(_record), **kwargs),
    )
    return seen


def test_healthy_published_url(monkeypatch, make_workflow, make_job, make_context) -> None:
    seen = _use_transport(monkeypatch, lambda request: httpx.Response(200))
    workflow = make_workflow(published_url="https://acme.pitch.test")
    job = make_job(workflow, JobType.HEALTH_CHECK)

    result = health_module.handle_health_check(make_context(job, workflow))

    assert result.payload["url"] == "https://acme.pitch.test"
    assert result.payload["status_code"] == 200
    assert result.payload["elapsed_ms"] >= 0
    assert [request.method for request in seen] == ["HEAD"]
    assert seen[0].headers["User-Agent"] == "pitch-autopilot-health/1.0"


def test_head_rejected_falls_back_to_get(
    monkeypatch,
    make_workflow,
    make_job,
    make_context,
) -> None:
    seen = _use_transport(
        monkeypatch,
        lambda request: httpx.Response(405 if request.method == "HEAD" else 200),
    )
    workflow = make_workflow()
    job = make_job(workflow, JobType.HEALTH_CHECK, payload={"url": "https://acme.pitch.test/a"})

    result = health_module.handle_health_check(make_context(job, workflow))

    assert result.payload["status_code"] == 200
    assert [request.method for request in seen] == ["HEAD", "GET"]


def test_unhealthy_url_is_transient(monkeypatch, make_workflow, make_job, make_context) -> None:
    _use_transport(monkeypatch, lambda request: httpx.Response(503))
    workflow = make_workflow(published_url="https://acme.pitch.test")
    job = make_job(workflow, JobType.HEALTH_CHECK)

    with pytest.raises(TransientStageError, match="HTTP 503"):
        health_module.handle_health_check(make_context(job, workflow))


def test_connection_error_is_transient(monkeypatch, make_workflow, make_job, make_context) -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _use_transport(monkeypatch, _refuse)
    workflow = make_workflow(published_url="https://acme.pitch.test")
    job = make_job(workflow, JobType.HEALTH_CHECK)

    with pytest.raises(TransientStageError, match="connection refused"):
        health_module.handle_health_check(make_context(job, workflow))


def test_missing_url_is_precondition(make_workflow, make_job, make_context) -> None:
    workflow = make_workflow()
    job = make_job(workflow, JobType.HEALTH_CHECK)

    with pytest.raises(PreconditionError, match="no published URL"):
        health_module.handle_health_check(make_context(job, workflow))
