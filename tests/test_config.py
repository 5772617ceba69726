from __future__ import annotations

from pathlib import Path

import allure
import pytest

from pitch_autopilot.config import ConfigurationError, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_defaults_from_empty_environment(monkeypatch) -> None:
    for name in (
        "PITCH_AUTOPILOT_DB_PATH",
        "PITCH_AUTOPILOT_AUTOMATION_ENABLED",
        "PITCH_AUTOPILOT_DEPARTMENT_CAPS",
        "PITCH_AUTOPILOT_CLAIM_MODE",
        "PITCH_AUTOPILOT_CONVENTIONS_PATH",
        "PITCH_AUTOPILOT_CLI_COMMAND",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".pitch_autopilot.db")
    assert settings.automation_enabled is True
    assert settings.breaker.department_caps == {}
    assert settings.poller.claim_mode == "atomic"
    assert settings.agent.conventions_path is None
    assert settings.agent.cli_command == ("pitch-cli",)
    settings.validate()


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PITCH_AUTOPILOT_AUTOMATION_ENABLED", "off")
    monkeypatch.setenv("PITCH_AUTOPILOT_DEPARTMENT_CAPS", "sales:1000, creative:250,")
    monkeypatch.setenv("PITCH_AUTOPILOT_CLAIM_MODE", " Conditional ")
    monkeypatch.setenv("PITCH_AUTOPILOT_CLI_COMMAND", "node cli.js --json")
    monkeypatch.setenv("PITCH_AUTOPILOT_CONVENTIONS_PATH", str(tmp_path / "CONVENTIONS.md"))
    monkeypatch.setenv("PITCH_AUTOPILOT_DAILY_COST_CAP_CENTS", "900")

    settings = Settings.from_env(db_path=tmp_path / "override.db")

    assert settings.db_path == tmp_path / "override.db"
    assert settings.automation_enabled is False
    assert settings.breaker.department_caps == {"sales": 1000, "creative": 250}
    assert settings.breaker.department_cap("sales") == 1000
    assert settings.breaker.department_cap("ops") == 2500
    assert settings.breaker.daily_cost_cap_cents == 900
    assert settings.poller.claim_mode == "conditional"
    assert settings.agent.cli_command == ("node", "cli.js", "--json")
    assert settings.agent.conventions_path == tmp_path / "CONVENTIONS.md"
    assert settings.tasks_root == settings.workspace_root / "tasks"


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("sales", "Expected format"),
        ("sales:lots", "value for 'sales'"),
        ("sales:0", "must be > 0"),
        (":100", "must be > 0"),
    ],
)
def test_invalid_department_caps(monkeypatch, raw: str, message: str) -> None:
    monkeypatch.setenv("PITCH_AUTOPILOT_DEPARTMENT_CAPS", raw)

    with pytest.raises(ConfigurationError, match=message):
        Settings.from_env()


def test_invalid_boolean(monkeypatch) -> None:
    monkeypatch.setenv("PITCH_AUTOPILOT_AUTOMATION_ENABLED", "sometimes")

    with pytest.raises(ConfigurationError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda s: setattr(s.poller, "claim_mode", "optimistic"), "CLAIM_MODE"),
        (lambda s: setattr(s.poller, "max_attempts", 0), "MAX_ATTEMPTS"),
        (lambda s: setattr(s.recovery, "stale_running_minutes", 0), "STALE_RUNNING_MINUTES"),
        (lambda s: setattr(s.agent, "review_autofix_rounds", -1), "REVIEW_AUTOFIX_ROUNDS"),
        (lambda s: setattr(s.agent, "cli_command", ()), "CLI_COMMAND"),
        (lambda s: setattr(s.breaker, "job_cost_cap_cents", 0), "JOB_COST_CAP_CENTS"),
    ],
)
def test_validate_rejects_unusable_values(mutate, message: str) -> None:
    settings = Settings()
    mutate(settings)

    with pytest.raises(ConfigurationError, match=message):
        settings.validate()
