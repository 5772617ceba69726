"""Runtime configuration for the pipeline orchestration core."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


class ConfigurationError(ValueError):
    """Invalid configuration value."""


@dataclass(slots=True)
class BreakerSettings:
    """Spend and throughput ceilings checked before any new work starts."""

    daily_cost_cap_cents: int = 5_000
    job_cost_cap_cents: int = 1_500
    max_concurrent_jobs: int = 2
    max_jobs_per_hour: int = 5
    department_daily_cap_cents: int = 2_500
    department_caps: dict[str, int] = field(default_factory=dict)

    def department_cap(self, department: str) -> int:
        return self.department_caps.get(department, self.department_daily_cap_cents)


@dataclass(slots=True)
class PollerSettings:
    """Driving-loop settings for one poller process."""

    worker_id: str = "worker-local"
    poll_interval_seconds: float = 120.0
    claim_mode: str = "atomic"
    max_attempts: int = 3


@dataclass(slots=True)
class RecoverySettings:
    """Liveness thresholds for crash recovery and stale-workflow alerts."""

    stale_running_minutes: int = 10
    stale_workflow_hours: int = 48
    revision_cooldown_minutes: int = 5


@dataclass(slots=True)
class AgentSettings:
    """Content-service and tool-loop settings."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 8_192
    max_turns: int = 15
    review_autofix_rounds: int = 2
    asset_max_bytes: int = 5 * 1024 * 1024
    conventions_path: Path | None = None
    cli_command: tuple[str, ...] = ("pitch-cli",)
    cli_timeout_seconds: int = 180
    probe_timeout_seconds: float = 15.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".pitch_autopilot.db")
    workspace_root: Path = Path(".")
    automation_enabled: bool = True
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5_000
    breaker: BreakerSettings = field(default_factory=BreakerSettings)
    poller: PollerSettings = field(default_factory=PollerSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @property
    def tasks_root(self) -> Path:
        return self.workspace_root / "tasks"

    @property
    def apps_root(self) -> Path:
        return self.workspace_root / "apps"

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        conventions_raw = os.getenv("PITCH_AUTOPILOT_CONVENTIONS_PATH", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("PITCH_AUTOPILOT_DB_PATH", ".pitch_autopilot.db")),
            workspace_root=Path(os.getenv("PITCH_AUTOPILOT_WORKSPACE_ROOT", ".")),
            automation_enabled=_env_bool("PITCH_AUTOPILOT_AUTOMATION_ENABLED", default=True),
            log_level=os.getenv("PITCH_AUTOPILOT_LOG_LEVEL", "INFO").strip().upper(),
            sqlite_busy_timeout_ms=int(os.getenv("PITCH_AUTOPILOT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            breaker=BreakerSettings(
                daily_cost_cap_cents=int(
                    os.getenv("PITCH_AUTOPILOT_DAILY_COST_CAP_CENTS", "5000"),
                ),
                job_cost_cap_cents=int(os.getenv("PITCH_AUTOPILOT_JOB_COST_CAP_CENTS", "1500")),
                max_concurrent_jobs=int(os.getenv("PITCH_AUTOPILOT_MAX_CONCURRENT_JOBS", "2")),
                max_jobs_per_hour=int(os.getenv("PITCH_AUTOPILOT_MAX_JOBS_PER_HOUR", "5")),
                department_daily_cap_cents=int(
                    os.getenv("PITCH_AUTOPILOT_DEPARTMENT_DAILY_CAP_CENTS", "2500"),
                ),
                department_caps=_collect_department_caps(),
            ),
            poller=PollerSettings(
                worker_id=os.getenv("PITCH_AUTOPILOT_WORKER_ID", f"worker-{socket.gethostname()}"),
                poll_interval_seconds=float(
                    os.getenv("PITCH_AUTOPILOT_POLL_INTERVAL_SECONDS", "120"),
                ),
                claim_mode=os.getenv("PITCH_AUTOPILOT_CLAIM_MODE", "atomic").strip().lower(),
                max_attempts=int(os.getenv("PITCH_AUTOPILOT_MAX_ATTEMPTS", "3")),
            ),
            recovery=RecoverySettings(
                stale_running_minutes=int(
                    os.getenv("PITCH_AUTOPILOT_STALE_RUNNING_MINUTES", "10"),
                ),
                stale_workflow_hours=int(os.getenv("PITCH_AUTOPILOT_STALE_WORKFLOW_HOURS", "48")),
                revision_cooldown_minutes=int(
                    os.getenv("PITCH_AUTOPILOT_REVISION_COOLDOWN_MINUTES", "5"),
                ),
            ),
            agent=AgentSettings(
                model=os.getenv("PITCH_AUTOPILOT_MODEL", DEFAULT_MODEL),
                max_tokens=int(os.getenv("PITCH_AUTOPILOT_MAX_TOKENS", "8192")),
                max_turns=int(os.getenv("PITCH_AUTOPILOT_MAX_TURNS", "15")),
                review_autofix_rounds=int(
                    os.getenv("PITCH_AUTOPILOT_REVIEW_AUTOFIX_ROUNDS", "2"),
                ),
                asset_max_bytes=int(
                    os.getenv("PITCH_AUTOPILOT_ASSET_MAX_BYTES", str(5 * 1024 * 1024)),
                ),
                conventions_path=Path(conventions_raw) if conventions_raw else None,
                cli_command=tuple(
                    shlex.split(os.getenv("PITCH_AUTOPILOT_CLI_COMMAND", "pitch-cli")),
                ),
                cli_timeout_seconds=int(os.getenv("PITCH_AUTOPILOT_CLI_TIMEOUT_SECONDS", "180")),
                probe_timeout_seconds=float(
                    os.getenv("PITCH_AUTOPILOT_PROBE_TIMEOUT_SECONDS", "15"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the pipeline cannot run with."""

        if self.poller.claim_mode not in {"atomic", "conditional"}:
            raise ConfigurationError(
                "PITCH_AUTOPILOT_CLAIM_MODE must be 'atomic' or 'conditional', "
                f"got {self.poller.claim_mode!r}.",
            )
        if self.poller.max_attempts <= 0:
            raise ConfigurationError("PITCH_AUTOPILOT_MAX_ATTEMPTS must be > 0.")
        if self.poller.poll_interval_seconds < 0:
            raise ConfigurationError("PITCH_AUTOPILOT_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.recovery.stale_running_minutes <= 0:
            raise ConfigurationError("PITCH_AUTOPILOT_STALE_RUNNING_MINUTES must be > 0.")
        if self.agent.max_turns <= 0:
            raise ConfigurationError("PITCH_AUTOPILOT_MAX_TURNS must be > 0.")
        if self.agent.review_autofix_rounds < 0:
            raise ConfigurationError("PITCH_AUTOPILOT_REVIEW_AUTOFIX_ROUNDS must be >= 0.")
        if not self.agent.cli_command:
            raise ConfigurationError("PITCH_AUTOPILOT_CLI_COMMAND must not be empty.")
        for name, value in (
            ("PITCH_AUTOPILOT_DAILY_COST_CAP_CENTS", self.breaker.daily_cost_cap_cents),
            ("PITCH_AUTOPILOT_JOB_COST_CAP_CENTS", self.breaker.job_cost_cap_cents),
            ("PITCH_AUTOPILOT_DEPARTMENT_DAILY_CAP_CENTS", self.breaker.department_daily_cap_cents),
            ("PITCH_AUTOPILOT_MAX_CONCURRENT_JOBS", self.breaker.max_concurrent_jobs),
            ("PITCH_AUTOPILOT_MAX_JOBS_PER_HOUR", self.breaker.max_jobs_per_hour),
        ):
            if value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer.")


def _collect_department_caps() -> dict[str, int]:
    raw = os.getenv("PITCH_AUTOPILOT_DEPARTMENT_CAPS", "").strip()
    if not raw:
        return {}

    caps: dict[str, int] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if ":" not in token:
            raise ConfigurationError(
                "Invalid PITCH_AUTOPILOT_DEPARTMENT_CAPS entry: "
                f"{token!r}. Expected format '<department>:<cents>'.",
            )
        department, cents_raw = token.rsplit(":", 1)
        department = department.strip()
        try:
            cents = int(cents_raw.strip())
        except ValueError as error:
            raise ConfigurationError(
                f"Invalid PITCH_AUTOPILOT_DEPARTMENT_CAPS value for {department!r}: {cents_raw!r}",
            ) from error
        if not department or cents <= 0:
            raise ConfigurationError(
                f"Invalid PITCH_AUTOPILOT_DEPARTMENT_CAPS entry: {token!r} (must be > 0)",
            )
        caps[department] = cents
    return caps


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: {value!r}")
