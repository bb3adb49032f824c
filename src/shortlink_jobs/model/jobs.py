"""Value and state types shared by the background jobs and the scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple

from shortlink_jobs.configs.env_config import Env
from shortlink_jobs.utils.casting import to_bool, to_positive_int

CIRCUIT_BREAKER_THRESHOLD = 5
RETRY_FAILURE_LIMIT = 3
HEALTH_WARNING_FAILURES = 3
STALE_RUN_THRESHOLD = timedelta(hours=2)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _require_positive(name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"Invalid {name}; expected positive int but got {value!r}")


@dataclass(frozen=True)
class JobResult:
    """Outcome of a single job execution."""

    success: bool
    processed_count: int = 0
    expired_count: int = 0
    errors: Tuple[str, ...] = ()
    execution_time_ms: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def failed(cls, message: str, *, timestamp: Optional[datetime] = None) -> "JobResult":
        """Build the result recorded when a job body raised instead of returning."""
        return cls(
            success=False,
            errors=(message,),
            timestamp=timestamp or utcnow(),
        )


@dataclass
class JobStatus:
    """Cumulative health record of one logical job, owned by the scheduler."""

    is_running: bool = False
    last_execution: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    consecutive_failures: int = 0
    total_executions: int = 0
    total_successes: int = 0
    total_failures: int = 0

    def record(self, result: JobResult) -> None:
        """Fold a finished run into the counters and release the running flag.

        :param result: Result returned (or synthesised) for the finished run.
        """
        self.is_running = False
        self.last_execution = result.timestamp
        self.total_executions += 1

        if result.success:
            self.last_success = result.timestamp
            self.total_successes += 1
            self.consecutive_failures = 0
        else:
            self.last_failure = result.timestamp
            self.total_failures += 1
            self.consecutive_failures += 1

    def reset(self) -> None:
        """Zero every counter and timestamp; ``is_running`` is left as is."""
        self.last_execution = None
        self.last_success = None
        self.last_failure = None
        self.consecutive_failures = 0
        self.total_executions = 0
        self.total_successes = 0
        self.total_failures = 0

    @property
    def circuit_open(self) -> bool:
        return self.consecutive_failures >= CIRCUIT_BREAKER_THRESHOLD


@dataclass(frozen=True)
class ScheduleConfig:
    """Timer settings applied for one ``start_scheduler`` call."""

    enabled: bool = True
    interval_minutes: int = 60
    password_reset_cleanup_interval_minutes: int = 60
    health_check_interval_minutes: int = 30
    max_concurrent_jobs: int = 1
    retry_on_failure: bool = True
    retry_delay_minutes: int = 15
    batch_size: int = 1000
    initial_run_delay_seconds: int = 10
    initial_health_check_delay_seconds: int = 5

    def __post_init__(self) -> None:
        for name in (
            "interval_minutes",
            "password_reset_cleanup_interval_minutes",
            "health_check_interval_minutes",
            "max_concurrent_jobs",
            "retry_delay_minutes",
            "batch_size",
        ):
            _require_positive(name, getattr(self, name))
        if self.initial_run_delay_seconds < 0 or self.initial_health_check_delay_seconds < 0:
            raise ValueError("Initial delays must not be negative")

    @classmethod
    def from_env(cls) -> "ScheduleConfig":
        """Build the configuration from the process environment."""
        return cls(
            enabled=to_bool(Env.JOB_SCHEDULER_ENABLED),
            interval_minutes=to_positive_int(
                Env.URL_EXPIRATION_JOB_INTERVAL, name="URL_EXPIRATION_JOB_INTERVAL"
            ),
            password_reset_cleanup_interval_minutes=to_positive_int(
                Env.PASSWORD_RESET_CLEANUP_JOB_INTERVAL, name="PASSWORD_RESET_CLEANUP_JOB_INTERVAL"
            ),
            health_check_interval_minutes=to_positive_int(
                Env.JOB_HEALTH_CHECK_INTERVAL, name="JOB_HEALTH_CHECK_INTERVAL"
            ),
            retry_delay_minutes=to_positive_int(
                Env.JOB_RETRY_DELAY_MINUTES, name="JOB_RETRY_DELAY_MINUTES"
            ),
            batch_size=to_positive_int(
                Env.URL_EXPIRATION_BATCH_SIZE, name="URL_EXPIRATION_BATCH_SIZE"
            ),
        )


@dataclass(frozen=True)
class ExpirationConfig:
    """Paging and retry settings for the URL expiration job."""

    batch_size: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 5000
    max_consecutive_skipped_batches: int = 3

    def __post_init__(self) -> None:
        _require_positive("batch_size", self.batch_size)
        _require_positive("max_retries", self.max_retries)
        _require_positive("max_consecutive_skipped_batches", self.max_consecutive_skipped_batches)
        if self.retry_delay_ms < 0:
            raise ValueError(f"Invalid retry_delay_ms; expected >=0 but got {self.retry_delay_ms}")


@dataclass(frozen=True)
class ExpirationCandidate:
    """A URL whose expiry date has passed but which is still marked active."""

    id: Any
    short_code: str
    user_id: Optional[Any]
    expiry_date: datetime
    original_url: str


@dataclass
class CleanupJobStats:
    """Running totals kept by the password reset cleanup job."""

    last_run: Optional[datetime] = None
    total_runs: int = 0
    total_tokens_cleaned_up: int = 0
    last_cleanup_count: int = 0
    errors: int = 0
    last_error: Optional[str] = None
