from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class JobKind(str, Enum):
    TOPICS = "topics"
    COURSE = "course"


# Used for kinds that have no dedicated schedule
DEFAULT_DELAYS_MS = [2500, 3500, 5000, 8000, 10000]


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KOGNO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Kogno Jobs Client", description="Application name")
    version: str = Field(default="0.1.0", description="Client version")
    debug: bool = Field(default=False, description="Debug mode")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # API
    api_base_url: str = Field(
        default="http://localhost:3000", description="Base URL of the jobs API"
    )
    api_prefix: str = Field(default="/api", description="Path prefix for API calls")
    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    job_endpoints: dict[str, str] = Field(
        default_factory=lambda: {
            JobKind.TOPICS.value: "/onboarding/topics",
            JobKind.COURSE.value: "/onboarding/course",
        },
        description="Submission/status endpoint per job kind",
    )

    # Local state
    state_dir: Path = Field(
        default_factory=lambda: Path.home() / ".kogno",
        description="Directory holding persisted client state",
    )

    # Push channel
    realtime_enabled: bool = Field(
        default=True, description="Subscribe to the push channel when tracking jobs"
    )
    realtime_path: str = Field(
        default="/api/realtime", description="Path of the server-sent events endpoint"
    )

    # Progress tracker
    tracker_interval_ms: int = Field(
        default=5000, gt=0, description="Idle check interval in milliseconds"
    )
    tracker_idle_threshold_ms: int | None = Field(
        default=None, description="Idle threshold; defaults to the interval"
    )
    tracker_reconcile_delay_ms: int = Field(
        default=2000, ge=0, description="Delay of the post-subscribe status check"
    )
    tracker_subscribe_timeout_ms: int = Field(
        default=10000, gt=0, description="How long to wait for the push channel to acknowledge"
    )

    # Polling engine
    topics_delays_ms: list[int] = Field(
        default_factory=lambda: [1000, 1500, 2000, 3000, 4000],
        description="Polling schedule for topic classification jobs",
    )
    course_delays_ms: list[int] = Field(
        default_factory=lambda: [2000, 3000, 4000, 5000],
        description="Polling schedule for course generation jobs",
    )
    auth_error_bailout: int = Field(
        default=2, ge=1, description="Consecutive 401/403/404 errors before giving up"
    )
    error_bailout: int = Field(
        default=5, ge=1, description="Consecutive transport errors before giving up"
    )

    @field_validator("api_base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("api_base_url must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("topics_delays_ms", "course_delays_ms")
    @classmethod
    def validate_schedule(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("Delay schedule must not be empty")
        if any(delay <= 0 for delay in value):
            raise ValueError("Delay schedule entries must be positive")
        return value

    @property
    def idle_threshold_ms(self) -> int:
        return self.tracker_idle_threshold_ms or self.tracker_interval_ms

    def delays_for(self, kind: str) -> list[int]:
        """Polling schedule for a job kind."""
        if kind == JobKind.TOPICS.value:
            return list(self.topics_delays_ms)
        if kind == JobKind.COURSE.value:
            return list(self.course_delays_ms)
        return list(DEFAULT_DELAYS_MS)

    def endpoint_for(self, kind: str) -> str:
        """Submission path for a job kind, including the API prefix."""
        path = self.job_endpoints.get(kind, f"/jobs/{kind}")
        return f"{self.api_prefix.rstrip('/')}{path}"


# Global settings instance
settings = ClientSettings()


def get_settings() -> ClientSettings:
    """Return the process-wide settings."""
    return settings
