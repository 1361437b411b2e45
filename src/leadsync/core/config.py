"""Configuration models for the leadsync client.

Defines Pydantic v2 models for backend access, job limits, streaming
reconnection, fallback polling and logging. Configuration is read from an
optional YAML file and then overridden by ``LEADSYNC_*`` environment
variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from leadsync.core.constants import (
    DEFAULT_API_URL,
    DEFAULT_MAX_CONCURRENT_JOBS,
    DEFAULT_MAX_POLL_FAILURES,
    DEFAULT_MAX_RECENT_JOBS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_DELAY_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MAX_RECONNECT_DELAY_SECONDS,
)
from leadsync.core.logging import get_logger

_logger = get_logger("config")

# Environment variable -> dotted config path
_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "LEADSYNC_API_URL": ("api_url",),
    "LEADSYNC_API_TOKEN": ("api_token",),
    "LEADSYNC_MAX_CONCURRENT_JOBS": ("max_concurrent_jobs",),
    "LEADSYNC_POLL_INTERVAL": ("poller", "interval_seconds"),
}


class ReconnectPolicy(BaseModel):
    """Bounded retry policy for transient stream drops.

    The delay before attempt ``n`` (1-based) is
    ``delay_seconds * backoff_factor ** (n - 1)``, capped at
    ``max_delay_seconds``. A backoff factor of 1.0 gives a fixed delay.
    """

    max_attempts: int = Field(
        default=DEFAULT_RECONNECT_ATTEMPTS,
        ge=0,
        description="Reconnect attempts after a transient drop before the "
        "channel is reported permanently closed. 0 disables reconnection.",
    )
    delay_seconds: float = Field(
        default=DEFAULT_RECONNECT_DELAY_SECONDS,
        ge=0.0,
        description="Delay before the first reconnect attempt.",
    )
    backoff_factor: float = Field(
        default=1.0,
        ge=1.0,
        description="Multiplier applied to the delay on each further attempt.",
    )
    max_delay_seconds: float = Field(
        default=MAX_RECONNECT_DELAY_SECONDS,
        ge=0.0,
        description="Upper bound on any single reconnect delay.",
    )

    def delay_for(self, attempt: int) -> float:
        """Return the delay before reconnect ``attempt`` (1-based)."""
        delay = self.delay_seconds * self.backoff_factor ** max(attempt - 1, 0)
        return min(delay, self.max_delay_seconds)


class StreamConfig(BaseModel):
    """Live-update channel settings."""

    reconnect: ReconnectPolicy = Field(default_factory=ReconnectPolicy)
    read_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Seconds without any bytes before a stream read is "
        "treated as a transient drop. None waits indefinitely.",
    )
    early_update_policy: Literal["drop", "buffer"] = Field(
        default="drop",
        description="What to do with a lead_update that arrives before its "
        "lead: 'drop' discards it, 'buffer' holds it until the lead arrives.",
    )


class PollerConfig(BaseModel):
    """Fallback poller settings."""

    interval_seconds: float = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS,
        ge=1.0,
        le=60.0,
        description="Seconds between poll ticks while at least one job is active.",
    )
    max_consecutive_failures: int = Field(
        default=DEFAULT_MAX_POLL_FAILURES,
        ge=1,
        description="Failed ticks in a row before degraded jobs show an error.",
    )


class LogConfig(BaseModel):
    """Logging output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    format: Literal["console", "json"] = "console"
    file: Path | None = None

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class ClientConfig(BaseModel):
    """Top-level leadsync client configuration."""

    api_url: str = Field(
        default=DEFAULT_API_URL,
        description="Base URL of the lead-scraper backend.",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token sent with every request and appended to "
        "stream URLs. None sends unauthenticated requests.",
    )
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        gt=0,
    )
    max_concurrent_jobs: int = Field(
        default=DEFAULT_MAX_CONCURRENT_JOBS,
        ge=1,
        description="Active jobs allowed at once; start_job is rejected locally beyond this.",
    )
    max_recent_jobs: int = Field(
        default=DEFAULT_MAX_RECENT_JOBS,
        ge=1,
        description="Capacity of the recent (finished) jobs list.",
    )
    stream: StreamConfig = Field(default_factory=StreamConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def from_yaml(cls, path: Path) -> ClientConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ClientConfig:
        """Load configuration from ``path`` (optional) plus environment overrides.

        Environment variables win over file values.
        """
        data: dict[str, Any] = {}
        if path is not None:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        env = os.environ if environ is None else environ
        for var, dotted in _ENV_OVERRIDES.items():
            value = env.get(var)
            if not value:
                continue
            target = data
            for key in dotted[:-1]:
                target = target.setdefault(key, {})
            target[dotted[-1]] = value
            _logger.debug("config.env_override", variable=var)
        return cls.model_validate(data)


__all__ = [
    "ClientConfig",
    "LogConfig",
    "PollerConfig",
    "ReconnectPolicy",
    "StreamConfig",
]
