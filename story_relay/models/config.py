"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import tempfile
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Environment-dependent admission defaults: (cooldown seconds, daily limit)
ENVIRONMENT_LIMITS = {
    "development": (10, 100),
    "production": (60, 3),
}

DEFAULT_USER_AGENT = "TeleStory Android Client v1.43Build: 79, Patch: 20250820"


def default_scratch_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "story-relay")


class RelayConfig(BaseModel):
    """A validated configuration model for the relay service."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Credentials & endpoints
    bot_token: str = Field(..., repr=False)
    catalog_api_url: str
    catalog_api_key: str = Field(..., repr=False)
    archive_channel_id: int
    user_agent: str = DEFAULT_USER_AGENT

    # Admission
    app_env: str = "development"
    cooldown_seconds: int | None = None
    daily_limit: int | None = None
    timezone: str = "UTC"

    # Concurrency & timeouts (seconds)
    max_workers: int = 8
    catalog_timeout: float = 30.0
    download_timeout: float = 120.0
    send_timeout: float = 60.0
    request_deadline: float = 600.0
    poll_timeout: int = 10

    # Storage & process
    scratch_dir: str = Field(default_factory=default_scratch_dir)
    database_path: str = "story_relay.sqlite"
    health_port: int = 8080

    @field_validator("bot_token", "catalog_api_url", "catalog_api_key")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v:
            raise ValueError("This setting is required and cannot be empty.")
        return v

    @field_validator("catalog_api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Ensures the catalog endpoint is an absolute HTTP(S) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Catalog API URL must start with http:// or https://.")
        return v.rstrip("/")

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        v = v.lower()
        if v in ("local", "dev"):
            return "development"
        if v == "prod":
            return "production"
        if v not in ENVIRONMENT_LIMITS:
            raise ValueError(
                f"App environment must be one of: {', '.join(ENVIRONMENT_LIMITS)}."
            )
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of download workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator(
        "catalog_timeout", "download_timeout", "send_timeout", "request_deadline"
    )
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_limits(self) -> "RelayConfig":
        """Checks explicit admission overrides for sane values."""
        if self.cooldown_seconds is not None and self.cooldown_seconds < 0:
            raise ValueError("Cooldown cannot be negative.")
        if self.daily_limit is not None and self.daily_limit < 1:
            raise ValueError("The daily limit must be at least 1.")
        return self

    @property
    def cooldown_window(self) -> int:
        """Cooldown in seconds, falling back to the environment default."""
        if self.cooldown_seconds is not None:
            return self.cooldown_seconds
        return ENVIRONMENT_LIMITS[self.app_env][0]

    @property
    def daily_quota(self) -> int:
        """Daily request limit, falling back to the environment default."""
        if self.daily_limit is not None:
            return self.daily_limit
        return ENVIRONMENT_LIMITS[self.app_env][1]

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
