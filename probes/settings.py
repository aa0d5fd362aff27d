"""Probes configuration."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProbeSettings(BaseSettings):
    """Configuration for the probe engine and its built-in sinks.

    Resolution order: programmatic, environment vars, .env file, defaults.
    All settings can be overridden via environment variables with the
    PROBES_ prefix.
    """

    capture_line: bool = Field(
        default=True, description="Record the caller's line number on each firing"
    )
    console_stream: Literal["stderr", "stdout"] = Field(
        default="stderr", description="Standard stream the console sinks write to"
    )
    timestamp_format: str = Field(
        default="%Y-%m-%d %H:%M:%S.%f",
        description="strftime format for the console line prefix",
    )
    max_value_length: int = Field(
        default=2000, gt=0, description="Truncate console values longer than this"
    )
    report_stage_errors: bool = Field(
        default=True, description="Log stage failures on the probes.errors logger"
    )

    model_config = SettingsConfigDict(
        env_prefix="PROBES_", env_file=".env", extra="ignore"
    )


# Global settings instance
_settings: Optional[ProbeSettings] = None


def get_settings() -> ProbeSettings:
    """Get the global probe settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = ProbeSettings()
    return _settings


def set_settings(settings: Optional[ProbeSettings]) -> None:
    """Set the global probe settings. None re-reads the environment lazily."""
    global _settings
    _settings = settings
