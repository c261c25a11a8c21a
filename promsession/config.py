"""
Configuration for promsession.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetricsSettings(BaseSettings):
    """Metrics endpoint and session instrumentation settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROMSESSION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Endpoint
    address: str = Field(default="localhost:9222")
    path: str = Field(default="/metrics")

    # Labels
    app: str = Field(default="")
    namespace: str = Field(default="wish")
    count_command_runs: bool = Field(default=False)

    # Lifecycle
    skip_default_signals: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="info")
    json_logs: bool = Field(default=True)


def get_settings(**overrides) -> MetricsSettings:
    """Get settings from the environment, with explicit overrides applied."""
    return MetricsSettings(**overrides)
