"""
Configuration management for kubepki.

Non-secret configuration loaded from YAML file, overridable from environment
variables. Certificate validity and key strength are not settings:
they are fixed by the template builder.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, PositiveFloat
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_PATH = Path("/etc/kubepki/config.yaml")


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    if CONFIG_PATH.exists():
        with open(CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


class Settings(BaseSettings):
    """Library settings."""

    model_config = SettingsConfigDict(
        env_prefix="KUBEPKI_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    # Upper bound for one bootstrap batch, guards against a stalled entropy source
    issuance_timeout_seconds: PositiveFloat | None = Field(
        default=120.0,
        description="Deadline for the whole concurrent issuance join. None disables it.",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
