"""
Service settings.

Process-level knobs (where state lives, where the control API listens,
whether errors expose tracebacks) read from the environment or a ``.env``
file. Module parameters live in ``AdaptiveGridConfig`` instead.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    """Service configuration with ``SMART_GRID_`` prefixed environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_GRID_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path = Field(default=Path("data"), description="Directory for asg_*.json state")
    config_file: Optional[Path] = Field(default=None, description="YAML module configuration")

    api_host: str = Field(default="127.0.0.1", description="Control API bind address")
    api_port: int = Field(default=8766, ge=1, le=65535, description="Control API port")
    debug_errors: bool = Field(default=False, description="Include tracebacks in API errors")

    log_level: str = Field(default="INFO", description="Console log level")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {value}")
        return value
