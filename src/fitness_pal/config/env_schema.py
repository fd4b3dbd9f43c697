"""Environment variable schema definitions for Fitness Pal.

This module defines Pydantic models for validating environment
variables and provides structured access to configuration.
"""

from pathlib import Path
from typing import Optional, Dict, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fitness_pal.utils.exceptions import ConfigurationError


class EnvironmentConfig(BaseSettings):
    """Environment configuration using Pydantic settings.

    This provides validated access to environment variables with
    type conversion and default values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables
        populate_by_name=True,
    )

    # Generation backend
    api_base_url: str = Field(
        "https://web-production-aafa6.up.railway.app",
        alias="FITNESS_PAL_API_BASE_URL",
        description="Base URL of the generation backend",
    )
    request_timeout: float = Field(
        30.0,
        alias="FITNESS_PAL_REQUEST_TIMEOUT",
        description="Connect/read timeout in seconds for a single chunk",
        gt=0,
    )

    # Durable store
    store_url: Optional[str] = Field(
        None,
        alias="FITNESS_PAL_STORE_URL",
        description="REST endpoint of the durable conversation store",
    )
    store_api_key: Optional[str] = Field(
        None,
        alias="FITNESS_PAL_STORE_API_KEY",
        description="API key for the durable conversation store",
    )
    store_path: Optional[str] = Field(
        None,
        alias="FITNESS_PAL_STORE_PATH",
        description="Directory for the JSON file conversation store",
    )

    # Application settings
    log_level: str = Field(
        "INFO",
        alias="FITNESS_PAL_LOG_LEVEL",
        description="Logging level",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    log_dir: str = Field(
        "logs",
        alias="FITNESS_PAL_LOG_DIR",
        description="Directory for log files",
    )
    config_file: str = Field(
        "fitness_pal.yml",
        alias="FITNESS_PAL_CONFIG",
        description="Path to the YAML stream configuration",
    )

    @field_validator("api_base_url", "store_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Base URLs are joined with paths that start with '/'."""
        if v is None:
            return v
        return v.rstrip("/")

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir)

    def validate_store_settings(self) -> None:
        """Validate that a REST store is fully configured when requested.

        Raises:
            ConfigurationError: If a store URL is set without an API key.
        """
        if self.store_url and not self.store_api_key:
            raise ConfigurationError(
                "FITNESS_PAL_STORE_URL is set but FITNESS_PAL_STORE_API_KEY is missing",
                details={
                    "missing_variables": ["FITNESS_PAL_STORE_API_KEY"],
                    "help": "Set the store API key in your .env file or system environment",
                },
            )

    def mask_sensitive_values(self) -> Dict[str, Any]:
        """Get configuration with masked sensitive values.

        Returns:
            Dictionary with configuration values, API keys masked.
        """
        config = self.model_dump()

        value = config.get("store_api_key")
        if value:
            if len(value) > 8:
                config["store_api_key"] = f"{'*' * (len(value) - 4)}{value[-4:]}"
            else:
                config["store_api_key"] = "****"

        return config
