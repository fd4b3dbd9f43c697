"""Configuration loader for Fitness Pal.

This module handles loading and parsing YAML configuration files
with proper error handling and validation.
"""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from fitness_pal.config.models import StreamConfig
from fitness_pal.utils.exceptions import ConfigurationError
from fitness_pal.utils.logging import get_logger


logger = get_logger(__name__)


class ConfigLoader:
    """Loads and validates stream configuration from YAML files."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize the configuration loader.

        Args:
            config_path: Path to the configuration file.
                        Defaults to 'fitness_pal.yml' in current directory.
        """
        if config_path is None:
            config_path = Path("fitness_pal.yml")

        self.config_path = Path(config_path)
        self._config: Optional[StreamConfig] = None

    def load(self) -> StreamConfig:
        """Load and validate the configuration file.

        A missing file is not an error; the built-in defaults apply.

        Returns:
            Validated configuration object.

        Raises:
            ConfigurationError: If the configuration is invalid or cannot be read.
        """
        if self._config is not None:
            return self._config

        if not self.config_path.exists():
            logger.info(
                f"No configuration file at {self.config_path}, using defaults"
            )
            self._config = StreamConfig()
            return self._config

        try:
            logger.info(f"Loading configuration from: {self.config_path}")
            with open(self.config_path, "r", encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)

            if raw_config is None:
                raw_config = {}

            if not isinstance(raw_config, dict):
                raise ConfigurationError(
                    "Configuration file must contain a mapping",
                    details={"path": str(self.config_path)},
                )

            self._config = StreamConfig(**raw_config)

            logger.info(
                f"Configuration loaded successfully: "
                f"{len(self._config.endpoints)} generation endpoints"
            )

            return self._config

        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML syntax in configuration file: {e}",
                details={
                    "path": str(self.config_path),
                    "error": str(e),
                },
            )
        except ValidationError as e:
            # Format Pydantic validation errors nicely
            error_messages = []
            for error in e.errors():
                loc = " -> ".join(str(x) for x in error["loc"])
                msg = error["msg"]
                error_messages.append(f"{loc}: {msg}")

            raise ConfigurationError(
                "Configuration validation failed:\n" + "\n".join(error_messages),
                details={
                    "path": str(self.config_path),
                    "errors": e.errors(),
                },
            )
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read configuration: {e}",
                details={
                    "path": str(self.config_path),
                    "error_type": type(e).__name__,
                },
            )

    def reload(self) -> StreamConfig:
        """Reload the configuration file.

        Returns:
            Validated configuration object.
        """
        self._config = None
        return self.load()

    @property
    def config(self) -> StreamConfig:
        """Get the loaded configuration, loading it if necessary."""
        if self._config is None:
            self.load()
        return self._config
