"""Configuration management for Fitness Pal.

This module handles loading, parsing, and validating configuration
from YAML files and environment variables.
"""

from .env_schema import EnvironmentConfig
from .loader import ConfigLoader
from .models import EndpointConfig, GenerationKind, StreamConfig

__all__ = [
    "ConfigLoader",
    "EndpointConfig",
    "EnvironmentConfig",
    "GenerationKind",
    "StreamConfig",
]
