"""Utility functions and helpers for Fitness Pal.

This module contains shared utilities including logging setup
and custom exceptions.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    # Type imports for better IDE support
    from .logging import setup_logging, get_logger
    from .exceptions import (
        FitnessPalError,
        ConfigurationError,
        TransportError,
        PersistenceError,
        SessionStateError,
        ValidationError,
    )

__all__ = [
    "setup_logging",
    "get_logger",
    "FitnessPalError",
    "ConfigurationError",
    "TransportError",
    "PersistenceError",
    "SessionStateError",
    "ValidationError",
]
