"""Logging configuration and utilities for Fitness Pal.

This module provides centralized logging setup and helper functions
for consistent logging across the stream engine.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.logging import RichHandler


# Global logger cache
_loggers: dict[str, logging.Logger] = {}


def setup_logging(
    level: str = "WARNING",
    log_dir: Optional[Path] = None,
    session_id: Optional[str] = None,
    always_debug_file: bool = True,
) -> Path:
    """Set up logging configuration for the application.

    Args:
        level: Console logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Default: WARNING.
        log_dir: Directory for log files. Defaults to 'logs' in the working directory.
        session_id: Identifier used for log file naming.
        always_debug_file: Always log DEBUG level to file regardless of console level.

    Returns:
        Path to the main log file.
    """
    # Convert string level to logging constant
    log_level = getattr(logging, level.upper(), logging.WARNING)

    if log_dir is None:
        log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    if session_id is None:
        session_id = datetime.now().strftime("%Y-%m-%d_%H%M%S")

    log_file = log_dir / f"stream_{session_id}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Handlers do the filtering
    root_logger.handlers.clear()

    console_handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_path=False,
    )
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    if always_debug_file:
        file_handler.setLevel(logging.DEBUG)
    else:
        file_handler.setLevel(log_level)

    file_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    logger = get_logger(__name__)
    logger.debug(f"Logging initialized - Session ID: {session_id}")
    logger.debug(f"Console log level: {level}")
    logger.debug(f"Main log file: {log_file.absolute()}")

    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get or create a logger with the specified name.

    Args:
        name: Logger name (typically __name__ of the module).

    Returns:
        Configured logger instance.
    """
    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)
    return _loggers[name]


class SessionLogger:
    """Per-session logger for generation stream activity.

    Writes uniformly prefixed lines under the ``fitness_pal.session.<id>``
    logger so one session can be grepped out of a shared log file.
    """

    def __init__(self, session_id: str):
        """Initialize session logger.

        Args:
            session_id: Generation session identifier.
        """
        self.session_id = session_id
        self.logger = get_logger(f"fitness_pal.session.{session_id}")

    def log_frame(self, kind: str, payload: Any = None) -> None:
        """Log a dispatched frame at DEBUG level.

        Args:
            kind: Frame kind.
            payload: Frame content, abbreviated in the log line.
        """
        preview = str(payload) if payload is not None else ""
        if len(preview) > 80:
            preview = preview[:80] + "..."
        self.logger.debug(f"FRAME - {kind} {preview}".rstrip())

    def log_transition(self, from_status: str, to_status: str) -> None:
        """Log a session status transition.

        Args:
            from_status: Status before the transition.
            to_status: Status after the transition.
        """
        self.logger.info(f"TRANSITION - {from_status} -> {to_status}")

    def log_feedback(self, feedback: str) -> None:
        """Log feedback submitted to resume the session.

        Args:
            feedback: The user's feedback text.
        """
        self.logger.info(f"FEEDBACK - {feedback}")

    def log_error(self, error: str, exception: Optional[Exception] = None) -> None:
        """Log error with proper formatting.

        Args:
            error: Error description.
            exception: Optional exception object.
        """
        self.logger.error(f"ERROR - {error}")
        if exception:
            self.logger.debug("Exception details:", exc_info=exception)


def get_current_log_files() -> dict[str, Path]:
    """Get paths to current log files.

    Returns:
        Dictionary mapping log type to file path
    """
    log_files = {}

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.FileHandler):
            log_files["main"] = Path(handler.baseFilename)

    return log_files
