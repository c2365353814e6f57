"""Logging configuration for SecureVault.

Provides consistent logging across all modules with:
- Console output with colors (via Rich)
- File logging for debugging
- Configurable log levels
- Redaction of secrets and paths on every installed handler
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .sanitize import sanitize_message


# Global console for rich output
console = Console()

# Default log format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(message)s"

ROOT_LOGGER = "securevault"


class RedactingFilter(logging.Filter):
    """Rewrites each record's message through the sanitizer."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_message(record.getMessage())
        record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    rich_output: bool = True,
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file to write logs to
        rich_output: Whether to use Rich for console output

    Returns:
        Configured root logger
    """
    # Convert level string to logging constant
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)

    # Clear existing handlers
    logger.handlers.clear()

    # Console handler
    if rich_output:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=False,
        )
        console_handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler.setLevel(log_level)
    console_handler.addFilter(RedactingFilter())
    logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(logging.DEBUG)  # File gets all messages
        file_handler.addFilter(RedactingFilter())
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Args:
        name: Module name (e.g., "securevault.vault.catalog")

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
