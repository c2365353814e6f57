"""Utility modules for SecureVault.

Provides common utilities:
- Logging configuration
- Redaction of secrets and paths in messages
- Human-readable sizes
"""

from .logging import (
    RedactingFilter,
    console,
    get_logger,
    setup_logging,
)
from .sanitize import (
    sanitize_message,
    user_message,
)


def format_size(size: int) -> str:
    """Format a byte count as B, KB, MB or GB with one decimal."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "console",
    "RedactingFilter",
    # Sanitizing
    "sanitize_message",
    "user_message",
    # Formatting
    "format_size",
]
