"""Message sanitizing for operator-visible text and logs.

Masks secret-sounding words, filesystem paths and database URLs so that
error messages and log lines never disclose where the vault lives or
anything about key material.
"""

import re

REDACTED = "[REDACTED]"
PATH = "[PATH]"
DATABASE_URL = "[DATABASE_URL]"

_SECRET_WORDS = re.compile(r"(?i)password|key|token|secret")
_DATABASE_URLS = re.compile(r"(?i)\b(?:jdbc|sqlite|file):[^\s'\"]*")
_WINDOWS_PATHS = re.compile(r"(?i)(?<![\w])[a-z]:[\\/][^\s'\"]*")
_POSIX_PATHS = re.compile(r"(?<![\w.:/])(?:~|\.{1,2})?/[^\s'\"]+")

GENERIC_MESSAGES = {
    "file": "File operation failed. Please check file permissions and disk space.",
    "access": "Access denied. Insufficient permissions.",
    "store": "Storage operation failed. Please try again later.",
    "unexpected": "An unexpected error occurred. Please try again.",
}


def sanitize_message(message: object, mask_secrets: bool = True) -> str:
    """
    Mask sensitive tokens in a message.

    Args:
        message: Text (or any object) to clean
        mask_secrets: Also mask the words password/key/token/secret

    Returns:
        The text with paths and database URLs (and secret words) masked
    """
    if message is None:
        return "Unknown error"

    text = str(message)
    text = _DATABASE_URLS.sub(DATABASE_URL, text)
    text = _WINDOWS_PATHS.sub(PATH, text)
    text = _POSIX_PATHS.sub(PATH, text)
    if mask_secrets:
        text = _SECRET_WORDS.sub(REDACTED, text)
    return text


def user_message(error: BaseException) -> str:
    """
    Turn any exception into a message that is safe to show the operator.

    Vault errors already carry safe messages. Validation errors keep their
    wording with paths masked; anything else is mapped to a generic
    message for its category.

    Args:
        error: The exception to describe

    Returns:
        Operator-safe message text
    """
    import sqlite3

    from ..vault.exceptions import VaultError

    if isinstance(error, VaultError):
        return str(error)
    if isinstance(error, ValueError):
        return sanitize_message(error, mask_secrets=False)
    if isinstance(error, PermissionError):
        return GENERIC_MESSAGES["access"]
    if isinstance(error, OSError):
        return GENERIC_MESSAGES["file"]
    if isinstance(error, sqlite3.Error):
        return GENERIC_MESSAGES["store"]
    return GENERIC_MESSAGES["unexpected"]
