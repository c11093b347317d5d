"""
Error types and error logging for ryana.

Store operations raise the exceptions below; the CLI logs full stack
traces to a file while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class RyanaError(Exception):
    """Base class for all errors raised by the ryana core."""

    kind = "error"


class NotFound(RyanaError, LookupError):
    """An operation targeted an id that does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, id: str):
        self.entity = entity
        self.id = id
        super().__init__(f"{entity.capitalize()} not found: {id}")


class DuplicateName(RyanaError):
    """A subject name is already taken."""

    kind = "duplicate_name"

    def __init__(self, name: str, entity: str = "subject"):
        self.name = name
        self.entity = entity
        super().__init__(f"A {entity} named {name!r} already exists")


class ValidationError(RyanaError, ValueError):
    """Malformed input: an import snapshot or a snippet draft."""

    kind = "validation"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ConfirmationRequired(ValidationError):
    """A destructive operation was requested without explicit confirmation."""

    kind = "confirmation_required"


class StorageUnavailable(RyanaError):
    """The database could not be opened or a transaction could not start."""

    kind = "storage_unavailable"


def _error_log_path() -> Path:
    """Resolve error log path, respecting RYANA_STORE_PATH."""
    store = os.environ.get("RYANA_STORE_PATH")
    if store:
        return Path(store) / "ryana-errors.log"
    return Path.home() / ".ryana" / "ryana-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write(f" {type(exc).__name__}: {exc}\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Error log unwritable; the caller still reports the error
    return log_path
