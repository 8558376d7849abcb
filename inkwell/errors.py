"""
Error types and error logging for inkwell.

Remote and AI failures are normally absorbed by the sync layer; the
exceptions here are what escapes when they cannot be.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class InkwellError(Exception):
    """Base class for inkwell errors."""


class RemoteStoreError(InkwellError):
    """The remote document store could not complete a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LocalStoreError(InkwellError):
    """The local fallback store could not read or write."""


class SyncError(InkwellError):
    """Both the remote store and the local fallback failed."""


class EntryNotFoundError(InkwellError, KeyError):
    """No entry with the given id is loaded."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class AnalysisUnavailableError(InkwellError):
    """No AI analysis provider is configured."""


class AnalysisError(InkwellError):
    """The AI analysis provider failed or returned an unusable response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class WeeklySummaryError(InkwellError):
    """Weekly insight generation failed; nothing was persisted."""

    def __init__(self, message: str, reason: str, code: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.code = code


def _error_log_path() -> Path:
    """Resolve error log path, respecting INKWELL_DATA_DIR."""
    data_dir = os.environ.get("INKWELL_DATA_DIR")
    if data_dir:
        return Path(data_dir) / "inkwell-errors.log"
    return Path.home() / ".inkwell" / "inkwell-errors.log"


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
            f.write(f"[{timestamp}] {type(exc).__name__}")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # best effort; never crash the CLI over the log
    return log_path
