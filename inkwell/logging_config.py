"""
Logging for the journal core and the inkwell CLI.

The HTTP client and AI SDKs log every request at INFO; a sync touches
four collections and a batch may call the provider several times, so
those loggers are held at WARNING unless --verbose is given. Sync and
generation outcomes go to a per-journal rotating ops log.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# HTTP and SDK loggers that are chatty at INFO
_LIBRARY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def configure_quiet_mode(quiet: bool = True):
    """
    Hold HTTP and AI SDK loggers at WARNING and ignore Python warnings.

    Remote fetches and provider calls stay out of CLI output; their
    failures still surface as warnings from inkwell.sync and
    inkwell.summaries.

    Args:
        quiet: If False, leave library logging untouched.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def enable_debug_mode():
    """Send DEBUG records from inkwell and its HTTP and AI libraries to stderr (--verbose)."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # One stderr handler, however often this is called
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in ("inkwell",) + _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(data_dir) -> RotatingFileHandler:
    """Attach the journal's rotating ops log (inkwell-ops.log, 1MB x 3).

    Records creates, deletes, holds, local fallbacks and weekly
    summaries at INFO for every Journal, with or without --verbose.
    Returns the handler so Journal.close() can detach it.
    """
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(data_dir / "inkwell-ops.log"),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    inkwell_logger = logging.getLogger("inkwell")
    inkwell_logger.addHandler(handler)
    # Holds and fallbacks are logged at INFO and WARNING; keep both
    if inkwell_logger.level == logging.NOTSET or inkwell_logger.level > logging.INFO:
        inkwell_logger.setLevel(logging.INFO)

    return handler
