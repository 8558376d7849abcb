"""
Failure classification for AI summary generation.

An error becomes one of five hold reasons. Checks run in a fixed order
and the first match wins:

1. HTTP 429 or "rate limit" text        -> rate_limit
2. "timeout" / "timed out" text         -> timeout
3. HTTP 401 or "unauthorized" text      -> api_error
4. any other HTTP/network/API error     -> api_error
5. "invalid" / "parse" text, bad JSON   -> invalid_response
6. anything else                        -> unknown
"""

import asyncio
import json
import re
from datetime import datetime
from typing import Optional, Union

import httpx

from .errors import AnalysisError
from .types import EntryHoldStatus, HoldReason, generate_id

_STATUS_RE = re.compile(r"\b([45]\d\d)\b")
_RATE_LIMIT_RE = re.compile(r"rate[\s_-]?limit|too many requests|quota", re.IGNORECASE)
_TIMEOUT_RE = re.compile(r"timeout|timed out", re.IGNORECASE)
_UNAUTHORIZED_RE = re.compile(r"unauthori[sz]ed", re.IGNORECASE)
_API_RE = re.compile(r"\bapi\b|network|fetch|connection|http", re.IGNORECASE)
_INVALID_RE = re.compile(r"invalid|parse", re.IGNORECASE)


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _is_transport_error(error: BaseException) -> bool:
    return isinstance(error, (httpx.HTTPError, ConnectionError))


def classify_failure(
    error: Union[BaseException, str, None],
    last_error: Optional[str] = None,
) -> tuple[HoldReason, Optional[str]]:
    """
    Map a generation failure to a hold reason and optional error code.

    Args:
        error: The exception raised, or just its message
        last_error: The provider's remembered message, used when the
            exception carries no text of its own

    Returns:
        (reason, error_code); error_code is the HTTP status as a string
        when one is known, else the AnalysisError code if any
    """
    if isinstance(error, BaseException):
        message = str(error) or last_error or type(error).__name__
        status = _status_of(error)
    else:
        message = error or last_error or ""
        status = None

    if status is None:
        match = _STATUS_RE.search(message)
        if match and _API_RE.search(message) or match and _RATE_LIMIT_RE.search(message):
            status = int(match.group(1))

    code: Optional[str] = str(status) if status is not None else None
    if code is None and isinstance(error, AnalysisError):
        code = error.code

    if status == 429 or _RATE_LIMIT_RE.search(message):
        return HoldReason.RATE_LIMIT, code
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return HoldReason.TIMEOUT, code
    if _TIMEOUT_RE.search(message):
        return HoldReason.TIMEOUT, code
    if status == 401 or _UNAUTHORIZED_RE.search(message):
        return HoldReason.API_ERROR, code
    if status is not None or _is_transport_error(error) or _API_RE.search(message):
        return HoldReason.API_ERROR, code
    if isinstance(error, (json.JSONDecodeError, ValueError)) and not isinstance(error, AnalysisError):
        return HoldReason.INVALID_RESPONSE, code
    if _INVALID_RE.search(message):
        return HoldReason.INVALID_RESPONSE, code
    return HoldReason.UNKNOWN, code


def build_hold_status(
    entry_id: str,
    error: Union[BaseException, str, None],
    previous: Optional[EntryHoldStatus],
    now: datetime,
    last_error: Optional[str] = None,
) -> EntryHoldStatus:
    """
    The hold record after one more failed attempt.

    Overwrites ``previous`` in place of appending: the id and created_at
    are kept, retry_count goes up by one.
    """
    reason, code = classify_failure(error, last_error)
    if isinstance(error, BaseException):
        message = str(error) or last_error or type(error).__name__
    else:
        message = error or last_error or "Unknown error"
    return EntryHoldStatus(
        id=previous.id if previous else generate_id(),
        entry_id=entry_id,
        reason=reason,
        error_message=message,
        error_code=code,
        retry_count=(previous.retry_count if previous else 0) + 1,
        last_attempt=now,
        created_at=previous.created_at if previous else now,
    )
