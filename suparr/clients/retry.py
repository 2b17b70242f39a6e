"""Retry utilities for service API calls.

Provides exponential backoff retry logic for transient HTTP failures.
Only retries on connection errors and 5xx server errors; 4xx client
errors (auth failures, validation, not found) are never retried.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import httpx

log = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_BASE = 1.0  # seconds
DEFAULT_BACKOFF_MAX = 30.0  # cap on backoff time

RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
)

RETRYABLE_STATUS_CODES = {500, 502, 503, 504, 520, 521, 522, 523, 524}

T = TypeVar("T")


class RequestCancelled(Exception):
    """Raised when the owning run is cancelled while waiting to retry."""


def retry_request(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    backoff_max: float = DEFAULT_BACKOFF_MAX,
    cancel: Optional[threading.Event] = None,
    **kwargs: Any,
) -> T:
    """Call ``func`` with retry logic.

    Usage::

        response = retry_request(client.get, "/rootfolder", cancel=stop)

    Backoff sleeps wait on ``cancel`` so an interrupted run stops retrying
    at once instead of sleeping through the remaining attempts.
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            result = func(*args, **kwargs)
        except RETRYABLE_EXCEPTIONS as exc:
            last_exception = exc
            if attempt >= max_retries:
                raise
            reason = exc.__class__.__name__
        else:
            if (
                isinstance(result, httpx.Response)
                and result.status_code in RETRYABLE_STATUS_CODES
                and attempt < max_retries
            ):
                reason = f"HTTP {result.status_code}"
            else:
                return result

        delay = _compute_delay(attempt, backoff_base, backoff_max)
        log.debug(
            "Retrying request (%s, attempt %d/%d, backoff %.1fs)",
            reason,
            attempt + 1,
            max_retries,
            delay,
        )
        if _wait(delay, cancel):
            raise RequestCancelled("run cancelled while retrying") from last_exception

    if last_exception:
        raise last_exception
    raise RuntimeError("Retry logic exhausted")


def _wait(delay: float, cancel: Optional[threading.Event]) -> bool:
    """Sleep for ``delay``; return True if cancelled meanwhile."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


def _compute_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base * 2^attempt, capped at cap."""
    return min(base * (2 ** attempt), cap)
