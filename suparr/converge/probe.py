"""Readiness prober: bounded, cancellable polling of a service health endpoint."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

log = logging.getLogger(__name__)


class ProbeStatus(str, Enum):
    ready = "ready"
    timed_out = "timed_out"
    cancelled = "cancelled"


@dataclass(frozen=True)
class ServiceEndpoint:
    """Where a service answers and how long to wait for it. Fixed for a run."""

    name: str
    base_url: str
    health_path: str = "/"
    max_attempts: int = 30
    interval: float = 2.0
    timeout: float = 5.0

    @property
    def health_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.health_path.lstrip("/")


@dataclass(frozen=True)
class ProbeResult:
    endpoint: ServiceEndpoint
    status: ProbeStatus
    attempts: int
    detail: str

    @property
    def ready(self) -> bool:
        return self.status is ProbeStatus.ready


def probe(
    endpoint: ServiceEndpoint,
    max_attempts: Optional[int] = None,
    interval: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> ProbeResult:
    """Poll ``endpoint`` until it answers, the attempts run out, or ``cancel`` is set.

    Any response below 500 counts as ready: an auth failure still proves the
    service is up. Failed attempts are never fatal on their own.
    """
    attempts = max_attempts if max_attempts is not None else endpoint.max_attempts
    wait = interval if interval is not None else endpoint.interval
    url = endpoint.health_url
    last_error: Optional[str] = None

    with httpx.Client(timeout=endpoint.timeout, verify=False, transport=transport) as client:
        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                return ProbeResult(endpoint, ProbeStatus.cancelled, attempt - 1, "cancelled")
            try:
                response = client.get(url)
                if response.status_code < 500:
                    log.debug("%s ready after %d attempt(s)", endpoint.name, attempt)
                    return ProbeResult(
                        endpoint,
                        ProbeStatus.ready,
                        attempt,
                        f"{url} ready ({response.status_code})",
                    )
                last_error = f"HTTP {response.status_code}"
            except httpx.HTTPError as exc:
                last_error = str(exc) or exc.__class__.__name__

            if attempt < attempts:
                if cancel is not None:
                    if cancel.wait(wait):
                        return ProbeResult(endpoint, ProbeStatus.cancelled, attempt, "cancelled")
                else:
                    time.sleep(wait)

    detail = (
        f"{endpoint.name} not ready after {attempts} attempts at {url}: "
        f"{last_error or 'no response'}; check the container is running and re-run"
    )
    log.warning(detail)
    return ProbeResult(endpoint, ProbeStatus.timed_out, attempts, detail)
