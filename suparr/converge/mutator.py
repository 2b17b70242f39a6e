"""Idempotent mutator: make a named resource exist exactly once."""
from __future__ import annotations

import logging
from typing import Iterable, List

import httpx

from ..clients.base import EnsureResult, EnsureStatus, ResourceSpec, ServiceAPI
from ..clients.retry import RequestCancelled

log = logging.getLogger(__name__)


def describe_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        body = exc.response.text.strip()
        return f"API error {exc.response.status_code}" + (f": {body[:200]}" if body else "")
    if isinstance(exc, httpx.RequestError):
        return f"unreachable ({exc.__class__.__name__}: {exc})"
    if isinstance(exc, RequestCancelled):
        return "cancelled"
    return f"{exc.__class__.__name__}: {exc}"


def ensure(api: ServiceAPI, spec: ResourceSpec) -> EnsureResult:
    """Create ``spec`` on ``api`` unless a resource with the same identity exists.

    Existing resources are never inspected for field drift, so hand edits
    made by an operator survive every re-run.
    """
    operation = spec.label
    try:
        existing = api.list_resources(spec.kind)
    except (httpx.HTTPError, ValueError, RequestCancelled) as exc:
        reason = describe_error(exc)
        log.warning("%s: cannot list %s resources: %s", spec.service, spec.kind, reason)
        return EnsureResult(spec.service, operation, EnsureStatus.failed, f"list failed: {reason}")

    for entry in existing:
        if entry.get(spec.identity_field) == spec.identity:
            log.debug("%s: %s already present", spec.service, operation)
            return EnsureResult(spec.service, operation, EnsureStatus.already_exists, "present")

    try:
        api.create_resource(spec.kind, spec.payload)
    except (httpx.HTTPError, ValueError) as exc:
        reason = describe_error(exc)
        log.warning("%s: could not create %s: %s", spec.service, operation, reason)
        return EnsureResult(spec.service, operation, EnsureStatus.failed, reason)

    log.info("%s: created %s", spec.service, operation)
    return EnsureResult(spec.service, operation, EnsureStatus.created, "created")


def ensure_all(api: ServiceAPI, specs: Iterable[ResourceSpec]) -> List[EnsureResult]:
    """Apply ``specs`` in order; one failure never stops the rest."""
    return [ensure(api, spec) for spec in specs]


def skipped(service: str, operation: str, reason: str, best_effort: bool = False) -> EnsureResult:
    log.warning("%s: skipping %s: %s", service, operation, reason)
    return EnsureResult(service, operation, EnsureStatus.skipped, reason, best_effort=best_effort)
