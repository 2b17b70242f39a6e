"""Dependency-ordered workflow: phases run in a fixed order, each gated on readiness."""
from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import (
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
)

from ..clients.base import EnsureResult, EnsureStatus

log = logging.getLogger(__name__)

T = TypeVar("T")
C = TypeVar("C", bound="GateContext")

Recorder = Callable[[str, str, Optional[str]], None]

EVENT_STATUS: Dict[EnsureStatus, str] = {
    EnsureStatus.ready: "ok",
    EnsureStatus.created: "ok",
    EnsureStatus.already_exists: "ok",
    EnsureStatus.updated: "ok",
    EnsureStatus.failed: "failed",
    EnsureStatus.skipped: "skipped",
    EnsureStatus.timed_out: "timeout",
    EnsureStatus.deferred: "skipped",
}


class GateContext(Protocol):
    """What a phase gate needs to know about the host run."""

    ready: Dict[str, bool]
    cancel: threading.Event

    def enabled(self, service: str) -> bool:
        ...


@dataclass
class WorkflowPhase(Generic[C]):
    """One step of the workflow.

    ``requires`` names services probed by earlier phases; an enabled one that
    is not ready blocks the phase. Disabled services never block.
    """

    name: str
    run: Callable[[C], List[EnsureResult]]
    requires: Tuple[str, ...] = ()
    best_effort: bool = False


@dataclass
class PhaseOutcome:
    name: str
    status: str
    results: List[EnsureResult] = field(default_factory=list)
    best_effort: bool = False
    detail: Optional[str] = None


def event_status(result: EnsureResult) -> str:
    return EVENT_STATUS[result.status]


def fan_out(
    func: Callable[[T], List[EnsureResult]],
    items: Iterable[T],
    max_workers: int = 4,
) -> List[EnsureResult]:
    """Apply ``func`` to independent siblings concurrently; results keep input order.

    Each task runs in a copy of the caller's context so per-host log capture
    follows it into the worker thread.
    """
    items = list(items)
    if not items:
        return []
    if len(items) == 1:
        return func(items[0])
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, func, item) for item in items
        ]
        results: List[EnsureResult] = []
        for future in futures:
            results.extend(future.result())
    return results


class Workflow(Generic[C]):
    """Executes phases strictly in order; one phase's failure never stops the next."""

    def __init__(self, phases: Sequence[WorkflowPhase[C]]) -> None:
        names = [phase.name for phase in phases]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate phase names: {names}")
        self.phases = list(phases)

    @property
    def order(self) -> List[str]:
        return [phase.name for phase in self.phases]

    def execute(self, ctx: C, record: Recorder) -> List[PhaseOutcome]:
        outcomes: List[PhaseOutcome] = []
        for phase in self.phases:
            if ctx.cancel.is_set():
                record(phase.name, "skipped", "cancelled")
                outcomes.append(
                    PhaseOutcome(
                        phase.name, "skipped", best_effort=phase.best_effort, detail="cancelled"
                    )
                )
                continue

            blocked = [
                service
                for service in phase.requires
                if ctx.enabled(service) and not ctx.ready.get(service, False)
            ]
            if blocked:
                detail = f"waiting on {', '.join(blocked)} (not ready)"
                log.warning("Skipping phase %s: %s", phase.name, detail)
                record(phase.name, "skipped", detail)
                outcomes.append(
                    PhaseOutcome(
                        phase.name, "skipped", best_effort=phase.best_effort, detail=detail
                    )
                )
                continue

            record(phase.name, "started", None)
            results = phase.run(ctx)
            for result in results:
                record(
                    f"{phase.name}.{result.service}",
                    event_status(result),
                    f"{result.operation}: {result.detail}",
                )
            status = _phase_status(results)
            record(phase.name, status, _summarize(results))
            outcomes.append(
                PhaseOutcome(phase.name, status, results, best_effort=phase.best_effort)
            )
        return outcomes


def _phase_status(results: Sequence[EnsureResult]) -> str:
    failed = any(
        result.status in (EnsureStatus.failed, EnsureStatus.timed_out) for result in results
    )
    return "failed" if failed and not any(result.ok for result in results) else "ok"


def _summarize(results: Sequence[EnsureResult]) -> str:
    if not results:
        return "nothing to do"
    counts: Dict[str, int] = {}
    for result in results:
        counts[result.status.value] = counts.get(result.status.value, 0) + 1
    return ", ".join(f"{status}={count}" for status, count in sorted(counts.items()))
