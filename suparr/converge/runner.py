"""Host runner: one complete reconciliation of one target host."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from ..clients.base import EnsureResult, EnsureStatus
from ..constants import DEFAULT_DISCOVERY_INTERVAL
from ..models import HostConfig, HostRunReport, HttpConfig, PollConfig, StageEvent
from ..storage import ConfigRepository, EnvironmentRecord
from .phases import HostContext, build_workflow
from .polling import poll_until
from .workflow import PhaseOutcome, Recorder, Workflow, event_status

log = logging.getLogger(__name__)

PROBLEMS = (EnsureStatus.failed, EnsureStatus.timed_out)


@dataclass
class HostRunner:
    repo: ConfigRepository
    poll: PollConfig = field(default_factory=PollConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    workflow: Workflow = field(default_factory=build_workflow)
    transport: Optional[httpx.BaseTransport] = None
    discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL

    def run(self, run_id: str, host: HostConfig, cancel: threading.Event) -> HostRunReport:
        events: List[StageEvent] = []
        self.repo.start_run(host.name, run_id)

        def record(stage: str, status: str, detail: Optional[str] = None) -> None:
            self._record(host.name, run_id, events, stage, status, detail)

        ctx = HostContext(
            host=host,
            record=EnvironmentRecord(host.env_path),
            http=self.http,
            poll=self.poll,
            cancel=cancel,
            transport=self.transport,
            discovery_interval=self.discovery_interval,
        )
        outcomes = self.workflow.execute(ctx, record)
        deferred, fired = self._resolve_deferred(ctx, record)

        if cancel.is_set():
            status, summary = "failed", "cancelled"
        else:
            status = host_status(outcomes, fired)
            summary = summarize(outcomes, fired, deferred)
        self.repo.finalize_run(host.name, run_id, status, summary)
        log.info("%s finished: %s (%s)", host.name, status, summary)
        return HostRunReport(
            host=host.name,
            run_id=run_id,
            status=status,
            events=events,
            deferred=deferred,
            summary=summary,
        )

    # ------------------------------------------------------------------ helpers

    def _resolve_deferred(
        self, ctx: HostContext, record: Recorder
    ) -> Tuple[Dict[str, str], List[EnsureResult]]:
        if not ctx.deferred:
            return {}, []
        if not self.poll.enabled or ctx.cancel.is_set():
            for condition in ctx.deferred:
                detail = f"not polled; {condition.remediation}"
                record(f"deferred.{condition.name}", "skipped", detail)
            return {condition.name: "not_polled" for condition in ctx.deferred}, []

        record("poll", "started", ", ".join(condition.name for condition in ctx.deferred))
        report = poll_until(ctx.deferred, self.poll.interval, self.poll.horizon, cancel=ctx.cancel)
        fired: List[EnsureResult] = []
        for name in report.resolved:
            results = report.fired.get(name) or []
            for result in results:
                record(
                    f"deferred.{name}.{result.service}",
                    event_status(result),
                    f"{result.operation}: {result.detail}",
                )
            fired.extend(results)
            record(f"deferred.{name}", "ok", "resolved")
        for name in report.timed_out:
            record(f"deferred.{name}", "timeout", "operator action still pending")
        for name in report.cancelled:
            record(f"deferred.{name}", "skipped", "cancelled")
        return report.outcome(), fired

    def _record(
        self,
        host: str,
        run_id: str,
        events: List[StageEvent],
        stage: str,
        status: str,
        detail: str | None = None,
    ) -> None:
        event = StageEvent(stage=stage, status=status, detail=detail)
        events.append(event)
        self.repo.append_run_event(host, run_id, event)


def host_status(outcomes: Sequence[PhaseOutcome], fired: Sequence[EnsureResult] = ()) -> str:
    """success, partial or failed for one host run.

    Best-effort steps and deferred operator actions never lower the status.
    """
    results = [result for outcome in outcomes for result in outcome.results] + list(fired)
    required = [result for result in results if not result.best_effort]
    problems = [result for result in required if result.status in PROBLEMS]
    if problems and not any(result.ok for result in results):
        return "failed"
    blocked = any(
        outcome.status == "skipped" and not outcome.best_effort for outcome in outcomes
    )
    if problems or blocked or any(result.status is EnsureStatus.skipped for result in required):
        return "partial"
    return "success"


def summarize(
    outcomes: Sequence[PhaseOutcome],
    fired: Sequence[EnsureResult],
    deferred: Dict[str, str],
) -> str:
    results = [result for outcome in outcomes for result in outcome.results] + list(fired)
    changed = sum(1 for result in results if result.changed)
    present = sum(1 for result in results if result.status is EnsureStatus.already_exists)
    problems = sum(1 for result in results if result.status in PROBLEMS)
    skipped = sum(1 for result in results if result.status is EnsureStatus.skipped)
    parts = [f"{changed} changed", f"{present} unchanged"]
    if problems:
        parts.append(f"{problems} failed")
    if skipped:
        parts.append(f"{skipped} skipped")
    blocked = [outcome.name for outcome in outcomes if outcome.status == "skipped"]
    if blocked:
        parts.append(f"phases skipped: {', '.join(blocked)}")
    if deferred:
        parts.append(
            "deferred: " + ", ".join(f"{name}={state}" for name, state in sorted(deferred.items()))
        )
    return "; ".join(parts)
