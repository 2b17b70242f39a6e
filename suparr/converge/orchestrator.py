"""Parallel multi-host orchestrator.

Each host runs the full workflow in its own worker thread. Log records from
that run are captured into a private buffer and written out as one labeled
block when the host finishes, so output from two hosts never interleaves.
"""
from __future__ import annotations

import contextvars
import logging
import socket
import sys
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Sequence, TextIO

from ..models import FleetConfig, FleetReport, HostConfig, HostRunReport, StageEvent
from ..storage import ConfigRepository, FleetConfigError
from .runner import HostRunner

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_capture: contextvars.ContextVar[Optional[List[str]]] = contextvars.ContextVar(
    "suparr_host_capture", default=None
)
_capture_lock = threading.Lock()
_capture_depth = 0


class HostCaptureHandler(logging.Handler):
    """Sends records to the current host's buffer, everything else to the root handlers."""

    def emit(self, record: logging.LogRecord) -> None:
        buffer = _capture.get()
        if buffer is None:
            logging.getLogger().handle(record)
            return
        buffer.append(self.format(record))


@contextmanager
def capture_host_logs(logger_name: str = "suparr") -> Iterator[HostCaptureHandler]:
    global _capture_depth
    logger = logging.getLogger(logger_name)
    handler = HostCaptureHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    with _capture_lock:
        logger.addHandler(handler)
        _capture_depth += 1
        logger.propagate = False
    try:
        yield handler
    finally:
        with _capture_lock:
            logger.removeHandler(handler)
            _capture_depth -= 1
            if _capture_depth == 0:
                logger.propagate = True


def resolvable(address: str) -> bool:
    try:
        socket.getaddrinfo(address, None)
    except OSError as exc:
        log.error("Cannot resolve %s: %s", address, exc)
        return False
    return True


class Orchestrator:
    """Runs every selected host concurrently and aggregates their reports."""

    def __init__(
        self,
        fleet: FleetConfig,
        repo: ConfigRepository,
        runner: Optional[HostRunner] = None,
        stream: Optional[TextIO] = None,
        max_workers: Optional[int] = None,
        resolver: Callable[[str], bool] = resolvable,
    ) -> None:
        self.fleet = fleet
        self.repo = repo
        self.runner = runner or HostRunner(repo=repo, poll=fleet.poll, http=fleet.http)
        self.stream = stream if stream is not None else sys.stdout
        self.max_workers = max_workers
        self.resolver = resolver
        self._cancel = threading.Event()
        self._output_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop every in-flight probe, discovery wait and polling loop."""
        if not self._cancel.is_set():
            log.warning("Cancelling all host runs")
        self._cancel.set()

    def run_all(self, hosts: Optional[Sequence[HostConfig]] = None) -> FleetReport:
        targets = list(hosts if hosts is not None else self.fleet.hosts)
        if not targets:
            raise FleetConfigError("No target hosts selected")
        unresolved = {host.name for host in targets if not self.resolver(host.address)}
        if len(unresolved) == len(targets):
            raise FleetConfigError(
                "No target host is resolvable: "
                + ", ".join(f"{host.name} ({host.address})" for host in targets)
            )

        reports: Dict[str, HostRunReport] = {}
        for host in targets:
            if host.name in unresolved:
                reports[host.name] = self._unresolvable(host)
                self._flush(reports[host.name])

        runnable = [host for host in targets if host.name not in unresolved]
        with capture_host_logs():
            with ThreadPoolExecutor(
                max_workers=self.max_workers or len(runnable), thread_name_prefix="host"
            ) as executor:
                futures = [
                    executor.submit(contextvars.copy_context().run, self._run_host, host)
                    for host in runnable
                ]
                try:
                    for future in as_completed(futures):
                        report = future.result()
                        reports[report.host] = report
                        self._flush(report)
                except KeyboardInterrupt:
                    self.cancel()
                    raise

        ordered = [reports[host.name] for host in targets]
        fleet_report = FleetReport(ok=all(report.ok for report in ordered), hosts=ordered)
        self._write_summary(fleet_report)
        return fleet_report

    # ------------------------------------------------------------------ helpers

    def _run_host(self, host: HostConfig) -> HostRunReport:
        buffer: List[str] = []
        _capture.set(buffer)
        run_id = uuid.uuid4().hex
        log.info("Run %s starting on %s (%s)", run_id, host.name, host.address)
        try:
            report = self.runner.run(run_id, host, self._cancel)
        except Exception as exc:
            # A crash is contained to its own host
            log.exception("%s: run aborted", host.name)
            summary = f"unexpected error: {exc.__class__.__name__}: {exc}"
            self.repo.finalize_run(host.name, run_id, "failed", summary)
            report = HostRunReport(host=host.name, run_id=run_id, status="failed", summary=summary)
        report.output = "\n".join(buffer)
        return report

    def _unresolvable(self, host: HostConfig) -> HostRunReport:
        run_id = uuid.uuid4().hex
        detail = f"cannot resolve {host.address}"
        event = StageEvent(stage="resolve", status="failed", detail=detail)
        self.repo.start_run(host.name, run_id)
        self.repo.append_run_event(host.name, run_id, event)
        self.repo.finalize_run(host.name, run_id, "failed", detail)
        return HostRunReport(
            host=host.name,
            run_id=run_id,
            status="failed",
            events=[event],
            summary=detail,
            output=f"{detail}; check the address in the fleet file",
        )

    def _flush(self, report: HostRunReport) -> None:
        with self._output_lock:
            self.stream.write(f"===== {report.host}: {report.status} =====\n")
            for line in report.output.splitlines():
                self.stream.write(f"[{report.host}] {line}\n")
            self.stream.flush()

    def _write_summary(self, report: FleetReport) -> None:
        width = max(len(host.host) for host in report.hosts)
        with self._output_lock:
            self.stream.write("===== summary =====\n")
            for host in report.hosts:
                self.stream.write(f"{host.host:<{width}}  {host.status:<8} {host.summary or ''}\n")
            self.stream.write(f"overall: {'success' if report.ok else 'failure'}\n")
            self.stream.flush()
