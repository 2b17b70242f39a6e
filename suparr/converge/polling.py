"""Post-deploy polling loop for operator-gated prerequisites."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from ..clients.retry import RequestCancelled

log = logging.getLogger(__name__)


@dataclass
class DeferredCondition:
    """A prerequisite only the operator can satisfy, plus what it unblocks.

    ``predicate`` is re-evaluated every ``interval`` seconds until it returns
    True or ``horizon`` seconds elapse; ``on_ready`` then runs immediately.
    """

    name: str
    predicate: Callable[[], bool]
    on_ready: Callable[[], Any]
    horizon: float
    interval: float
    unblocks: Tuple[str, ...] = ()
    remediation: str = ""


@dataclass
class PollReport:
    resolved: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    fired: Dict[str, Any] = field(default_factory=dict)

    def outcome(self) -> Dict[str, str]:
        states = {name: "resolved" for name in self.resolved}
        states.update({name: "timeout" for name in self.timed_out})
        states.update({name: "cancelled" for name in self.cancelled})
        return states


def _holds(condition: DeferredCondition) -> bool:
    try:
        return bool(condition.predicate())
    except (httpx.HTTPError, OSError, ValueError, RequestCancelled) as exc:
        log.debug("%s: not satisfied yet (%s)", condition.name, exc)
        return False


def poll_until(
    conditions: Sequence[DeferredCondition],
    interval: float,
    horizon: float,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> PollReport:
    """Re-check ``conditions`` until all resolve, the horizon passes, or ``cancel`` is set.

    Each condition keeps its own cadence and horizon, both bounded by the
    loop-wide ``interval`` and ``horizon``. A condition that turns true fires
    in the same pass it is observed; reaching the horizon is a warning per
    remaining condition, never a failure.
    """
    report = PollReport()
    start = clock()
    deadlines = {c.name: start + min(c.horizon, horizon) for c in conditions}
    next_due = {c.name: start for c in conditions}
    pending = list(conditions)

    while pending:
        if cancel is not None and cancel.is_set():
            break
        now = clock()
        for condition in list(pending):
            expired = now >= deadlines[condition.name]
            if not expired and now < next_due[condition.name]:
                continue
            if _holds(condition):
                log.info(
                    "%s satisfied; running %s",
                    condition.name,
                    ", ".join(condition.unblocks) or "deferred steps",
                )
                report.fired[condition.name] = condition.on_ready()
                report.resolved.append(condition.name)
                pending.remove(condition)
                continue
            if expired or clock() >= deadlines[condition.name]:
                log.warning(
                    "%s still unmet after %.0fs; %s",
                    condition.name,
                    deadlines[condition.name] - start,
                    condition.remediation or "re-run once it is done",
                )
                report.timed_out.append(condition.name)
                pending.remove(condition)
                continue
            next_due[condition.name] = now + min(condition.interval, interval)
        if not pending:
            break
        wake = min(min(next_due[c.name], deadlines[c.name]) for c in pending)
        delay = max(0.0, wake - clock())
        if cancel is not None:
            if cancel.wait(delay):
                break
        else:
            time.sleep(delay)

    if pending:
        report.cancelled.extend(condition.name for condition in pending)
        log.warning("Polling cancelled with %d condition(s) unresolved", len(pending))
    return report
