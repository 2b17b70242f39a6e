"""FastAPI entrypoint exposing fleet runs and their event streams."""
from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from .converge.orchestrator import Orchestrator
from .models import FleetConfig, FleetReport, RunRecord
from .storage import ConfigRepository, FleetConfigError

ROOT_DIR = Path(os.environ.get("SUPARR_HOME", Path.cwd()))

app = FastAPI(title="SupArr", version="0.1.0")
repo = ConfigRepository(ROOT_DIR)


class ApplyRequest(BaseModel):
    hosts: Optional[List[str]] = None
    poll: bool = False


def _load_fleet() -> FleetConfig:
    try:
        return repo.load_fleet()
    except FleetConfigError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/fleet", response_model=FleetConfig)
def get_fleet() -> FleetConfig:
    """Return the saved fleet description."""
    return _load_fleet()


@app.post("/api/apply", response_model=FleetReport)
def apply_fleet(request: ApplyRequest) -> FleetReport:
    """Reconcile the selected hosts and return the aggregate report."""
    fleet = _load_fleet()
    if not request.poll:
        fleet = fleet.model_copy(update={"poll": fleet.poll.model_copy(update={"enabled": False})})
    targets = fleet.hosts
    if request.hosts:
        unknown = sorted(set(request.hosts) - {host.name for host in fleet.hosts})
        if unknown:
            raise HTTPException(status_code=404, detail=f"Unknown host(s): {', '.join(unknown)}")
        targets = [host for host in fleet.hosts if host.name in request.hosts]
    try:
        return Orchestrator(fleet, repo).run_all(targets)
    except FleetConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/api/hosts/{host}/runs/{run_id}", response_model=RunRecord)
def get_run(host: str, run_id: str) -> RunRecord:
    """Return the recorded events and outcome of one host run."""
    record = repo.get_run(host, run_id)
    if record is None:
        raise HTTPException(status_code=404, detail="run_not_found")
    return record


@app.get("/api/hosts/{host}/runs/{run_id}/events")
async def stream_run_events(host: str, run_id: str) -> EventSourceResponse:
    """Stream stage events for a host run until it finishes."""

    async def event_generator():
        sent = 0
        while True:
            record = repo.get_run(host, run_id)
            if record is None:
                yield {
                    "event": "error",
                    "data": json.dumps({"message": "run_not_found"}),
                }
                return

            while sent < len(record.events):
                event = record.events[sent]
                sent += 1
                yield {
                    "event": "stage",
                    "data": event.model_dump_json(),
                }

            if record.status is not None:
                yield {
                    "event": "status",
                    "data": json.dumps(
                        {"status": record.status, "ok": record.ok, "summary": record.summary or ""}
                    ),
                }
                return

            await asyncio.sleep(0.5)

    return EventSourceResponse(event_generator())
