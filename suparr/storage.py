"""Helpers for reading the fleet file, per-host run history and environment records."""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values, set_key, unset_key
from pydantic import ValidationError

from .models import FleetConfig, RunRecord, StageEvent


class FleetConfigError(Exception):
    """Raised when the fleet description cannot be used; nothing has run yet."""


class ConfigRepository:
    """File-backed persistence for the fleet description and per-host run state."""

    def __init__(self, root: Path, fleet_path: Optional[Path] = None) -> None:
        self.root = root
        self.fleet_path = fleet_path or root / "fleet.yaml"
        self.state_dir = root / "state"
        self._lock = threading.Lock()

    def load_fleet(self) -> FleetConfig:
        if not self.fleet_path.exists():
            raise FleetConfigError(f"Missing fleet configuration at {self.fleet_path}")
        try:
            data = yaml.safe_load(self.fleet_path.read_text())
        except yaml.YAMLError as exc:
            raise FleetConfigError(f"Unreadable fleet configuration: {exc}") from exc
        try:
            fleet = FleetConfig.model_validate(data or {})
        except ValidationError as exc:
            raise FleetConfigError(f"Invalid fleet configuration: {exc}") from exc
        if fleet.state_dir is not None:
            self.state_dir = fleet.state_dir
        return fleet

    def save_fleet(self, fleet: FleetConfig) -> None:
        payload = fleet.model_dump(mode="json", exclude_none=True)
        with self.fleet_path.open("w") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False)

    # Per-host state -------------------------------------------------------

    def state_path(self, host: str) -> Path:
        return self.state_dir / host / "state.json"

    def load_state(self, host: str) -> dict[str, Any]:
        path = self.state_path(host)
        if not path.exists():
            return {}
        return json.loads(path.read_text())

    def save_state(self, host: str, state: dict[str, Any]) -> None:
        path = self.state_path(host)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(state, indent=2))

    # Run history helpers -------------------------------------------------

    def start_run(self, host: str, run_id: str) -> None:
        with self._lock:
            state = self.load_state(host)
            runs = state.setdefault("runs", [])
            runs.append({"run_id": run_id, "ok": None, "events": []})
            self.save_state(host, state)

    def append_run_event(self, host: str, run_id: str, event: StageEvent) -> None:
        with self._lock:
            state = self.load_state(host)
            runs = state.setdefault("runs", [])
            for record in runs:
                if record["run_id"] == run_id:
                    record.setdefault("events", []).append(event.model_dump(mode="json"))
                    break
            else:
                runs.append(
                    {"run_id": run_id, "ok": None, "events": [event.model_dump(mode="json")]}
                )
            self.save_state(host, state)

    def finalize_run(
        self, host: str, run_id: str, status: str, summary: str | None = None
    ) -> None:
        with self._lock:
            state = self.load_state(host)
            runs = state.setdefault("runs", [])
            for record in runs:
                if record["run_id"] == run_id:
                    record["ok"] = status == "success"
                    record["status"] = status
                    if summary:
                        record["summary"] = summary
                    break
            else:
                runs.append(
                    {
                        "run_id": run_id,
                        "ok": status == "success",
                        "status": status,
                        "events": [],
                        "summary": summary,
                    }
                )
            self.save_state(host, state)

    def get_run(self, host: str, run_id: str) -> RunRecord | None:
        state = self.load_state(host)
        for record in state.get("runs", []):
            if record.get("run_id") == run_id:
                events = [
                    StageEvent.model_validate(event)
                    for event in record.get("events", [])
                ]
                return RunRecord(
                    run_id=run_id,
                    ok=record.get("ok"),
                    status=record.get("status"),
                    events=events,
                    summary=record.get("summary"),
                )
        return None


class EnvironmentRecord:
    """Key=value store holding discovered credentials for one host.

    Reads and writes go through this object only. ``set`` replaces a key in
    place or appends it, and is persisted immediately when backed by a file.
    """

    def __init__(
        self, path: Optional[Path] = None, values: Optional[Dict[str, str]] = None
    ) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._values: Dict[str, str] = {}
        if path is not None and path.exists():
            self._values = {
                key: value for key, value in dotenv_values(path).items() if value is not None
            }
        if values:
            self._values.update(values)
        self.writes = 0

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            value = self._values.get(key)
        return value if value else default

    def set(self, key: str, value: str) -> bool:
        """Replace ``key`` with ``value``; returns False when nothing changed."""
        with self._lock:
            if self._values.get(key) == value:
                return False
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.touch(exist_ok=True)
                set_key(str(self.path), key, value, quote_mode="never")
            self._values[key] = value
            self.writes += 1
            return True

    def unset(self, key: str) -> bool:
        """Drop ``key``; returns False when it was not present."""
        with self._lock:
            if key not in self._values:
                return False
            if self.path is not None and self.path.exists():
                unset_key(str(self.path), key, quote_mode="never")
            del self._values[key]
            self.writes += 1
            return True

    def as_dict(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values
