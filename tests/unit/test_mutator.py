"""Tests for the idempotent mutator."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping

import httpx

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from suparr.clients.base import EnsureStatus, ResourceSpec
from suparr.converge.mutator import describe_error, ensure, ensure_all, skipped


class MemoryAPI:
    """ServiceAPI double that keeps resources in a dict."""

    name = "radarr"

    def __init__(self) -> None:
        self.resources: Dict[str, List[Dict[str, Any]]] = {}
        self.creates: List[Mapping[str, Any]] = []
        self.fail_list = False
        self.reject: set = set()

    def list_resources(self, kind: str) -> List[Mapping[str, Any]]:
        if self.fail_list:
            request = httpx.Request("GET", "http://radarr:7878/api/v3/rootfolder")
            raise httpx.ConnectError("Connection refused", request=request)
        return list(self.resources.get(kind, []))

    def create_resource(self, kind: str, payload: Mapping[str, Any]) -> Any:
        if payload.get("path") in self.reject:
            request = httpx.Request("POST", "http://radarr:7878/api/v3/rootfolder")
            response = httpx.Response(400, text="Folder is not writable", request=request)
            raise httpx.HTTPStatusError("400", request=request, response=response)
        self.creates.append(payload)
        self.resources.setdefault(kind, []).append(dict(payload))
        return payload


def _folder(path: str) -> ResourceSpec:
    return ResourceSpec("radarr", "root_folder", path, "path", {"path": path})


class TestEnsure:
    """Tests for existence-checked creation."""

    def test_creates_missing(self):
        api = MemoryAPI()
        result = ensure(api, _folder("/movies"))
        assert result.status is EnsureStatus.created
        assert result.changed
        assert api.creates == [{"path": "/movies"}]

    def test_second_call_is_noop(self):
        api = MemoryAPI()
        ensure(api, _folder("/movies"))
        result = ensure(api, _folder("/movies"))
        assert result.status is EnsureStatus.already_exists
        assert result.ok and not result.changed
        assert len(api.creates) == 1

    def test_existing_resource_not_updated(self):
        """Operator edits to a matching resource are left alone."""
        api = MemoryAPI()
        api.resources["root_folder"] = [{"path": "/movies", "accessible": False}]
        result = ensure(api, _folder("/movies"))
        assert result.status is EnsureStatus.already_exists
        assert api.creates == []

    def test_list_failure(self):
        api = MemoryAPI()
        api.fail_list = True
        result = ensure(api, _folder("/movies"))
        assert result.status is EnsureStatus.failed
        assert "unreachable" in result.detail
        assert api.creates == []

    def test_create_failure(self):
        api = MemoryAPI()
        api.reject.add("/movies")
        result = ensure(api, _folder("/movies"))
        assert result.status is EnsureStatus.failed
        assert "API error 400" in result.detail
        assert "Folder is not writable" in result.detail

    def test_ensure_all_continues_after_failure(self):
        api = MemoryAPI()
        api.reject.add("/movies")
        results = ensure_all(api, [_folder("/movies"), _folder("/concerts")])
        assert [result.status for result in results] == [
            EnsureStatus.failed,
            EnsureStatus.created,
        ]


class TestHelpers:
    def test_spec_payload_is_read_only(self):
        spec = _folder("/movies")
        try:
            spec.payload["path"] = "/tv"
        except TypeError:
            pass
        assert spec.payload["path"] == "/movies"

    def test_equal_specs_hash_equal(self):
        assert hash(_folder("/movies")) == hash(_folder("/movies"))
        assert _folder("/movies") == _folder("/movies")

    def test_skipped(self):
        result = skipped("radarr", "configure", "not ready", best_effort=True)
        assert result.status is EnsureStatus.skipped
        assert result.best_effort

    def test_describe_generic_error(self):
        assert describe_error(ValueError("bad kind")) == "ValueError: bad kind"
