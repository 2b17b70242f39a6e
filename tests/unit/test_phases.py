"""Tests for individual workflow phases against fake services."""
from __future__ import annotations

from pathlib import Path
from typing import Callable

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import FakeFleet, api_key, build_stack
from suparr.clients.arr import build_fields, field_value
from suparr.clients.base import EnsureStatus
from suparr.converge.credentials import Credential, is_pending
from suparr.converge.phases import HostContext, run_indexer_manager
from suparr.storage import EnvironmentRecord


def _context(host, fleet: FakeFleet) -> HostContext:
    return HostContext(
        host=host,
        record=EnvironmentRecord(host.env_path),
        transport=fleet.transport,
        discovery_interval=0.01,
    )


class TestIndexerManager:
    """Phase 4 finishes what phase 3 could not push into Prowlarr."""

    def test_pending_manager_key_pushed_with_current_prowlarr_key(
        self, fake_fleet: FakeFleet, make_host: Callable
    ):
        host = make_host(services=["radarr", "prowlarr"])
        stack = build_stack(fake_fleet, host)
        original = api_key("alpha", "radarr")
        rotated = api_key("alpha", "radarr", generation=2)
        stack["prowlarr"].resources["application"].append(
            {
                "id": 1,
                "name": "Radarr",
                "fields": build_fields({"baseUrl": "http://radarr:7878", "apiKey": original}),
            }
        )
        ctx = _context(host, fake_fleet)
        ctx.record.set("RADARR_API_KEY", rotated)
        ctx.record.set("RADARR_API_KEY_PENDING", original)
        ctx.credentials["radarr"] = Credential(
            "radarr", "RADARR_API_KEY", rotated, "config.xml", rotated
        )

        results = run_indexer_manager(ctx)

        application = stack["prowlarr"].resources["application"][0]
        assert field_value(application, "apiKey") == rotated
        assert stack["prowlarr"].names("application") == ["Radarr"]
        assert not is_pending(ctx.record, "RADARR_API_KEY")
        retried = [
            result
            for result in results
            if result.service == "radarr" and result.operation == "credential RADARR_API_KEY"
        ]
        assert [result.status for result in retried] == [EnsureStatus.updated]

    def test_nothing_pending_leaves_applications_alone(
        self, fake_fleet: FakeFleet, make_host: Callable
    ):
        host = make_host(services=["radarr", "prowlarr"])
        stack = build_stack(fake_fleet, host)
        ctx = _context(host, fake_fleet)
        key = api_key("alpha", "radarr")
        ctx.record.set("RADARR_API_KEY", key)
        ctx.credentials["radarr"] = Credential("radarr", "RADARR_API_KEY", key, "config.xml", key)

        run_indexer_manager(ctx)

        assert stack["prowlarr"].names("application") == ["Radarr"]
        assert [method for method, _ in stack["prowlarr"].writes()] == ["POST"]


class TestFrontendLinks:
    def test_default_links_skip_managers_without_root_folders(self, make_host: Callable):
        host = make_host(services=["radarr", "sonarr", "overseerr"])
        host.services.radarr.root_folders = []
        ctx = HostContext(host=host, record=EnvironmentRecord())

        assert [link.service for link in ctx.frontend_links()] == ["sonarr"]
        assert ctx.unlinked_managers() == ["radarr"]
