"""Tests for desired-resource builders."""
from __future__ import annotations

from pathlib import Path
from typing import Callable

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from suparr.clients.arr import field_value
from suparr.converge import catalog
from suparr.models import HostConfig, ImportListConfig


class TestResourceSpecs:
    """Specs must come out equal on every run for the same configuration."""

    def test_specs_are_stable(self, make_host: Callable[..., HostConfig]):
        host = make_host()
        first = catalog.root_folder_specs(host, "radarr")
        assert first == catalog.root_folder_specs(host, "radarr")
        assert catalog.qbittorrent_spec(host, "sonarr", "pw") == catalog.qbittorrent_spec(
            host, "sonarr", "pw"
        )

    def test_default_root_folders(self, make_host: Callable[..., HostConfig]):
        specs = catalog.root_folder_specs(make_host(), "sonarr")
        assert [spec.identity for spec in specs] == ["/tv", "/anime"]
        assert all(spec.identity_field == "path" for spec in specs)

    def test_configured_root_folders(self, make_host: Callable[..., HostConfig]):
        host = make_host(services=["radarr"])
        host.services.radarr.root_folders = ["/films"]
        assert [spec.identity for spec in catalog.root_folder_specs(host, "radarr")] == ["/films"]

    def test_readarr_root_folder_extras(self, make_host: Callable[..., HostConfig]):
        host = make_host(services=["readarr"])
        spec = catalog.root_folder_specs(host, "readarr")[0]
        assert spec.payload["name"] == "books"
        assert spec.payload["defaultMetadataProfileId"] == 1

    def test_download_client_routes_through_tunnel(self, make_host: Callable[..., HostConfig]):
        tunnelled = catalog.qbittorrent_spec(make_host(), "radarr", "pw")
        untunnelled = make_host(services=["qbittorrent", "radarr"])
        direct = catalog.qbittorrent_spec(untunnelled, "radarr", "pw")
        assert field_value(tunnelled.payload, "host") == "gluetun"
        assert field_value(direct.payload, "host") == "qbittorrent"
        assert field_value(direct.payload, "movieCategory") == "radarr"

    def test_categories_deduplicated(self, make_host: Callable[..., HostConfig]):
        host = make_host()
        host.services.sonarr.category = "radarr"
        specs = catalog.qbittorrent_category_specs(host, ["radarr", "sonarr"])
        assert [spec.identity for spec in specs] == ["radarr"]
        assert specs[0].payload["savePath"] == "/downloads/radarr"

    def test_application_spec(self, make_host: Callable[..., HostConfig]):
        spec = catalog.application_spec(make_host(), "sonarr", "k" * 32)
        assert spec.service == "prowlarr"
        assert spec.identity == "Sonarr"
        assert field_value(spec.payload, "baseUrl") == "http://sonarr:8989"
        assert field_value(spec.payload, "apiKey") == "k" * 32

    def test_import_list_fields_sorted(self):
        entry = ImportListConfig(
            name="Trakt Popular",
            service="radarr",
            implementation="TraktPopularImport",
            config_contract="TraktPopularSettings",
            root_folder="/movies",
            fields={"limit": 100, "authUser": "me"},
        )
        spec = catalog.import_list_spec(entry)
        assert [field["name"] for field in spec.payload["fields"]] == ["authUser", "limit"]

    def test_bazarr_connection(self, make_host: Callable[..., HostConfig]):
        host = make_host()
        assert catalog.bazarr_connection(host, "sonarr")["port"] == 8989
        assert catalog.bazarr_connection(host, "lidarr") is None
