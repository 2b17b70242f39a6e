"""Tests for the service clients and on-disk credential readers."""
from __future__ import annotations

from pathlib import Path

import httpx
import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent))

from fakes import (
    ArrService,
    BazarrService,
    QbitService,
    SeerrService,
    write_arr_key,
    write_bazarr_key,
    write_sabnzbd_ini,
    write_seerr_key,
)
from suparr.clients.arr import ArrAPI, build_fields, set_field_values
from suparr.clients.base import EnsureStatus
from suparr.clients.bazarr import BazarrAPI
from suparr.clients.qb import QBittorrentClient
from suparr.clients.seerr import SeerrAPI
from suparr.clients.util import (
    read_arr_api_key,
    read_bazarr_api_key,
    read_sabnzbd_api_key,
    read_seerr_api_key,
    sabnzbd_setup_complete,
)

KEY = "0123456789abcdef0123456789abcdef"


class TestCredentialReaders:
    def test_arr_config_xml(self, temp_dir: Path):
        assert read_arr_api_key(write_arr_key(temp_dir, "radarr", KEY)) == KEY

    def test_arr_config_unparseable(self, temp_dir: Path):
        path = temp_dir / "config.xml"
        path.write_text("<Config><ApiKey>")
        assert read_arr_api_key(path) is None

    def test_bazarr_yaml(self, temp_dir: Path):
        assert read_bazarr_api_key(write_bazarr_key(temp_dir, KEY)) == KEY

    def test_seerr_settings(self, temp_dir: Path):
        assert read_seerr_api_key(write_seerr_key(temp_dir, KEY)) == KEY

    def test_sabnzbd_ini(self, temp_dir: Path):
        path = write_sabnzbd_ini(temp_dir, KEY)
        assert read_sabnzbd_api_key(path) == KEY
        assert sabnzbd_setup_complete(path)

    def test_sabnzbd_without_servers(self, temp_dir: Path):
        path = write_sabnzbd_ini(temp_dir, KEY, with_server=False)
        assert read_sabnzbd_api_key(path) == KEY
        assert not sabnzbd_setup_complete(path)

    def test_missing_files(self, temp_dir: Path):
        missing = temp_dir / "absent"
        assert read_arr_api_key(missing) is None
        assert read_bazarr_api_key(missing) is None
        assert read_sabnzbd_api_key(missing) is None
        assert read_seerr_api_key(missing) is None
        assert not sabnzbd_setup_complete(missing)


class TestArrAPI:
    """Tests for the *arr API wrapper."""

    def _api(self, service: ArrService, key: str = KEY) -> ArrAPI:
        return ArrAPI(
            service.name,
            "http://radarr:7878/api/v3",
            key,
            transport=httpx.MockTransport(service.handle),
        )

    def test_list_and_create(self):
        service = ArrService("radarr", KEY)
        with self._api(service) as api:
            api.create_resource("root_folder", {"path": "/movies"})
            assert [entry["path"] for entry in api.list_resources("root_folder")] == ["/movies"]

    def test_unknown_kind(self):
        with self._api(ArrService("radarr", KEY)) as api:
            with pytest.raises(ValueError, match="category"):
                api.list_resources("category")

    def test_ensure_config_writes_drift_once(self):
        service = ArrService("radarr", KEY)
        with self._api(service) as api:
            first = api.ensure_config("downloadclient", {"autoRedownloadFailed": True})
            second = api.ensure_config("downloadclient", {"autoRedownloadFailed": True})
        assert first.status is EnsureStatus.updated
        assert second.status is EnsureStatus.already_exists
        assert service.config["downloadclient"]["enableCompletedDownloadHandling"] is True
        assert service.writes() == [("PUT", "/api/v3/config/downloadclient/1")]

    def test_ensure_config_bad_key(self):
        with self._api(ArrService("radarr", KEY), key="w" * 32) as api:
            result = api.ensure_config("downloadclient", {"autoRedownloadFailed": True})
        assert result.status is EnsureStatus.failed
        assert "API error 401" in result.detail

    def test_set_field_values(self):
        fields = build_fields({"baseUrl": "http://radarr:7878", "apiKey": "old"})
        updated = set_field_values(fields, {"apiKey": "new", "syncLevel": "fullSync"})
        assert updated == [
            {"name": "baseUrl", "value": "http://radarr:7878"},
            {"name": "apiKey", "value": "new"},
            {"name": "syncLevel", "value": "fullSync"},
        ]
        assert fields[1]["value"] == "old"


class TestBazarrAPI:
    def test_ensure_settings(self):
        service = BazarrService(KEY)
        api = BazarrAPI(
            "bazarr", "http://bazarr:6767/api", KEY, transport=httpx.MockTransport(service.handle)
        )
        with api:
            desired = {"ip": "sonarr", "port": 8989, "apikey": KEY}
            assert api.ensure_settings("sonarr", desired).status is EnsureStatus.updated
            assert api.ensure_settings("sonarr", desired).status is EnsureStatus.already_exists
        assert service.settings["sonarr"]["apikey"] == KEY
        assert len(service.writes()) == 1


class TestSeerrAPI:
    def test_is_initialized(self):
        service = SeerrService(KEY, initialized=False)
        api = SeerrAPI(
            "overseerr",
            "http://overseerr:5055/api/v1",
            KEY,
            transport=httpx.MockTransport(service.handle),
        )
        with api:
            assert not api.is_initialized()
            service.initialized = True
            assert api.is_initialized()


class TestQBittorrentClient:
    """Tests for the password bootstrap and categories."""

    def _client(self, service: QbitService) -> QBittorrentClient:
        return QBittorrentClient(
            "http://qbittorrent:8080", transport=httpx.MockTransport(service.handle)
        )

    def test_factory_password_replaced(self):
        service = QbitService()
        with self._client(service) as client:
            result = client.ensure_password("admin", "correct-horse-battery")
        assert result.status is EnsureStatus.updated
        assert service.password == "correct-horse-battery"

    def test_configured_password_untouched(self):
        service = QbitService(password="correct-horse-battery")
        with self._client(service) as client:
            result = client.ensure_password("admin", "correct-horse-battery")
        assert result.status is EnsureStatus.already_exists
        assert service.writes() == []

    def test_unknown_password(self):
        service = QbitService(password="operator-chose-this")
        with self._client(service) as client:
            result = client.ensure_password("admin", "correct-horse-battery")
        assert result.status is EnsureStatus.failed
        assert "authentication failed" in result.detail
        assert service.password == "operator-chose-this"

    def test_categories(self):
        service = QbitService()
        with self._client(service) as client:
            client.login("admin", "adminadmin")
            client.create_resource("category", {"name": "radarr", "savePath": "/downloads/radarr"})
            assert client.list_resources("category") == [
                {"name": "radarr", "savePath": "/downloads/radarr"}
            ]
