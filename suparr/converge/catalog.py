"""Desired resources for each service, derived from the host configuration.

Everything here is pure: the same host configuration always yields equal
ResourceSpecs, which is what lets a re-run match what an earlier run created.
"""
from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from ..clients.arr import build_fields
from ..clients.base import ResourceSpec
from ..constants import (
    CATEGORY_FIELDS,
    DEFAULT_ROOT_FOLDERS,
    IDENTITY_FIELDS,
    ROOT_FOLDER_EXTRAS,
    TUNNEL_CONTAINER,
)
from ..models import FrontendLink, HostConfig, ImportListConfig


def _spec(service: str, kind: str, identity: str, payload: Dict[str, Any]) -> ResourceSpec:
    return ResourceSpec(
        service=service,
        kind=kind,
        identity=identity,
        identity_field=IDENTITY_FIELDS[kind],
        payload=payload,
    )


def root_folder_paths(host: HostConfig, service: str) -> List[str]:
    configured = host.services.get(service).root_folders
    return list(configured if configured is not None else DEFAULT_ROOT_FOLDERS[service])


def root_folder_specs(host: HostConfig, service: str) -> List[ResourceSpec]:
    specs = []
    for path in root_folder_paths(host, service):
        payload: Dict[str, Any] = {"path": path, "accessible": True}
        payload.update(ROOT_FOLDER_EXTRAS.get(service, {}))
        if service == "readarr":
            payload["name"] = PurePosixPath(path).name
        specs.append(_spec(service, "root_folder", path, payload))
    return specs


def category_for(host: HostConfig, service: str) -> str:
    return host.services.get(service).category or service


def download_client_host(host: HostConfig) -> str:
    """Download clients are reached through the tunnel container when one exists."""
    return TUNNEL_CONTAINER if host.services.gluetun.enabled else "qbittorrent"


def qbittorrent_spec(host: HostConfig, service: str, password: str) -> ResourceSpec:
    qb = host.services.qbittorrent
    payload = {
        "enable": True,
        "protocol": "torrent",
        "priority": 1,
        "name": "qBittorrent",
        "implementation": "QBittorrent",
        "configContract": "QBittorrentSettings",
        "fields": build_fields(
            {
                "host": download_client_host(host),
                "port": qb.port,
                "username": qb.username,
                "password": password,
                CATEGORY_FIELDS[service]: category_for(host, service),
            }
        ),
        "removeCompletedDownloads": True,
        "removeFailedDownloads": True,
        "tags": [],
    }
    return _spec(service, "download_client", "qBittorrent", payload)


def sabnzbd_spec(host: HostConfig, service: str, api_key: str) -> ResourceSpec:
    host_name = TUNNEL_CONTAINER if host.services.gluetun.enabled else "sabnzbd"
    payload = {
        "enable": True,
        "protocol": "usenet",
        "priority": 1,
        "name": "SABnzbd",
        "implementation": "Sabnzbd",
        "configContract": "SabnzbdSettings",
        "fields": build_fields(
            {
                "host": host_name,
                "port": host.services.sabnzbd.port,
                "apiKey": api_key,
                CATEGORY_FIELDS[service]: category_for(host, service),
            }
        ),
        "removeCompletedDownloads": True,
        "removeFailedDownloads": True,
        "tags": [],
    }
    return _spec(service, "download_client", "SABnzbd", payload)


def qbittorrent_category_specs(host: HostConfig, services: List[str]) -> List[ResourceSpec]:
    categories = dict.fromkeys(category_for(host, service) for service in services)
    return [_category_spec(category) for category in categories]


def _category_spec(category: str) -> ResourceSpec:
    return ResourceSpec(
        service="qbittorrent",
        kind="category",
        identity=category,
        identity_field="name",
        payload={"name": category, "savePath": f"/downloads/{category}"},
    )


def application_spec(host: HostConfig, service: str, api_key: str) -> ResourceSpec:
    """Indexer-manager connection towards one media manager."""
    name = service.capitalize()
    port = host.services.get(service).port
    payload = {
        "name": name,
        "syncLevel": "fullSync",
        "implementation": name,
        "implementationName": name,
        "configContract": f"{name}Settings",
        "fields": build_fields(
            {
                "prowlarrUrl": f"http://prowlarr:{host.services.prowlarr.port}",
                "baseUrl": f"http://{service}:{port}",
                "apiKey": api_key,
            }
        ),
        "tags": [],
    }
    return _spec("prowlarr", "application", name, payload)


def flaresolverr_spec(host: HostConfig) -> ResourceSpec:
    flaresolverr = host.services.flaresolverr
    payload = {
        "name": "FlareSolverr",
        "implementation": "FlareSolverr",
        "configContract": "FlareSolverrSettings",
        "fields": build_fields(
            {
                "host": f"http://flaresolverr:{flaresolverr.port}",
                "requestTimeout": flaresolverr.request_timeout,
            }
        ),
        "tags": [],
    }
    return _spec("prowlarr", "indexer_proxy", "FlareSolverr", payload)


def discord_spec(service: str, webhook_url: str) -> ResourceSpec:
    payload = {
        "name": "Discord",
        "implementation": "Discord",
        "configContract": "DiscordSettings",
        "fields": build_fields({"webHookUrl": webhook_url, "username": service.capitalize()}),
        "onGrab": True,
        "onDownload": True,
        "onUpgrade": True,
        "onRename": False,
        "onHealthIssue": True,
        "onHealthRestored": True,
        "onApplicationUpdate": True,
        "includeHealthWarnings": True,
        "tags": [],
    }
    return _spec(service, "notification", "Discord", payload)


def plex_spec(service: str, plex_host: str, plex_port: int, token: str) -> ResourceSpec:
    """Library-scan callback fired by the media manager after each import."""
    payload = {
        "name": "Plex",
        "implementation": "PlexServer",
        "configContract": "PlexServerSettings",
        "fields": build_fields(
            {
                "host": plex_host,
                "port": plex_port,
                "authToken": token,
                "updateLibrary": True,
                "useSsl": False,
            }
        ),
        "onDownload": True,
        "onUpgrade": True,
        "onRename": True,
        "tags": [],
    }
    return _spec(service, "notification", "Plex", payload)


def import_list_spec(entry: ImportListConfig) -> ResourceSpec:
    payload = {
        "name": entry.name,
        "implementation": entry.implementation,
        "configContract": entry.config_contract,
        "enabled": entry.enabled,
        "enableAuto": entry.enabled,
        "rootFolderPath": entry.root_folder,
        "qualityProfileId": entry.quality_profile_id,
        "fields": build_fields(dict(sorted(entry.fields.items()))),
        "tags": [],
    }
    return _spec(entry.service, "import_list", entry.name, payload)


def frontend_server_spec(link: FrontendLink, api_key: str) -> ResourceSpec:
    name = link.service.capitalize()
    payload = {
        "name": name,
        "hostname": link.host,
        "port": link.port,
        "apiKey": api_key,
        "useSsl": False,
        "activeProfileId": link.quality_profile_id,
        "activeDirectory": link.root_folder,
        "is4k": False,
        "isDefault": True,
        "syncEnabled": True,
    }
    return _spec("overseerr", f"{link.service}_server", name, payload)


def bazarr_connection(host: HostConfig, service: str) -> Optional[Dict[str, Any]]:
    """Bazarr only talks to Sonarr and Radarr."""
    if service == "sonarr":
        return {
            "ip": "sonarr",
            "port": host.services.sonarr.port,
            "only_monitored": True,
            "series_sync": 60,
            "episodes_sync": 60,
        }
    if service == "radarr":
        return {
            "ip": "radarr",
            "port": host.services.radarr.port,
            "only_monitored": True,
            "movies_sync": 60,
        }
    return None
