"""Centralized constants for the SupArr reconciliation engine.

All default service ports, API prefixes, credential locations and the
fixed phase order live here rather than scattered across clients.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Default host-mapped ports (used as defaults in HostConfig models)
# ---------------------------------------------------------------------------
DEFAULT_PORTS: dict[str, int] = {
    "gluetun": 8000,
    "qbittorrent": 8080,
    "sabnzbd": 8085,
    "radarr": 7878,
    "sonarr": 8989,
    "lidarr": 8686,
    "readarr": 8787,
    "whisparr": 6969,
    "prowlarr": 9696,
    "flaresolverr": 8191,
    "bazarr": 6767,
    "overseerr": 5055,
    "plex": 32400,
}

# ---------------------------------------------------------------------------
# Health paths probed by the readiness prober. Any non-5xx answer counts.
# ---------------------------------------------------------------------------
HEALTH_PATHS: dict[str, str] = {
    "gluetun": "/v1/publicip/ip",
    "qbittorrent": "/api/v2/app/version",
    "sabnzbd": "/api?mode=version",
    "radarr": "/ping",
    "sonarr": "/ping",
    "lidarr": "/ping",
    "readarr": "/ping",
    "whisparr": "/ping",
    "prowlarr": "/ping",
    "flaresolverr": "/health",
    "bazarr": "/api/system/ping",
    "overseerr": "/api/v1/status",
}

# ---------------------------------------------------------------------------
# API path prefixes per service
# ---------------------------------------------------------------------------
API_PREFIXES: dict[str, str] = {
    "radarr": "/api/v3",
    "sonarr": "/api/v3",
    "lidarr": "/api/v1",
    "readarr": "/api/v1",
    "whisparr": "/api/v3",
    "prowlarr": "/api/v1",
    "bazarr": "/api",
    "overseerr": "/api/v1",
}

# ---------------------------------------------------------------------------
# Media managers configured in phase 3, in the order they are reported.
# ---------------------------------------------------------------------------
MEDIA_MANAGERS: list[str] = ["radarr", "sonarr", "lidarr", "readarr", "whisparr"]

DEFAULT_ROOT_FOLDERS: dict[str, list[str]] = {
    "radarr": ["/movies", "/documentaries", "/stand-up", "/concerts", "/anime-movies"],
    "sonarr": ["/tv", "/anime"],
    "lidarr": ["/music"],
    "readarr": ["/books", "/audiobooks"],
    "whisparr": ["/adult"],
}

# Download-client field carrying the category, per media manager
CATEGORY_FIELDS: dict[str, str] = {
    "radarr": "movieCategory",
    "sonarr": "tvCategory",
    "lidarr": "musicCategory",
    "readarr": "musicCategory",
    "whisparr": "movieCategory",
}

# Readarr refuses root folders without profile ids
ROOT_FOLDER_EXTRAS: dict[str, dict[str, int]] = {
    "readarr": {"defaultMetadataProfileId": 1, "defaultQualityProfileId": 1},
}

# ---------------------------------------------------------------------------
# Resource kinds and where they live on each API family
# ---------------------------------------------------------------------------
ARR_RESOURCE_PATHS: dict[str, str] = {
    "root_folder": "/rootfolder",
    "download_client": "/downloadclient",
    "notification": "/notification",
    "import_list": "/importlist",
    "application": "/applications",
    "indexer_proxy": "/indexerProxy",
}

SEERR_RESOURCE_PATHS: dict[str, str] = {
    "radarr_server": "/settings/radarr",
    "sonarr_server": "/settings/sonarr",
}

# Field used to match an existing resource against a ResourceSpec
IDENTITY_FIELDS: dict[str, str] = {
    "root_folder": "path",
    "download_client": "name",
    "notification": "name",
    "import_list": "name",
    "application": "name",
    "indexer_proxy": "name",
    "radarr_server": "name",
    "sonarr_server": "name",
}

# ---------------------------------------------------------------------------
# Self-generated credentials: where each service writes its own key
# (relative to the host appdata directory) and which environment record key
# mirrors it.
# ---------------------------------------------------------------------------
CREDENTIAL_FILES: dict[str, str] = {
    "radarr": "radarr/config/config.xml",
    "sonarr": "sonarr/config/config.xml",
    "lidarr": "lidarr/config/config.xml",
    "readarr": "readarr/config/config.xml",
    "whisparr": "whisparr/config/config.xml",
    "prowlarr": "prowlarr/config/config.xml",
    "bazarr": "bazarr/config/config/config.yaml",
    "sabnzbd": "sabnzbd/config/sabnzbd.ini",
    "overseerr": "overseerr/config/settings.json",
}

CREDENTIAL_ENV_KEYS: dict[str, str] = {
    name: f"{name.upper()}_API_KEY" for name in CREDENTIAL_FILES
}

# Placeholder written by the templating layer before a key is known
PLACEHOLDER_TEMPLATE = "YOUR_{service}_API_KEY"

# Marks a key whose consumers did not all take the latest value; holds the
# value those consumers may still embed
PENDING_SUFFIX = "_PENDING"

# ---------------------------------------------------------------------------
# qBittorrent
# ---------------------------------------------------------------------------
QBIT_DEFAULT_USERNAME = "admin"
QBIT_DEFAULT_PASSWORD = "adminadmin"
QBIT_PASSWORD_ENV_KEY = "QBIT_PASSWORD"

# Container hostname download clients are reached through when tunnelled
TUNNEL_CONTAINER = "gluetun"

# ---------------------------------------------------------------------------
# Library conventions written into config sections
# ---------------------------------------------------------------------------
NAMING_CONVENTIONS: dict[str, dict[str, object]] = {
    "radarr": {
        "renameMovies": True,
        "replaceIllegalCharacters": True,
        "standardMovieFormat": (
            "{Movie Title} ({Release Year}) [{Quality Full}]{[MediaInfo VideoDynamicRangeType]}"
        ),
        "movieFolderFormat": "{Movie Title} ({Release Year})",
    },
    "sonarr": {
        "renameEpisodes": True,
        "replaceIllegalCharacters": True,
        "standardEpisodeFormat": (
            "{Series Title} - S{season:00}E{episode:00} - {Episode Title} "
            "[{Quality Full}]{[MediaInfo VideoDynamicRangeType]}"
        ),
        "seasonFolderFormat": "Season {season:00}",
        "seriesFolderFormat": "{Series Title} ({Series Year})",
    },
}

# Subtitles in English, including forced tracks for foreign dialogue
BAZARR_LANGUAGES: dict[str, object] = {
    "enabled": True,
    "languages": [
        {
            "name": "English",
            "code2": "en",
            "code3": "eng",
            "enabled": True,
            "forced": "Both",
            "hi": "False",
        }
    ],
}

# ---------------------------------------------------------------------------
# Fixed workflow phase order. A phase never starts before the previous one
# has been evaluated.
# ---------------------------------------------------------------------------
PHASE_ORDER: list[str] = [
    "tunnel",
    "download_clients",
    "media_managers",
    "indexer_manager",
    "indexer_sync",
    "wiring",
    "frontend",
]

# Defaults for the post-deploy polling loop
DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_POLL_HORIZON = 1800.0

# Bounded wait for a self-generated credential to appear on disk
DEFAULT_DISCOVERY_WAIT = 60.0
DEFAULT_DISCOVERY_INTERVAL = 2.0
