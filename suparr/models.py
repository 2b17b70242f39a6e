"""Pydantic models describing the fleet to reconcile and the reports it produces."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, validator

from .constants import (
    DEFAULT_DISCOVERY_WAIT,
    DEFAULT_POLL_HORIZON,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PORTS,
    QBIT_DEFAULT_USERNAME,
)


class ServiceBaseConfig(BaseModel):
    enabled: bool = False
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    health_path: Optional[str] = None
    readiness_attempts: int = Field(default=30, ge=1)
    readiness_interval: float = Field(default=2.0, ge=0)


class GluetunConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["gluetun"], ge=1, le=65535)


class QbittorrentConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["qbittorrent"], ge=1, le=65535)
    username: str = QBIT_DEFAULT_USERNAME
    # Falls back to QBIT_PASSWORD in the environment record
    password: Optional[str] = None


class SabnzbdConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["sabnzbd"], ge=1, le=65535)


class MediaManagerConfig(ServiceBaseConfig):
    root_folders: Optional[List[str]] = None
    category: Optional[str] = None


class RadarrConfig(MediaManagerConfig):
    port: int = Field(default=DEFAULT_PORTS["radarr"], ge=1, le=65535)


class SonarrConfig(MediaManagerConfig):
    port: int = Field(default=DEFAULT_PORTS["sonarr"], ge=1, le=65535)


class LidarrConfig(MediaManagerConfig):
    port: int = Field(default=DEFAULT_PORTS["lidarr"], ge=1, le=65535)


class ReadarrConfig(MediaManagerConfig):
    port: int = Field(default=DEFAULT_PORTS["readarr"], ge=1, le=65535)


class WhisparrConfig(MediaManagerConfig):
    port: int = Field(default=DEFAULT_PORTS["whisparr"], ge=1, le=65535)


class ProwlarrConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["prowlarr"], ge=1, le=65535)


class FlaresolverrConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["flaresolverr"], ge=1, le=65535)
    request_timeout: int = 60


class BazarrConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["bazarr"], ge=1, le=65535)


class OverseerrConfig(ServiceBaseConfig):
    port: int = Field(default=DEFAULT_PORTS["overseerr"], ge=1, le=65535)


class ServicesConfig(BaseModel):
    gluetun: GluetunConfig = Field(default_factory=GluetunConfig)
    qbittorrent: QbittorrentConfig = Field(default_factory=QbittorrentConfig)
    sabnzbd: SabnzbdConfig = Field(default_factory=SabnzbdConfig)
    radarr: RadarrConfig = Field(default_factory=RadarrConfig)
    sonarr: SonarrConfig = Field(default_factory=SonarrConfig)
    lidarr: LidarrConfig = Field(default_factory=LidarrConfig)
    readarr: ReadarrConfig = Field(default_factory=ReadarrConfig)
    whisparr: WhisparrConfig = Field(default_factory=WhisparrConfig)
    prowlarr: ProwlarrConfig = Field(default_factory=ProwlarrConfig)
    flaresolverr: FlaresolverrConfig = Field(default_factory=FlaresolverrConfig)
    bazarr: BazarrConfig = Field(default_factory=BazarrConfig)
    overseerr: OverseerrConfig = Field(default_factory=OverseerrConfig)

    def get(self, name: str) -> ServiceBaseConfig:
        return getattr(self, name)

    def enabled_names(self) -> List[str]:
        return [name for name in type(self).model_fields if self.get(name).enabled]


class NotificationConfig(BaseModel):
    discord_webhook_url: Optional[str] = None


class LibraryConfig(BaseModel):
    """Media server that media managers ping after an import."""

    plex_host: Optional[str] = None
    plex_port: int = Field(default=DEFAULT_PORTS["plex"], ge=1, le=65535)
    # Falls back to PLEX_TOKEN in the environment record
    plex_token: Optional[str] = None


class ImportListConfig(BaseModel):
    name: str
    service: Literal["radarr", "sonarr", "lidarr", "readarr", "whisparr"]
    implementation: str
    config_contract: str
    root_folder: str
    quality_profile_id: int = 1
    enabled: bool = True
    fields: Dict[str, Any] = Field(default_factory=dict)


class FrontendLink(BaseModel):
    """A media manager the request portal should hand requests to."""

    service: Literal["radarr", "sonarr"]
    host: str
    port: int = Field(ge=1, le=65535)
    root_folder: str
    quality_profile_id: int = 1
    # Environment record holding the manager's key; defaults to this host's
    env_file: Optional[Path] = None


class FrontendConfig(BaseModel):
    links: List[FrontendLink] = Field(default_factory=list)


class HostConfig(BaseModel):
    name: str
    address: str = "127.0.0.1"
    appdata: Path
    env_file: Optional[Path] = None
    recyclarr_config: Optional[Path] = None
    # Bounded wait for a self-generated API key to appear on disk
    discovery_wait: float = Field(default=DEFAULT_DISCOVERY_WAIT, ge=0)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)
    frontend: FrontendConfig = Field(default_factory=FrontendConfig)
    import_lists: List[ImportListConfig] = Field(default_factory=list)

    @validator("appdata")
    def ensure_absolute(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError("Paths must be absolute")
        return value

    @validator("name")
    def ensure_label(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Host name must not be empty")
        return value.strip()

    @property
    def env_path(self) -> Path:
        return self.env_file or self.appdata / ".env"

    def base_url(self, service: str) -> str:
        port = self.services.get(service).port
        return f"http://{self.address}:{port}"


class PollConfig(BaseModel):
    enabled: bool = True
    interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    horizon: float = Field(default=DEFAULT_POLL_HORIZON, ge=0)


class HttpConfig(BaseModel):
    """Global per-call timeout so one unresponsive service cannot stall a run."""

    timeout: float = Field(default=10.0, gt=0)
    connect_timeout: float = Field(default=5.0, gt=0)


class FleetConfig(BaseModel):
    version: int = 1
    hosts: List[HostConfig]
    poll: PollConfig = Field(default_factory=PollConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    state_dir: Optional[Path] = None

    @validator("hosts")
    def validate_hosts(cls, value: List[HostConfig]) -> List[HostConfig]:
        if not value:
            raise ValueError("At least one target host is required")
        names = [host.name for host in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate host names: {', '.join(duplicates)}")
        return value

    def host(self, name: str) -> Optional[HostConfig]:
        return next((host for host in self.hosts if host.name == name), None)


StageStatus = Literal["started", "ok", "skipped", "failed", "timeout"]


class StageEvent(BaseModel):
    stage: str
    status: StageStatus
    detail: Optional[str] = None


class RunRecord(BaseModel):
    run_id: str
    ok: Optional[bool] = None
    status: Optional[str] = None
    events: List[StageEvent] = Field(default_factory=list)
    summary: Optional[str] = None


class HostRunReport(BaseModel):
    host: str
    run_id: str
    status: Literal["success", "partial", "failed"]
    events: List[StageEvent] = Field(default_factory=list)
    deferred: Dict[str, str] = Field(default_factory=dict)
    output: str = ""
    summary: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class FleetReport(BaseModel):
    ok: bool
    hosts: List[HostRunReport] = Field(default_factory=list)

    def host(self, name: str) -> Optional[HostRunReport]:
        return next((report for report in self.hosts if report.host == name), None)
