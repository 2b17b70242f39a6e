"""The fixed reconciliation graph for one media host.

tunnel -> download clients -> media managers -> indexer manager ->
indexer sync (best effort) -> wiring -> frontend
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from ..clients.arr import ArrAPI
from ..clients.base import EnsureResult, EnsureStatus
from ..clients.bazarr import BazarrAPI
from ..clients.qb import QBittorrentClient
from ..clients.retry import RequestCancelled
from ..clients.seerr import SeerrAPI
from ..clients.util import sabnzbd_setup_complete
from ..constants import (
    API_PREFIXES,
    BAZARR_LANGUAGES,
    CREDENTIAL_ENV_KEYS,
    CREDENTIAL_FILES,
    DEFAULT_DISCOVERY_INTERVAL,
    HEALTH_PATHS,
    MEDIA_MANAGERS,
    NAMING_CONVENTIONS,
    QBIT_PASSWORD_ENV_KEY,
)
from ..models import FrontendLink, HostConfig, HttpConfig, PollConfig
from ..storage import EnvironmentRecord
from . import catalog
from .credentials import (
    BazarrTarget,
    ConfigTarget,
    ConnectionTarget,
    Credential,
    TemplateFileTarget,
    discover,
    is_pending,
    propagate,
    source_for,
)
from .mutator import describe_error, ensure_all, skipped
from .polling import DeferredCondition
from .probe import ProbeStatus, ServiceEndpoint, probe
from .workflow import Workflow, WorkflowPhase, fan_out

log = logging.getLogger(__name__)

API_CLASSES: Dict[str, type] = {"bazarr": BazarrAPI, "overseerr": SeerrAPI}

# Only the quality-profile sync tool's supported managers appear in its config
TEMPLATE_CONSUMERS = ("radarr", "sonarr")
BAZARR_MANAGERS = ("sonarr", "radarr")


@dataclass
class HostContext:
    """State one host run shares between its phases."""

    host: HostConfig
    record: EnvironmentRecord
    http: HttpConfig = field(default_factory=HttpConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    cancel: threading.Event = field(default_factory=threading.Event)
    transport: Optional[httpx.BaseTransport] = None
    discovery_interval: float = DEFAULT_DISCOVERY_INTERVAL
    ready: Dict[str, bool] = field(default_factory=dict)
    credentials: Dict[str, Credential] = field(default_factory=dict)
    deferred: List[DeferredCondition] = field(default_factory=list)
    indexer_changed: bool = False
    # Password qBittorrent accepts, once phase 2 confirmed it
    qbit_credential: Optional[Credential] = None
    _peers: Dict[Path, EnvironmentRecord] = field(default_factory=dict, repr=False)
    _templates: Dict[str, TemplateFileTarget] = field(default_factory=dict, repr=False)

    # Service lookup ------------------------------------------------------

    def enabled(self, service: str) -> bool:
        return self.host.services.get(service).enabled

    def managers(self) -> List[str]:
        return [service for service in MEDIA_MANAGERS if self.enabled(service)]

    def endpoint(self, service: str) -> ServiceEndpoint:
        settings = self.host.services.get(service)
        return ServiceEndpoint(
            name=service,
            base_url=self.host.base_url(service),
            health_path=settings.health_path or HEALTH_PATHS[service],
            max_attempts=settings.readiness_attempts,
            interval=settings.readiness_interval,
            timeout=self.http.timeout,
        )

    def wait_ready(self, service: str) -> EnsureResult:
        result = probe(self.endpoint(service), cancel=self.cancel, transport=self.transport)
        self.ready[service] = result.ready
        if result.ready:
            return EnsureResult(service, "readiness", EnsureStatus.ready, result.detail)
        if result.status is ProbeStatus.cancelled:
            return EnsureResult(service, "readiness", EnsureStatus.skipped, "cancelled")
        return EnsureResult(service, "readiness", EnsureStatus.timed_out, result.detail)

    # Credentials ---------------------------------------------------------

    def discover_credential(self, service: str) -> Optional[Credential]:
        credential = discover(
            source_for(service, self.host.appdata),
            self.record,
            max_wait=self.host.discovery_wait,
            interval=self.discovery_interval,
            cancel=self.cancel,
        )
        if credential is not None:
            self.credentials[service] = credential
        return credential

    def key_for(self, service: str) -> Optional[str]:
        """Key discovered this run, else the one on disk, else the last recorded one.

        A service whose own phase has not run yet may already hold a rotated
        key; the recorded value would be rejected.
        """
        credential = self.credentials.get(service)
        if credential is not None:
            return credential.value
        if service in CREDENTIAL_FILES:
            on_disk = source_for(service, self.host.appdata).read()
            if on_disk:
                return on_disk
        return self.record.get(CREDENTIAL_ENV_KEYS[service])

    def consumers_for(self, service: str) -> List[ConfigTarget]:
        if service == "qbittorrent":
            return [
                ConnectionTarget(
                    "qBittorrent",
                    lambda manager=manager: self.api_for(manager),
                    field_name="password",
                    kind="download_client",
                    owner=manager,
                )
                for manager in self.managers()
            ]
        targets: List[ConfigTarget] = []
        if self.host.recyclarr_config is not None and service in TEMPLATE_CONSUMERS:
            targets.append(self._template(service))
        if service in MEDIA_MANAGERS and self.enabled("prowlarr"):
            targets.append(
                ConnectionTarget(service.capitalize(), lambda: self.api_for("prowlarr"))
            )
        if service in BAZARR_MANAGERS and self.enabled("bazarr"):
            targets.append(
                BazarrTarget(
                    service,
                    catalog.bazarr_connection(self.host, service) or {},
                    lambda: self.api_for("bazarr"),
                )
            )
        return targets

    def propagate(self, credential: Credential) -> EnsureResult:
        report = propagate(credential, self.consumers_for(credential.service), self.record)
        operation = f"credential {credential.key}"
        if not report.changed:
            return EnsureResult(
                credential.service, operation, EnsureStatus.already_exists, "recorded"
            )
        if report.failed:
            pending = "; ".join(f"{name}: {reason}" for name, reason in report.failed)
            return EnsureResult(
                credential.service,
                operation,
                EnsureStatus.failed,
                f"recorded; pending ({pending})",
            )
        detail = "recorded"
        if report.written:
            detail += f"; rewrote {', '.join(report.written)}"
        return EnsureResult(credential.service, operation, EnsureStatus.updated, detail)

    def _template(self, service: str) -> TemplateFileTarget:
        if service not in self._templates:
            self._templates[service] = TemplateFileTarget(self.host.recyclarr_config, service)
        return self._templates[service]

    # Clients -------------------------------------------------------------

    def api_for(self, service: str) -> Optional[ArrAPI]:
        api_key = self.key_for(service)
        if not api_key:
            return None
        api_class = API_CLASSES.get(service, ArrAPI)
        return api_class(
            service,
            self.host.base_url(service) + API_PREFIXES[service],
            api_key,
            timeout=self.http.timeout,
            connect_timeout=self.http.connect_timeout,
            transport=self.transport,
            cancel=self.cancel,
        )

    def qbit_client(self) -> QBittorrentClient:
        return QBittorrentClient(
            self.host.base_url("qbittorrent"),
            timeout=self.http.timeout,
            connect_timeout=self.http.connect_timeout,
            transport=self.transport,
        )

    def qbit_password(self) -> Optional[str]:
        return self.host.services.qbittorrent.password or self.record.get(QBIT_PASSWORD_ENV_KEY)

    # Front-end links -----------------------------------------------------

    def frontend_links(self) -> List[FrontendLink]:
        if self.host.frontend.links:
            return list(self.host.frontend.links)
        links = []
        for service in ("radarr", "sonarr"):
            folders = catalog.root_folder_paths(self.host, service) if self.enabled(service) else []
            if folders:
                links.append(
                    FrontendLink(
                        service=service,
                        host=service,
                        port=self.host.services.get(service).port,
                        root_folder=folders[0],
                    )
                )
        return links

    def unlinked_managers(self) -> List[str]:
        """Enabled managers the portal cannot default to: no root folder to request into."""
        if self.host.frontend.links:
            return []
        return [
            service
            for service in ("radarr", "sonarr")
            if self.enabled(service) and not catalog.root_folder_paths(self.host, service)
        ]

    def link_key(self, link: FrontendLink) -> Optional[str]:
        if link.env_file is None:
            return self.key_for(link.service)
        if link.env_file not in self._peers:
            self._peers[link.env_file] = EnvironmentRecord(link.env_file)
        return self._peers[link.env_file].get(CREDENTIAL_ENV_KEYS[link.service])

    # Deferred work -------------------------------------------------------

    def defer(
        self,
        service: str,
        name: str,
        predicate: Callable[[], bool],
        on_ready: Callable[[], List[EnsureResult]],
        unblocks: Tuple[str, ...],
        remediation: str,
    ) -> EnsureResult:
        self.deferred.append(
            DeferredCondition(
                name=name,
                predicate=predicate,
                on_ready=on_ready,
                horizon=self.poll.horizon,
                interval=self.poll.interval,
                unblocks=unblocks,
                remediation=remediation,
            )
        )
        log.warning("%s: deferred until the operator acts; %s", name, remediation)
        return EnsureResult(service, name, EnsureStatus.deferred, remediation)


def _missing_key(ctx: HostContext, service: str, operation: str) -> EnsureResult:
    reason = "not ready" if not ctx.ready.get(service, False) else "API key not discovered"
    return skipped(service, operation, reason)


# Phase 1 ------------------------------------------------------------------


def run_tunnel(ctx: HostContext) -> List[EnsureResult]:
    if not ctx.enabled("gluetun"):
        return []
    return [ctx.wait_ready("gluetun")]


# Phase 2 ------------------------------------------------------------------


def run_download_clients(ctx: HostContext) -> List[EnsureResult]:
    steps = {"qbittorrent": _qbittorrent, "sabnzbd": _sabnzbd}
    enabled = [name for name in steps if ctx.enabled(name)]
    return fan_out(lambda name: steps[name](ctx), enabled)


def _qbittorrent(ctx: HostContext) -> List[EnsureResult]:
    results = [ctx.wait_ready("qbittorrent")]
    if not ctx.ready["qbittorrent"]:
        return results
    password = ctx.qbit_password()
    if not password:
        results.append(
            skipped(
                "qbittorrent",
                "password",
                f"no password configured; set {QBIT_PASSWORD_ENV_KEY}",
            )
        )
        return results
    with ctx.qbit_client() as client:
        outcome = client.ensure_password(ctx.host.services.qbittorrent.username, password)
        results.append(outcome)
        if outcome.ok:
            specs = catalog.qbittorrent_category_specs(ctx.host, ctx.managers())
            results.extend(ensure_all(client, specs))
    if outcome.ok:
        ctx.qbit_credential = Credential(
            service="qbittorrent",
            key=QBIT_PASSWORD_ENV_KEY,
            value=password,
            source="fleet",
            last_known=ctx.record.get(QBIT_PASSWORD_ENV_KEY),
        )
    return results


def _sabnzbd(ctx: HostContext) -> List[EnsureResult]:
    results = [ctx.wait_ready("sabnzbd")]
    if not ctx.ready["sabnzbd"]:
        return results
    if _sabnzbd_configured(ctx):
        results.extend(_sabnzbd_credential(ctx))
        return results
    results.append(
        ctx.defer(
            "sabnzbd",
            "sabnzbd-setup",
            lambda: _sabnzbd_ready_for_clients(ctx),
            lambda: _sabnzbd_resolved(ctx),
            unblocks=("download_client SABnzbd",),
            remediation=f"finish the SABnzbd setup wizard at {ctx.host.base_url('sabnzbd')}",
        )
    )
    return results


def _sabnzbd_configured(ctx: HostContext) -> bool:
    return sabnzbd_setup_complete(ctx.host.appdata / CREDENTIAL_FILES["sabnzbd"])


def _sabnzbd_ready_for_clients(ctx: HostContext) -> bool:
    return _sabnzbd_configured(ctx) and source_for("sabnzbd", ctx.host.appdata).read() is not None


def _sabnzbd_credential(ctx: HostContext) -> List[EnsureResult]:
    credential = ctx.discover_credential("sabnzbd")
    if credential is None:
        return [skipped("sabnzbd", "credential", "API key not written yet")]
    return [ctx.propagate(credential)]


def _sabnzbd_resolved(ctx: HostContext) -> List[EnsureResult]:
    results = _sabnzbd_credential(ctx)
    credential = ctx.credentials.get("sabnzbd")
    if credential is None:
        return results
    for service in ctx.managers():
        if service not in ctx.credentials:
            results.append(_missing_key(ctx, service, "download_client SABnzbd"))
            continue
        with ctx.api_for(service) as api:
            spec = catalog.sabnzbd_spec(ctx.host, service, credential.value)
            results.extend(ensure_all(api, [spec]))
    return results


# Phase 3 ------------------------------------------------------------------


def run_media_managers(ctx: HostContext) -> List[EnsureResult]:
    managers = ctx.managers()
    results = fan_out(lambda service: _bring_up(ctx, service), managers)
    # One writer for the environment record at a time
    for service in managers:
        credential = ctx.credentials.get(service)
        if credential is not None:
            results.append(ctx.propagate(credential))
    # Download clients created by an earlier run embed the previous password
    if ctx.qbit_credential is not None:
        results.append(ctx.propagate(ctx.qbit_credential))
    results.extend(fan_out(lambda service: _configure_manager(ctx, service), managers))
    return results


def _bring_up(ctx: HostContext, service: str) -> List[EnsureResult]:
    result = ctx.wait_ready(service)
    if result.ok:
        ctx.discover_credential(service)
    return [result]


def _configure_manager(ctx: HostContext, service: str) -> List[EnsureResult]:
    if service not in ctx.credentials:
        return [_missing_key(ctx, service, "configure")]
    results: List[EnsureResult] = []
    specs = catalog.root_folder_specs(ctx.host, service)
    if ctx.enabled("qbittorrent"):
        password = ctx.qbit_password()
        if ctx.ready.get("qbittorrent") and password:
            specs.append(catalog.qbittorrent_spec(ctx.host, service, password))
        else:
            results.append(
                skipped(
                    service,
                    "download_client qBittorrent",
                    "qBittorrent not ready or password unknown",
                )
            )
    sabnzbd = ctx.credentials.get("sabnzbd")
    if sabnzbd is not None:
        specs.append(catalog.sabnzbd_spec(ctx.host, service, sabnzbd.value))
    with ctx.api_for(service) as api:
        results.extend(ensure_all(api, specs))
    return results


# Phase 4 ------------------------------------------------------------------


def run_indexer_manager(ctx: HostContext) -> List[EnsureResult]:
    if not ctx.enabled("prowlarr"):
        return []
    results = [ctx.wait_ready("prowlarr")]
    if not ctx.ready["prowlarr"]:
        return results
    credential = ctx.discover_credential("prowlarr")
    if credential is None:
        results.append(_missing_key(ctx, "prowlarr", "configure"))
        return results
    results.append(ctx.propagate(credential))
    # Manager keys that Prowlarr rejected in phase 3 go out again with its current key
    for service in ctx.managers():
        own = ctx.credentials.get(service)
        if own is not None and is_pending(ctx.record, own.key):
            results.append(ctx.propagate(own))

    specs = []
    for service in ctx.managers():
        own = ctx.credentials.get(service)
        if own is None:
            results.append(
                skipped(
                    "prowlarr",
                    f"application {service.capitalize()}",
                    f"{service} API key not discovered",
                )
            )
            continue
        specs.append(catalog.application_spec(ctx.host, service, own.value))
    if ctx.enabled("flaresolverr"):
        ready = ctx.wait_ready("flaresolverr")
        results.append(ready)
        if ready.ok:
            specs.append(catalog.flaresolverr_spec(ctx.host))
    with ctx.api_for("prowlarr") as api:
        results.extend(ensure_all(api, specs))
    ctx.indexer_changed = any(result.changed for result in results)
    return results


# Phase 5 ------------------------------------------------------------------


def run_indexer_sync(ctx: HostContext) -> List[EnsureResult]:
    """Push indexers out to the managers. Upstream sync is fragile, so never escalate."""
    if not ctx.enabled("prowlarr"):
        return []
    operation = "indexer sync"
    if "prowlarr" not in ctx.credentials:
        return [skipped("prowlarr", operation, "API key not discovered", best_effort=True)]
    if not ctx.indexer_changed:
        return [
            EnsureResult(
                "prowlarr",
                operation,
                EnsureStatus.already_exists,
                "no application changes",
                best_effort=True,
            )
        ]
    try:
        with ctx.api_for("prowlarr") as api:
            api.run_command("ApplicationIndexerSync")
    except (httpx.HTTPError, ValueError, RequestCancelled) as exc:
        reason = describe_error(exc)
        log.warning(
            "prowlarr: %s failed, indexers will sync on their own schedule: %s",
            operation,
            reason,
        )
        return [EnsureResult("prowlarr", operation, EnsureStatus.failed, reason, best_effort=True)]
    return [
        EnsureResult(
            "prowlarr",
            operation,
            EnsureStatus.updated,
            "ApplicationIndexerSync queued",
            best_effort=True,
        )
    ]


# Phase 6 ------------------------------------------------------------------


def run_wiring(ctx: HostContext) -> List[EnsureResult]:
    results = fan_out(lambda service: _wire_manager(ctx, service), ctx.managers())
    if ctx.enabled("bazarr"):
        results.extend(_wire_bazarr(ctx))
    return results


def _wire_manager(ctx: HostContext, service: str) -> List[EnsureResult]:
    if service not in ctx.credentials:
        return [_missing_key(ctx, service, "wiring")]
    specs = []
    webhook = ctx.host.notifications.discord_webhook_url or ctx.record.get("DISCORD_WEBHOOK_URL")
    if webhook:
        specs.append(catalog.discord_spec(service, webhook))
    library = ctx.host.library
    token = library.plex_token or ctx.record.get("PLEX_TOKEN")
    if library.plex_host and token:
        specs.append(catalog.plex_spec(service, library.plex_host, library.plex_port, token))
    specs.extend(
        catalog.import_list_spec(entry)
        for entry in ctx.host.import_lists
        if entry.service == service
    )
    with ctx.api_for(service) as api:
        results = ensure_all(api, specs)
        results.append(api.ensure_config("downloadclient", {"autoRedownloadFailed": True}))
        naming = NAMING_CONVENTIONS.get(service)
        if naming:
            results.append(api.ensure_config("naming", naming))
    return results


def _wire_bazarr(ctx: HostContext) -> List[EnsureResult]:
    results = [ctx.wait_ready("bazarr")]
    if not ctx.ready["bazarr"]:
        return results
    credential = ctx.discover_credential("bazarr")
    if credential is None:
        results.append(_missing_key(ctx, "bazarr", "configure"))
        return results
    results.append(ctx.propagate(credential))

    enabled_flags = {}
    with ctx.api_for("bazarr") as api:
        for service in BAZARR_MANAGERS:
            if not ctx.enabled(service):
                continue
            own = ctx.credentials.get(service)
            if own is None:
                reason = f"{service} API key not discovered"
                results.append(skipped("bazarr", f"settings {service}", reason))
                continue
            desired = {**(catalog.bazarr_connection(ctx.host, service) or {}), "apikey": own.value}
            results.append(api.ensure_settings(service, desired))
            enabled_flags[f"use_{service}"] = True
        if enabled_flags:
            results.append(api.ensure_settings("general", enabled_flags))
        results.append(api.ensure_settings("languages", BAZARR_LANGUAGES))
    return results


# Phase 7 ------------------------------------------------------------------


def run_frontend(ctx: HostContext) -> List[EnsureResult]:
    if not ctx.enabled("overseerr"):
        return []
    results = [ctx.wait_ready("overseerr")]
    if not ctx.ready["overseerr"]:
        return results
    credential = ctx.discover_credential("overseerr")
    if credential is None:
        results.append(_missing_key(ctx, "overseerr", "configure"))
        return results
    results.append(ctx.propagate(credential))

    try:
        prerequisites_met = _frontend_prerequisites(ctx)
    except (httpx.HTTPError, ValueError, RequestCancelled) as exc:
        log.warning("overseerr: cannot read setup state: %s", describe_error(exc))
        prerequisites_met = False
    if prerequisites_met:
        results.extend(_configure_frontend(ctx))
        return results
    results.append(
        ctx.defer(
            "overseerr",
            "overseerr-wizard",
            lambda: _frontend_prerequisites(ctx),
            lambda: _configure_frontend(ctx),
            unblocks=("frontend",),
            remediation=f"complete the Overseerr setup wizard at {ctx.host.base_url('overseerr')}",
        )
    )
    return results


def _frontend_prerequisites(ctx: HostContext) -> bool:
    with ctx.api_for("overseerr") as api:
        if not api.is_initialized():
            return False
    return all(ctx.link_key(link) for link in ctx.frontend_links())


def _configure_frontend(ctx: HostContext) -> List[EnsureResult]:
    results: List[EnsureResult] = [
        skipped("overseerr", f"{service}_server", f"{service} has no root folder")
        for service in ctx.unlinked_managers()
    ]
    specs = []
    for link in ctx.frontend_links():
        api_key = ctx.link_key(link)
        if not api_key:
            reason = f"{link.service} API key unknown"
            results.append(skipped("overseerr", f"{link.service}_server", reason))
            continue
        specs.append(catalog.frontend_server_spec(link, api_key))
    with ctx.api_for("overseerr") as api:
        results.extend(ensure_all(api, specs))
    return results


def build_workflow() -> Workflow[HostContext]:
    return Workflow(
        [
            WorkflowPhase("tunnel", run_tunnel),
            WorkflowPhase("download_clients", run_download_clients, requires=("gluetun",)),
            WorkflowPhase("media_managers", run_media_managers),
            WorkflowPhase("indexer_manager", run_indexer_manager),
            WorkflowPhase(
                "indexer_sync", run_indexer_sync, requires=("prowlarr",), best_effort=True
            ),
            WorkflowPhase("wiring", run_wiring),
            WorkflowPhase("frontend", run_frontend),
        ]
    )
