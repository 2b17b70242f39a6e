"""Credential discovery and propagation.

Several services only write their own API key after the first full boot,
independently of their health endpoint answering. Discovery polls that
on-disk artifact; propagation pushes a new or rotated value into every
consumer that embeds it and finally into the host's environment record.
"""
from __future__ import annotations

import logging
import threading
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from ..clients.arr import field_value, set_field_values
from ..clients.retry import RequestCancelled
from ..clients.util import (
    read_arr_api_key,
    read_bazarr_api_key,
    read_sabnzbd_api_key,
    read_seerr_api_key,
)
from ..constants import (
    CREDENTIAL_ENV_KEYS,
    CREDENTIAL_FILES,
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_DISCOVERY_WAIT,
    PENDING_SUFFIX,
    PLACEHOLDER_TEMPLATE,
)
from ..storage import EnvironmentRecord
from .mutator import describe_error

log = logging.getLogger(__name__)

Reader = Callable[[Path], Optional[str]]

READERS: Dict[str, Reader] = {
    "bazarr": read_bazarr_api_key,
    "sabnzbd": read_sabnzbd_api_key,
    "overseerr": read_seerr_api_key,
}


class PropagationError(Exception):
    """Raised by a consumer that could not take the new value."""


CONSUMER_ERRORS = (PropagationError, RequestCancelled, OSError, ValueError, httpx.HTTPError)


def well_formed(value: Optional[str]) -> bool:
    if not value or len(value) < 16:
        return False
    if any(char.isspace() for char in value):
        return False
    return not value.startswith("YOUR_")


@dataclass(frozen=True)
class CredentialSource:
    """Local state artifact a service writes its own key into."""

    service: str
    key: str
    path: Path
    reader: Reader

    def read(self) -> Optional[str]:
        value = self.reader(self.path)
        return value if well_formed(value) else None


def source_for(service: str, appdata: Path) -> CredentialSource:
    return CredentialSource(
        service=service,
        key=CREDENTIAL_ENV_KEYS[service],
        path=appdata / CREDENTIAL_FILES[service],
        reader=READERS.get(service, read_arr_api_key),
    )


@dataclass(frozen=True)
class Credential:
    service: str
    key: str
    value: str
    source: str
    last_known: Optional[str] = None

    @property
    def changed(self) -> bool:
        """Never recorded before, or rotated since the last run."""
        return self.value != self.last_known


def discover(
    source: CredentialSource,
    record: EnvironmentRecord,
    max_wait: float = DEFAULT_DISCOVERY_WAIT,
    interval: float = DEFAULT_DISCOVERY_INTERVAL,
    cancel: Optional[threading.Event] = None,
) -> Optional[Credential]:
    """Wait up to ``max_wait`` seconds for a well-formed key; None if it never shows."""
    deadline = time.monotonic() + max_wait
    while True:
        value = source.read()
        if value:
            return Credential(
                service=source.service,
                key=source.key,
                value=value,
                source=str(source.path),
                last_known=record.get(source.key),
            )
        if time.monotonic() >= deadline:
            break
        if cancel is not None:
            if cancel.wait(interval):
                return None
        else:
            time.sleep(interval)
    log.warning(
        "%s: no API key at %s after %.0fs; container may still be starting, re-run later",
        source.service,
        source.path,
        max_wait,
    )
    return None


class ConfigTarget(Protocol):
    """Something outside the environment record that embeds a credential."""

    name: str

    def apply(self, credential: Credential) -> bool:
        """Write the credential; True if anything changed. Raises on failure."""
        ...


class TemplateFileTarget:
    """Config file rendered with a placeholder or an older copy of the key."""

    def __init__(self, path: Path, service: str) -> None:
        self.path = path
        self.placeholder = PLACEHOLDER_TEMPLATE.format(service=service.upper())
        self.name = f"{path.name}:{service}"
        self._lock = threading.Lock()

    def apply(self, credential: Credential) -> bool:
        with self._lock:
            if not self.path.exists():
                log.debug("%s absent, nothing to rewrite", self.path)
                return False
            try:
                text = self.path.read_text()
                updated = text.replace(self.placeholder, credential.value)
                if credential.last_known and credential.last_known != credential.value:
                    updated = updated.replace(credential.last_known, credential.value)
                if updated == text:
                    return False
                self.path.write_text(updated)
            except OSError as exc:
                raise PropagationError(f"cannot rewrite {self.path}: {exc}") from exc
        return True


ApiFactory = Callable[[], Optional[AbstractContextManager]]


class ConnectionTarget:
    """Existing resource on another service with a field that embeds the credential.

    Defaults to an indexer-manager application and its ``apiKey`` field.
    """

    def __init__(
        self,
        resource: str,
        api_factory: ApiFactory,
        field_name: str = "apiKey",
        kind: str = "application",
        owner: str = "prowlarr",
    ) -> None:
        self.resource = resource
        self.api_factory = api_factory
        self.field_name = field_name
        self.kind = kind
        self.name = f"{owner}:{resource}"

    def apply(self, credential: Credential) -> bool:
        api = self.api_factory()
        if api is None:
            return _unavailable(self.name, credential, f"{self.name} API key unknown")
        try:
            with api as client:
                for entry in client.list_resources(self.kind):
                    if entry.get("name") != self.resource:
                        continue
                    if field_value(entry, self.field_name) == credential.value:
                        return False
                    updated = dict(entry)
                    updated["fields"] = set_field_values(
                        entry.get("fields") or [], {self.field_name: credential.value}
                    )
                    client.update_resource(self.kind, entry.get("id"), updated)
                    return True
        except httpx.RequestError as exc:
            return _unavailable(self.name, credential, describe_error(exc))
        except httpx.HTTPError as exc:
            raise PropagationError(describe_error(exc)) from exc
        return False


class BazarrTarget:
    """Bazarr's connection section for one media manager."""

    def __init__(self, section: str, desired: Dict[str, object], api_factory: ApiFactory) -> None:
        self.section = section
        self.desired = desired
        self.api_factory = api_factory
        self.name = f"bazarr:{section}"

    def apply(self, credential: Credential) -> bool:
        api = self.api_factory()
        if api is None:
            return _unavailable(self.name, credential, "bazarr key unknown")
        with api as client:
            desired = {**self.desired, "apikey": credential.value}
            result = client.ensure_settings(self.section, desired)
        if not result.ok:
            if credential.last_known is None and result.detail.startswith("unreachable"):
                return False
            raise PropagationError(result.detail)
        return result.changed


def _unavailable(name: str, credential: Credential, reason: str) -> bool:
    # Nothing can embed a key that was never recorded, so on first discovery an
    # unreachable consumer has nothing to update yet.
    if credential.last_known is None:
        log.debug("%s: %s; nothing to update yet", name, reason)
        return False
    raise PropagationError(reason)


@dataclass
class PropagationReport:
    credential: Credential
    changed: bool
    written: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    persisted: bool = False


def pending_key(key: str) -> str:
    return f"{key}{PENDING_SUFFIX}"


def is_pending(record: EnvironmentRecord, key: str) -> bool:
    """True while some consumer still has to take the recorded value."""
    return pending_key(key) in record


def propagate(
    credential: Credential,
    consumers: Sequence[ConfigTarget],
    record: EnvironmentRecord,
) -> PropagationReport:
    """Push ``credential`` to every consumer and into the environment record.

    No-op when the record already holds the value and no consumer is pending.
    Consumer writes are independent. The record always takes the new value;
    if any consumer failed, a pending marker keeps the value that consumer
    may still embed so the next run retries it.
    """
    marker = pending_key(credential.key)
    pending = marker in record
    if record.get(credential.key) == credential.value and not pending:
        return PropagationReport(credential=credential, changed=False)

    if pending:
        credential = replace(credential, last_known=record.get(marker))
    report = PropagationReport(credential=credential, changed=True)
    for target in consumers:
        try:
            if target.apply(credential):
                report.written.append(target.name)
                log.info("%s: %s updated in %s", credential.service, credential.key, target.name)
        except CONSUMER_ERRORS as exc:
            report.failed.append((target.name, str(exc)))
            log.warning(
                "%s: could not propagate %s to %s: %s",
                credential.service,
                credential.key,
                target.name,
                exc,
            )

    record.set(credential.key, credential.value)
    report.persisted = True
    if report.failed:
        record.set(marker, credential.last_known or "")
        log.warning(
            "%s: %s recorded; %d consumer(s) still pending, the next run retries",
            credential.service,
            credential.key,
            len(report.failed),
        )
        return report
    record.unset(marker)
    log.info("%s: %s recorded", credential.service, credential.key)
    return report
