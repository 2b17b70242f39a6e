"""Base definitions shared by the service clients and the mutator."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, List, Mapping, Protocol


class EnsureStatus(str, Enum):
    ready = "ready"
    created = "created"
    already_exists = "already_exists"
    updated = "updated"
    failed = "failed"
    skipped = "skipped"
    timed_out = "timed_out"
    deferred = "deferred"


@dataclass(frozen=True)
class EnsureResult:
    """Outcome of one idempotent operation against one service."""

    service: str
    operation: str
    status: EnsureStatus
    detail: str = ""
    best_effort: bool = False

    @property
    def ok(self) -> bool:
        return self.status in {
            EnsureStatus.ready,
            EnsureStatus.created,
            EnsureStatus.already_exists,
            EnsureStatus.updated,
        }

    @property
    def changed(self) -> bool:
        return self.status in {EnsureStatus.created, EnsureStatus.updated}


@dataclass(frozen=True)
class ResourceSpec:
    """Desired existence of one named resource on one service.

    Two runs expressing the same intent must build equal specs.
    """

    service: str
    kind: str
    identity: str
    identity_field: str = "name"
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def __hash__(self) -> int:
        return hash((self.service, self.kind, self.identity, self.identity_field))

    @property
    def label(self) -> str:
        return f"{self.kind} {self.identity}"


class ServiceAPI(Protocol):
    """List/create access to the resources a service manages."""

    name: str

    def list_resources(self, kind: str) -> List[Mapping[str, Any]]:
        ...

    def create_resource(self, kind: str, payload: Mapping[str, Any]) -> Any:
        ...
