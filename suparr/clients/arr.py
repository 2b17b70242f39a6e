"""Common helpers for working with *arr HTTP APIs."""
from __future__ import annotations

import threading
from contextlib import AbstractContextManager
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from ..constants import ARR_RESOURCE_PATHS
from .base import EnsureResult, EnsureStatus
from .retry import RequestCancelled, retry_request


class ArrAPI(AbstractContextManager):
    """Thin wrapper around an *arr API endpoint (radarr, sonarr, prowlarr, ...)."""

    resource_paths: Mapping[str, str] = ARR_RESOURCE_PATHS

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.name = name
        self.cancel = cancel
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={"X-Api-Key": api_key},
            transport=transport,
        )

    def __enter__(self) -> "ArrAPI":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def get_json(self, path: str, **kwargs: Any) -> Any:
        response = retry_request(self._client.get, path, cancel=self.cancel, **kwargs)
        response.raise_for_status()
        return response.json()

    def post_json(self, path: str, json: Any, **kwargs: Any) -> Any:
        response = self._client.post(path, json=json, **kwargs)
        response.raise_for_status()
        return decode_response(response)

    def put_json(self, path: str, json: Any, **kwargs: Any) -> Any:
        response = self._client.put(path, json=json, **kwargs)
        response.raise_for_status()
        return decode_response(response)

    # ServiceAPI -----------------------------------------------------------

    def list_resources(self, kind: str) -> List[Mapping[str, Any]]:
        data = self.get_json(self._path(kind))
        return list(data) if isinstance(data, list) else []

    def create_resource(self, kind: str, payload: Mapping[str, Any]) -> Any:
        return self.post_json(self._path(kind), dict(payload))

    def update_resource(self, kind: str, resource_id: Any, payload: Mapping[str, Any]) -> Any:
        return self.put_json(f"{self._path(kind)}/{resource_id}", dict(payload))

    def run_command(self, command: str) -> Any:
        return self.post_json("/command", {"name": command})

    def get_config(self, section: str) -> Dict[str, Any]:
        data = self.get_json(f"/config/{section}")
        return data if isinstance(data, dict) else {}

    def ensure_config(self, section: str, desired: Mapping[str, Any]) -> EnsureResult:
        """Write ``desired`` into a config section only when a value drifted."""
        operation = f"config {section}"
        try:
            current = self.get_config(section)
            if all(current.get(key) == value for key, value in desired.items()):
                return EnsureResult(self.name, operation, EnsureStatus.already_exists, "in sync")
            self.put_json(f"/config/{section}/{current.get('id', 1)}", {**current, **desired})
        except httpx.HTTPStatusError as exc:
            return EnsureResult(
                self.name,
                operation,
                EnsureStatus.failed,
                f"API error {exc.response.status_code}: {exc.response.text}",
            )
        except (httpx.HTTPError, RequestCancelled) as exc:
            return EnsureResult(self.name, operation, EnsureStatus.failed, f"unreachable: {exc}")
        return EnsureResult(self.name, operation, EnsureStatus.updated, ", ".join(sorted(desired)))

    def _path(self, kind: str) -> str:
        try:
            return self.resource_paths[kind]
        except KeyError:
            raise ValueError(f"{self.name} does not manage {kind} resources") from None


def decode_response(response: httpx.Response) -> Any:
    if response.content:
        try:
            return response.json()
        except ValueError:
            return response.text
    return None


def build_fields(values: Mapping[str, Any]) -> list[Dict[str, Any]]:
    """Render a ``{name: value}`` mapping as the *arr ``fields`` list."""
    return [{"name": name, "value": value} for name, value in values.items()]


def field_value(resource: Mapping[str, Any], name: str) -> Any:
    for field in resource.get("fields") or []:
        if field.get("name") == name:
            return field.get("value")
    return None


def set_field_values(
    fields: Iterable[Dict[str, Any]], overrides: Dict[str, Any]
) -> list[Dict[str, Any]]:
    """Return a new list of `fields` with `value` entries overridden."""
    updated = []
    seen = set()
    for field in fields:
        item = dict(field)
        name = item.get("name")
        if name in overrides:
            item["value"] = overrides[name]
            seen.add(name)
        updated.append(item)
    for name, value in overrides.items():
        if name not in seen:
            updated.append({"name": name, "value": value})
    return updated
