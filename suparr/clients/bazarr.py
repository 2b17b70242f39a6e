"""Bazarr client: connection settings towards Sonarr and Radarr."""
from __future__ import annotations

from typing import Any, Dict, Mapping

import httpx

from .arr import ArrAPI, decode_response
from .base import EnsureResult, EnsureStatus
from .retry import RequestCancelled


class BazarrAPI(ArrAPI):
    """Bazarr exposes settings sections rather than listable resources."""

    resource_paths: Mapping[str, str] = {}

    def get_settings(self) -> Dict[str, Any]:
        data = self.get_json("/system/settings")
        return data if isinstance(data, dict) else {}

    def patch_settings(self, section: str, payload: Mapping[str, Any]) -> Any:
        response = self._client.patch(f"/system/settings/{section}", json=dict(payload))
        response.raise_for_status()
        return decode_response(response)

    def ensure_settings(self, section: str, desired: Mapping[str, Any]) -> EnsureResult:
        """Write ``desired`` into ``section`` only when a value drifted."""
        operation = f"settings {section}"
        try:
            current = self.get_settings().get(section) or {}
            if all(current.get(key) == value for key, value in desired.items()):
                return EnsureResult(self.name, operation, EnsureStatus.already_exists, "in sync")
            self.patch_settings(section, desired)
        except httpx.HTTPStatusError as exc:
            return EnsureResult(
                self.name,
                operation,
                EnsureStatus.failed,
                f"API error {exc.response.status_code}: {exc.response.text}",
            )
        except (httpx.HTTPError, RequestCancelled) as exc:
            return EnsureResult(self.name, operation, EnsureStatus.failed, f"unreachable: {exc}")
        return EnsureResult(self.name, operation, EnsureStatus.updated, "settings written")
