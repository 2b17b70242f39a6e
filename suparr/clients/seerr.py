"""Overseerr client: wizard state and media-manager servers."""
from __future__ import annotations

from typing import Mapping

from ..constants import SEERR_RESOURCE_PATHS
from .arr import ArrAPI


class SeerrAPI(ArrAPI):
    """Request portal; servers are listed and created like *arr resources."""

    resource_paths: Mapping[str, str] = SEERR_RESOURCE_PATHS

    def is_initialized(self) -> bool:
        """True once the operator finished the first-run wizard."""
        data = self.get_json("/settings/public")
        return bool(isinstance(data, dict) and data.get("initialized"))
