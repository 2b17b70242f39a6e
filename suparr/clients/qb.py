"""qBittorrent Web API client: first-boot password bootstrap and categories."""
from __future__ import annotations

import json
import logging
from contextlib import AbstractContextManager
from typing import Any, Iterable, List, Mapping, Optional, Tuple

import httpx

from ..constants import QBIT_DEFAULT_PASSWORD, QBIT_DEFAULT_USERNAME
from .base import EnsureResult, EnsureStatus


class AuthenticationError(Exception):
    """Raised when qBittorrent authentication fails."""


log = logging.getLogger(__name__)


class QBittorrentClient(AbstractContextManager):
    """Configure qBittorrent using its Web API."""

    name = "qbittorrent"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            follow_redirects=True,
            headers={
                "Referer": f"{base_url}/",
                "Origin": base_url,
                "User-Agent": "suparr/1.0",
            },
            transport=transport,
        )

    def __enter__(self) -> "QBittorrentClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._client.close()

    def login(self, username: str, password: str) -> bool:
        response = self._client.post(
            "/api/v2/auth/login",
            data={"username": username, "password": password},
        )
        return response.status_code == 200 and response.text.strip() == "Ok."

    def authenticate(self, candidates: Iterable[Tuple[str, str]]) -> Tuple[str, str]:
        for username, password in candidates:
            if not password:
                continue
            try:
                if self.login(username, password):
                    return username, password
            except httpx.RequestError:
                continue
        raise AuthenticationError

    def ensure_password(self, username: str, desired_password: str) -> EnsureResult:
        """Move qBittorrent off its factory login without touching a configured one."""
        try:
            active_username, active_password = self.authenticate(
                _login_candidates(username, desired_password)
            )
            if (active_username, active_password) == (username, desired_password):
                return EnsureResult(
                    self.name, "password", EnsureStatus.already_exists, "password already set"
                )
            response = self._client.post(
                "/api/v2/app/setPreferences",
                data={
                    "json": json.dumps(
                        {"web_ui_username": username, "web_ui_password": desired_password}
                    )
                },
            )
            response.raise_for_status()
        except AuthenticationError:
            return EnsureResult(
                self.name,
                "password",
                EnsureStatus.failed,
                "authentication failed (unable to login with known credentials)",
            )
        except httpx.HTTPError as exc:
            return EnsureResult(
                self.name,
                "password",
                EnsureStatus.failed,
                f"connection failed ({exc.__class__.__name__}: {exc})",
            )
        log.info("qBittorrent password changed (user: %s)", username)
        return EnsureResult(
            self.name, "password", EnsureStatus.updated, f"password set for {username}"
        )

    # ServiceAPI -----------------------------------------------------------

    def list_resources(self, kind: str) -> List[Mapping[str, Any]]:
        self._check_kind(kind)
        response = self._client.get("/api/v2/torrents/categories")
        response.raise_for_status()
        data = response.json() or {}
        return [
            {"name": name, "savePath": (entry or {}).get("savePath", "")}
            for name, entry in data.items()
        ]

    def create_resource(self, kind: str, payload: Mapping[str, Any]) -> Any:
        self._check_kind(kind)
        response = self._client.post(
            "/api/v2/torrents/createCategory",
            data={"category": payload["name"], "savePath": payload.get("savePath", "")},
        )
        response.raise_for_status()
        return None

    def _check_kind(self, kind: str) -> None:
        if kind != "category":
            raise ValueError(f"qbittorrent does not manage {kind} resources")


def _login_candidates(username: str, desired_password: str) -> List[Tuple[str, str]]:
    candidates: List[Tuple[str, str]] = [(username, desired_password)]
    for pair in ((username, QBIT_DEFAULT_PASSWORD), (QBIT_DEFAULT_USERNAME, QBIT_DEFAULT_PASSWORD)):
        if pair not in candidates:
            candidates.append(pair)
    return candidates
