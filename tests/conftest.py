"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import patch

import pytest
import yaml
from fastapi.testclient import TestClient

# Add project root and the tests directory to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeFleet
from suparr.app import app
from suparr.converge.orchestrator import Orchestrator
from suparr.converge.runner import HostRunner
from suparr.models import FleetConfig, HostConfig, HttpConfig, PollConfig
from suparr.storage import ConfigRepository

FAST_SERVICE = {"enabled": True, "readiness_attempts": 1, "readiness_interval": 0}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def make_host(temp_dir: Path) -> Callable[..., HostConfig]:
    """Build a HostConfig with fast readiness settings for the named services."""

    def factory(
        name: str = "alpha",
        address: Optional[str] = None,
        services: Optional[List[str]] = None,
        **extra: Any,
    ) -> HostConfig:
        enabled = services if services is not None else [
            "gluetun",
            "qbittorrent",
            "radarr",
            "sonarr",
            "prowlarr",
        ]
        data: Dict[str, Any] = {
            "name": name,
            "address": address or f"{name}.lan",
            "appdata": str(temp_dir / name / "appdata"),
            "discovery_wait": 0,
            "services": {service: dict(FAST_SERVICE) for service in enabled},
        }
        if "qbittorrent" in enabled:
            data["services"]["qbittorrent"]["password"] = "correct-horse-battery"
        data.update(extra)
        return HostConfig.model_validate(data)

    return factory


@pytest.fixture
def config_repo(temp_dir: Path) -> ConfigRepository:
    return ConfigRepository(temp_dir)


@pytest.fixture
def host_runner(config_repo: ConfigRepository, fake_fleet: FakeFleet) -> HostRunner:
    return HostRunner(
        repo=config_repo,
        poll=PollConfig(enabled=False, interval=0.05, horizon=2),
        http=HttpConfig(timeout=2, connect_timeout=1),
        transport=fake_fleet.transport,
        discovery_interval=0.01,
    )


@pytest.fixture
def make_orchestrator(
    config_repo: ConfigRepository, host_runner: HostRunner
) -> Callable[..., Orchestrator]:
    """Orchestrator over fake services; every address resolves."""

    def factory(hosts: List[HostConfig], stream: Any = None, **kwargs: Any) -> Orchestrator:
        fleet = FleetConfig(hosts=hosts, poll=host_runner.poll, http=host_runner.http)
        return Orchestrator(
            fleet,
            config_repo,
            runner=kwargs.pop("runner", host_runner),
            stream=stream,
            resolver=kwargs.pop("resolver", lambda address: True),
            **kwargs,
        )

    return factory


@pytest.fixture
def suparr_info_logs() -> Generator[None, None, None]:
    """Let INFO records from the engine reach the per-host capture."""
    logger = logging.getLogger("suparr")
    previous = logger.level
    logger.setLevel(logging.INFO)
    yield
    logger.setLevel(previous)


@pytest.fixture
def sample_fleet(temp_dir: Path) -> Dict[str, Any]:
    """Return a valid fleet description."""
    return {
        "version": 1,
        "hosts": [
            {
                "name": "alpha",
                "address": "127.0.0.1",
                "appdata": str(temp_dir / "alpha"),
                "services": {
                    "radarr": {"enabled": True},
                    "sonarr": {"enabled": True},
                    "prowlarr": {"enabled": True},
                },
            },
            {
                "name": "beta",
                "address": "127.0.0.1",
                "appdata": str(temp_dir / "beta"),
                "services": {"lidarr": {"enabled": True}},
            },
        ],
        "poll": {"interval": 5, "horizon": 60},
    }


@pytest.fixture
def fleet_repo(temp_dir: Path, sample_fleet: Dict[str, Any]) -> ConfigRepository:
    """Create a ConfigRepository with a sample fleet file."""
    (temp_dir / "fleet.yaml").write_text(yaml.dump(sample_fleet))
    return ConfigRepository(temp_dir)


@pytest.fixture
def api_client(fleet_repo: ConfigRepository) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    # Patch the module-level repo variable used by app routes
    with patch("suparr.app.repo", fleet_repo):
        with TestClient(app) as client:
            yield client
