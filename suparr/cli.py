"""Command-line entry point: ``suparr deploy`` and ``suparr probe``."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from .converge.orchestrator import LOG_FORMAT, Orchestrator
from .converge.phases import HostContext
from .converge.probe import probe as probe_endpoint
from .models import FleetConfig
from .storage import ConfigRepository, EnvironmentRecord, FleetConfigError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

app = typer.Typer(help="Reconcile self-hosted media stacks across one or more hosts")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    # Every service probe would otherwise log each request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load(config: Path) -> Tuple[ConfigRepository, FleetConfig]:
    repo = ConfigRepository(config.resolve().parent, fleet_path=config)
    try:
        fleet = repo.load_fleet()
    except FleetConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIG)
    return repo, fleet


@app.command()
def deploy(
    config: Path = typer.Argument(..., help="Fleet description YAML"),
    host: Optional[List[str]] = typer.Option(
        None, "--host", "-H", help="Only reconcile these hosts (repeatable)"
    ),
    no_poll: bool = typer.Option(False, "--no-poll", help="Skip the post-deploy polling loop"),
    poll_horizon: Optional[float] = typer.Option(
        None, "--poll-horizon", min=0, help="Seconds to keep waiting on operator actions"
    ),
    poll_interval: Optional[float] = typer.Option(
        None, "--poll-interval", min=0.1, help="Seconds between operator-action checks"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run the full workflow on every selected host in parallel."""
    _configure_logging(verbose)
    repo, fleet = _load(config)

    poll_updates = {}
    if no_poll:
        poll_updates["enabled"] = False
    if poll_horizon is not None:
        poll_updates["horizon"] = poll_horizon
    if poll_interval is not None:
        poll_updates["interval"] = poll_interval
    if poll_updates:
        fleet = fleet.model_copy(update={"poll": fleet.poll.model_copy(update=poll_updates)})

    targets = fleet.hosts
    if host:
        unknown = sorted(set(host) - {entry.name for entry in fleet.hosts})
        if unknown:
            typer.echo(f"error: unknown host(s): {', '.join(unknown)}", err=True)
            raise typer.Exit(code=EXIT_CONFIG)
        targets = [entry for entry in fleet.hosts if entry.name in host]

    orchestrator = Orchestrator(fleet, repo)
    try:
        report = orchestrator.run_all(targets)
    except FleetConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIG)
    except KeyboardInterrupt:
        typer.echo("interrupted; in-flight host runs were cancelled", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    raise typer.Exit(code=EXIT_OK if report.ok else EXIT_FAILED)


@app.command()
def probe(
    config: Path = typer.Argument(..., help="Fleet description YAML"),
    attempts: int = typer.Option(1, "--attempts", min=1, help="Health checks per service"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Check readiness of every enabled service without changing anything."""
    _configure_logging(verbose)
    _, fleet = _load(config)
    all_ready = True
    for entry in fleet.hosts:
        ctx = HostContext(host=entry, record=EnvironmentRecord(), http=fleet.http)
        for service in entry.services.enabled_names():
            result = probe_endpoint(ctx.endpoint(service), max_attempts=attempts)
            all_ready = all_ready and result.ready
            typer.echo(f"{entry.name:<16} {service:<14} {result.status.value:<10} {result.detail}")
    raise typer.Exit(code=EXIT_OK if all_ready else EXIT_FAILED)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
