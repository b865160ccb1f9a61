# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/cli/app.py
from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import typer

from clusterstrap.bootstrap.orchestrator import BootstrapOptions, BootstrapOrchestrator
from clusterstrap.bootstrap.report import (
    EXIT_CONTROL_PLANE,
    EXIT_CONVERGENCE_TIMEOUT,
    EXIT_INVALID_TOPOLOGY,
    EXIT_OK,
)
from clusterstrap.cli.helper import build_executor, build_observers, parse_duration, sigint_cancels
from clusterstrap.errors import ClusterstrapError, ConfigError
from clusterstrap.inventory.loader import load_inventory
from clusterstrap.logging.log import init_logging
from clusterstrap.utils.execution import ExecutionContext


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="clusterstrap: bootstrap and join k3s clusters over SSH", no_args_is_help=True)

InventoryOpt = typer.Option(..., "--inventory", "-i", help="Inventory file (.yaml/.yml or Ansible INI)")
RuntimeVersionOpt = typer.Option(None, "--runtime-version", help="k3s version tag, e.g. v1.26.1+k3s1")
TimeoutOpt = typer.Option("300", "--timeout", help="Control plane readiness timeout (e.g. 300, 5m)")
RetriesOpt = typer.Option(10, "--retries", min=1, help="Convergence checks before giving up")
DelayOpt = typer.Option("30", "--delay", help="Pause between convergence checks (e.g. 30s)")
MaxWorkersOpt = typer.Option(10, "--max-workers", min=1, help="Hosts handled concurrently per phase")
JoinRetriesOpt = typer.Option(0, "--join-retries", min=0, help="Extra attempts for a failing worker join")
DryRunOpt = typer.Option(False, "--dry-run", help="Print commands instead of running them")
DebugOpt = typer.Option(False, "--debug", help="Verbose console logging")
LogDirOpt = typer.Option(None, "--log-dir", help="Directory for run logs (default ~/.clusterstrap/logs)")
EventsOpt = typer.Option(None, "--events", help="Append lifecycle events as JSON lines to this file")
ShowEventsOpt = typer.Option(False, "--show-events", help="Echo lifecycle events to the console")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _load(inventory: Path, runtime_version: Optional[str]):
    try:
        return load_inventory(inventory, runtime_version=runtime_version)
    except ConfigError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(EXIT_INVALID_TOPOLOGY)


def _run(
    command: str,
    *,
    inventory: Path,
    runtime_version: Optional[str],
    options: BootstrapOptions,
    dry_run: bool,
    debug: bool,
    log_dir: Optional[Path],
    events: Optional[Path],
    show_events: bool,
) -> None:
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=debug)
    cluster = _load(inventory, runtime_version)

    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  Control  : {cluster.control.name} ({cluster.control.address})")
    typer.echo(f"  Workers  : {', '.join(w.name for w in cluster.workers) or '-'}")
    typer.echo(f"  Runtime  : {cluster.runtime_version}")
    typer.echo("")

    executor = build_executor(ExecutionContext(dry_run=dry_run), cluster)
    cancel = threading.Event()
    orch = BootstrapOrchestrator(
        cluster,
        executor,
        options=options,
        observers=build_observers(logger, events, show_events),
        cancel=cancel,
        run_id=run_id,
    )

    try:
        with sigint_cancels(cancel):
            report = orch.bootstrap() if command == "bootstrap" else orch.join()
    finally:
        executor.close()

    typer.echo("")
    for line in report.render():
        typer.echo(line)
    raise typer.Exit(report.exit_code)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def bootstrap(
    inventory: Path = InventoryOpt,
    runtime_version: Optional[str] = RuntimeVersionOpt,
    timeout: str = TimeoutOpt,
    retries: int = RetriesOpt,
    delay: str = DelayOpt,
    max_workers: int = MaxWorkersOpt,
    join_retries: int = JoinRetriesOpt,
    deploy_workload: bool = typer.Option(
        False,
        "--deploy-workload/--no-deploy-workload",
        help="Apply the http-server DaemonSet and NodePort service once converged",
    ),
    dry_run: bool = DryRunOpt,
    debug: bool = DebugOpt,
    log_dir: Optional[Path] = LogDirOpt,
    events: Optional[Path] = EventsOpt,
    show_events: bool = ShowEventsOpt,
):
    """
    Install packages and firewall rules on every host, start the control
    plane, join all workers and wait for every node to report Ready.
    """
    options = BootstrapOptions(
        max_workers=max_workers,
        control_plane_timeout=parse_duration(timeout),
        convergence_retries=retries,
        convergence_delay=parse_duration(delay),
        join_retries=join_retries,
        deploy_workload=deploy_workload,
    )
    _run(
        "bootstrap",
        inventory=inventory,
        runtime_version=runtime_version,
        options=options,
        dry_run=dry_run,
        debug=debug,
        log_dir=log_dir,
        events=events,
        show_events=show_events,
    )


@app.command()
def join(
    inventory: Path = InventoryOpt,
    runtime_version: Optional[str] = RuntimeVersionOpt,
    timeout: str = TimeoutOpt,
    retries: int = RetriesOpt,
    delay: str = DelayOpt,
    max_workers: int = MaxWorkersOpt,
    join_retries: int = JoinRetriesOpt,
    dry_run: bool = DryRunOpt,
    debug: bool = DebugOpt,
    log_dir: Optional[Path] = LogDirOpt,
    events: Optional[Path] = EventsOpt,
    show_events: bool = ShowEventsOpt,
):
    """
    Join the inventory's workers to a control plane that is already running.
    """
    options = BootstrapOptions(
        max_workers=max_workers,
        control_plane_timeout=parse_duration(timeout),
        convergence_retries=retries,
        convergence_delay=parse_duration(delay),
        join_retries=join_retries,
    )
    _run(
        "join",
        inventory=inventory,
        runtime_version=runtime_version,
        options=options,
        dry_run=dry_run,
        debug=debug,
        log_dir=log_dir,
        events=events,
        show_events=show_events,
    )


@app.command()
def status(
    inventory: Path = InventoryOpt,
    dry_run: bool = DryRunOpt,
    debug: bool = DebugOpt,
    log_dir: Optional[Path] = LogDirOpt,
):
    """
    Show which inventory hosts the control plane reports as Ready.
    """
    logger, _, _ = init_logging(base_dir=log_dir, verbose=debug)
    cluster = _load(inventory, None)
    executor = build_executor(ExecutionContext(dry_run=dry_run), cluster)
    orch = BootstrapOrchestrator(cluster, executor, observers=build_observers(logger))

    try:
        state = orch.status()
    except ClusterstrapError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(EXIT_CONTROL_PLANE)
    finally:
        executor.close()

    for host in cluster.all_hosts():
        mark = "ready" if host.name in state.ready else "not-ready"
        typer.echo(f"{host.name:<20} {host.role.value:<8} {host.address:<16} {mark}")

    names = [h.name for h in cluster.all_hosts()]
    raise typer.Exit(EXIT_OK if state.converged(names) else EXIT_CONVERGENCE_TIMEOUT)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
