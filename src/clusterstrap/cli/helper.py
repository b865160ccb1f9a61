# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/cli/helper.py
from __future__ import annotations

import logging
import re
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from clusterstrap.execution.dry_run import DryRunExecutor
from clusterstrap.execution.ssh import SshExecutor
from clusterstrap.inventory.models import Cluster
from clusterstrap.observers.console import ConsoleObserver
from clusterstrap.observers.jsonfile import JsonFileObserver
from clusterstrap.observers.logger import LoggerObserver
from clusterstrap.utils.execution import ExecutionContext

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$")
_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: str) -> float:
    """
    Accept plain seconds ("300") or a suffixed duration ("30s", "5m", "1h").
    """
    m = _DURATION.match(str(value))
    if not m:
        raise typer.BadParameter(f"invalid duration '{value}' (use e.g. 300, 30s, 5m, 1h)")
    return float(m.group(1)) * _UNITS[m.group(2)]


def build_executor(ctx: ExecutionContext, cluster: Cluster):
    if ctx.dry_run:
        return DryRunExecutor(cluster.all_hosts())
    return SshExecutor(
        connect_timeout=ctx.connect_timeout,
        connect_retries=ctx.connect_retries,
        connect_delay=ctx.connect_delay,
    )


def build_observers(
    logger: logging.Logger,
    events_path: Optional[Path] = None,
    show_events: bool = False,
) -> List:
    observers: List = [LoggerObserver(logger)]
    if events_path is not None:
        observers.append(JsonFileObserver(events_path))
    if show_events:
        observers.append(ConsoleObserver())
    return observers


@contextmanager
def sigint_cancels(cancel: threading.Event) -> Iterator[None]:
    """
    First Ctrl-C asks the orchestrator to stop between phases; commands
    already running on hosts are left to finish.
    """
    def _handler(signum, frame):
        typer.echo("\n[cluster] cancel requested, finishing in-flight commands...", err=True)
        cancel.set()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # not on the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
