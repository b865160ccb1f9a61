# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/execution/dry_run.py
from __future__ import annotations

import logging
import threading
from typing import List, Tuple

from ..inventory.models import Host
from .result import CommandSpec, OperationResult

log = logging.getLogger("clusterstrap")


class DryRunExecutor:
    """
    Records every command instead of running it. Status queries get a
    plausible answer so a dry run walks the whole bootstrap sequence.
    """

    def __init__(self, cluster_hosts: List[Host] | None = None):
        self.calls: List[Tuple[str, CommandSpec]] = []
        self._hosts = list(cluster_hosts or [])
        self._lock = threading.Lock()

    def _fake_stdout(self, operation: CommandSpec) -> str:
        if "get nodes" in operation.command:
            return "".join(
                f"{h.name}   Ready   <none>   1s   dry-run   {h.address}   <none>\n" for h in self._hosts
            )
        if "node-token" in operation.command:
            return "K10dryrun::server:dryrun\n"
        return ""

    def execute(self, host: Host, operation: CommandSpec) -> OperationResult:
        with self._lock:
            self.calls.append((host.name, operation))
        log.info("[%s] (dry-run) %s", host.name, operation.label())
        log.debug("[%s] (dry-run) $ %s", host.name, operation.command)
        return OperationResult(
            host=host.name,
            command=operation.command,
            exit_code=0,
            stdout=self._fake_stdout(operation),
        )

    def close(self) -> None:
        pass
