# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/execution/ssh.py
from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Optional

import paramiko

from ..errors import CommandFailed, UnreachableHost
from ..inventory.models import Host
from ..utils.retry import RetryError, retry
from ..utils.ssh import open_ssh
from ..utils.ssh_runner import SSHRunner
from .result import CommandSpec, OperationResult

log = logging.getLogger("clusterstrap")


class SshExecutor:
    """
    Runs CommandSpecs over SSH, keeping one connection per host for the
    lifetime of the executor. Freshly provisioned nodes may refuse SSH for a
    while, so connecting is retried with a fixed delay.
    """

    def __init__(
        self,
        connect_timeout: float = 20.0,
        connect_retries: int = 3,
        connect_delay: float = 10.0,
        cmd_timeout: Optional[float] = None,
    ):
        self.connect_timeout = connect_timeout
        self.connect_retries = connect_retries
        self.connect_delay = connect_delay
        self.cmd_timeout = cmd_timeout
        self._runners: Dict[str, SSHRunner] = {}
        self._lock = threading.Lock()

    # ------------------ connection ------------------

    def _connect(self, host: Host) -> SSHRunner:
        def _on_retry(attempt: int, exc: Exception) -> None:
            log.info(
                "[%s] SSH not ready (attempt %d/%d, %s: %s)",
                host.name, attempt, self.connect_retries, type(exc).__name__, exc,
            )

        @retry(
            retries=self.connect_retries,
            delay=self.connect_delay,
            retry_on=(paramiko.SSHException, OSError),
            on_retry=_on_retry,
        )
        def _open() -> SSHRunner:
            return open_ssh(host, connect_timeout=self.connect_timeout)

        try:
            return _open()
        except RetryError as e:
            raise UnreachableHost(host.name, f"{e.attempts} connect attempt(s) failed, last: {e.last}") from e

    def _runner(self, host: Host) -> SSHRunner:
        if not host.reachable:
            raise UnreachableHost(host.name, "marked unreachable in inventory")
        with self._lock:
            runner = self._runners.get(host.name)
        if runner is not None:
            return runner
        runner = self._connect(host)
        with self._lock:
            # another thread may have connected meanwhile; keep the first
            existing = self._runners.setdefault(host.name, runner)
        if existing is not runner:
            runner.close()
        return existing

    def _drop(self, host: Host) -> None:
        with self._lock:
            runner = self._runners.pop(host.name, None)
        if runner is not None:
            try:
                runner.close()
            except Exception:
                log.debug("[%s] error closing SSH connection", host.name, exc_info=True)

    # ------------------ public API ------------------

    def execute(self, host: Host, operation: CommandSpec) -> OperationResult:
        runner = self._runner(host)
        log.debug("[%s] $ %s", host.name, operation.command)

        t0 = time.monotonic()
        try:
            rc, out, err = runner.run(
                operation.command,
                sudo=operation.sudo,
                env=operation.env,
                timeout=operation.timeout or self.cmd_timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            self._drop(host)
            raise UnreachableHost(host.name, str(e)) from e

        result = OperationResult(
            host=host.name,
            command=operation.command,
            exit_code=rc,
            stdout=out,
            stderr=err,
            duration=time.monotonic() - t0,
        )
        log.debug("[%s] exit %d in %.2fs", host.name, rc, result.duration)

        if rc != 0:
            if operation.ignore_errors:
                log.debug("[%s] ignoring non-zero exit of '%s'", host.name, operation.label())
            else:
                log.warning("[%s] '%s' failed (rc=%d): %s", host.name, operation.label(), rc, err.strip())
                raise CommandFailed(host.name, rc, result)
        return result

    def close(self) -> None:
        with self._lock:
            runners = list(self._runners.values())
            self._runners.clear()
        for r in runners:
            r.close()
