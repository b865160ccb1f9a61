# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/utils/ssh_runner.py

from __future__ import annotations

from typing import Mapping, Optional

import paramiko


def shq(v: str) -> str:
    """Quote for bash -lc."""
    return "'" + v.replace("'", "'\"'\"'") + "'"


class SSHRunner:
    def __init__(self, client: paramiko.SSHClient):
        self.client = client

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> tuple[int, str, str]:
        """
        Run a shell command and wait for it to exit. Environment values are
        exported inside the wrapped shell so sudo does not strip them.
        """
        shell_cmd = cmd
        if env:
            exports = " ".join(f"{k}={shq(str(v))}" for k, v in env.items())
            shell_cmd = f"export {exports}; {cmd}"

        if sudo:
            final = f"sudo -S bash -lc {shq(shell_cmd)}"
        else:
            final = f"bash -lc {shq(shell_cmd)}"

        stdin, stdout, stderr = self.client.exec_command(final, timeout=timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        return rc, out, err

    def close(self) -> None:
        self.client.close()
