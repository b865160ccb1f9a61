# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/utils/ssh.py

from __future__ import annotations

import paramiko

from ..inventory.models import Host
from .ssh_runner import SSHRunner


def _load_pkey(path) -> paramiko.PKey | None:
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(str(path))
        except paramiko.SSHException:
            continue
    raise paramiko.SSHException(f"Unsupported private key format for {path}")


def open_ssh(
    host: Host,
    *,
    connect_timeout: float = 20.0,
) -> SSHRunner:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = _load_pkey(host.pkey_path) if host.pkey_path else None

    client.connect(
        hostname=host.address,
        port=host.port,
        username=host.username,
        password=host.password if not pkey else None,
        pkey=pkey,
        timeout=connect_timeout,
        allow_agent=pkey is None,
        look_for_keys=pkey is None,
    )

    return SSHRunner(client)
