# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/inventory/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

DEFAULT_RUNTIME_VERSION = "v1.26.1+k3s1"
DEFAULT_FLANNEL_BACKEND = "host-gw"


class Role(str, Enum):
    CONTROL = "control"
    WORKER = "worker"


@dataclass(frozen=True)
class Host:
    """
    A node you will SSH into.
    """
    name: str                     # inventory name (e.g. 'master-1')
    role: Role
    address: str                  # IP or DNS to connect, also used as node-ip
    username: str = "root"
    port: int = 22
    password: Optional[str] = None
    pkey_path: Optional[Path] = None
    reachable: bool = True        # false when the inventory marks the host as down

    @property
    def is_control(self) -> bool:
        return self.role is Role.CONTROL


@dataclass(frozen=True)
class Cluster:
    control: Host
    workers: List[Host] = field(default_factory=list)
    runtime_version: str = DEFAULT_RUNTIME_VERSION
    flannel_backend: str = DEFAULT_FLANNEL_BACKEND

    def all_hosts(self) -> List[Host]:
        return [self.control, *self.workers]

    def by_name(self) -> dict[str, Host]:
        return {h.name: h for h in self.all_hosts()}

    @property
    def server_url(self) -> str:
        return f"https://{self.control.address}:6443"
